"""Configuration modules for the conformance engine."""

from conformance.config.logging import configure_logging, get_logger
from conformance.config.resources import (
    ResourceCatalog,
    ResourceDefinition,
    SearchParamDefinition,
    get_catalog,
    get_resource_definition,
    load_resources,
    reload_resources,
)
from conformance.config.settings import Settings, get_settings, reset_settings

__all__ = [
    "Settings",
    "get_settings",
    "reset_settings",
    "ResourceCatalog",
    "ResourceDefinition",
    "SearchParamDefinition",
    "get_catalog",
    "get_resource_definition",
    "load_resources",
    "reload_resources",
    "configure_logging",
    "get_logger",
]
