"""
Resource configuration loader.

Each resource type under test has its own JSON file in the resources
directory (e.g. resources/careplan.json). A file describes which interactions
to exercise, how search parameters map onto resource elements, which elements
are must-support, and which profile instances are validated against. The
sequence builder turns one of these records into a full test sequence.

The configuration is loaded once and cached for the lifetime of the process.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from conformance.config.logging import get_logger
from conformance.constants import PROVENANCE_REVINCLUDE
from conformance.engine.matchers import MATCHERS
from conformance.errors import ResourceDefinitionError, UnknownResourceTypeError

logger = get_logger(__name__)

# Path to resources directory (where per-resource config files live)
RESOURCES_DIR = Path(__file__).parent.parent / "resources"

_config_cache: Optional["ResourceCatalog"] = None


@dataclass(frozen=True)
class SearchParamDefinition:
    """How a search parameter maps onto a resource element."""

    name: str
    path: str
    type: str = "string"

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any], source: str) -> "SearchParamDefinition":
        if not isinstance(data, dict) or not data.get("path"):
            raise ResourceDefinitionError(source, f"search parameter '{name}' needs a path")
        param_type = data.get("type", "string")
        if param_type not in MATCHERS:
            raise ResourceDefinitionError(
                source, f"search parameter '{name}' has unknown type '{param_type}'"
            )
        return cls(name=name, path=data["path"], type=param_type)


@dataclass(frozen=True)
class ResourceDefinition:
    """Configuration record for one resource type under test."""

    resource_type: str
    title: str
    test_id_prefix: str
    profile: str | None = None
    description: str = ""
    delayed: bool = False
    depends_on: tuple[str, ...] = ()
    interactions: tuple[str, ...] = ("read", "search")
    searches: tuple[tuple[str, ...], ...] = ()
    search_params: dict[str, SearchParamDefinition] = field(default_factory=dict)
    fixed_values: dict[str, str] = field(default_factory=dict)
    must_support: tuple[str, ...] = ()
    revincludes: tuple[str, ...] = (PROVENANCE_REVINCLUDE,)
    requirements: tuple[str, ...] = ("token",)
    versions: tuple[str, ...] = ("r4",)

    @classmethod
    def from_dict(cls, data: dict[str, Any], source: str = "<dict>") -> "ResourceDefinition":
        """
        Create a ResourceDefinition from a dictionary.

        Raises:
            ResourceDefinitionError: If required keys are missing or searches
                reference undeclared parameters
        """
        for key in ("resource_type", "title", "test_id_prefix"):
            if not data.get(key):
                raise ResourceDefinitionError(source, f"missing '{key}'")

        search_params = {
            name: SearchParamDefinition.from_dict(name, spec, source)
            for name, spec in (data.get("search_params") or {}).items()
        }

        searches = tuple(tuple(search["params"]) for search in data.get("searches") or [])
        for params in searches:
            if not params:
                raise ResourceDefinitionError(source, "a search needs at least one parameter")
            undeclared = [name for name in params if name not in search_params]
            if undeclared:
                raise ResourceDefinitionError(
                    source, f"search uses undeclared parameter(s): {', '.join(undeclared)}"
                )

        delayed = bool(data.get("delayed", False))
        depends_on = tuple(data.get("depends_on") or ())
        if data["resource_type"] in depends_on:
            raise ResourceDefinitionError(source, "a resource cannot depend on itself")
        if not delayed and searches and "patient" not in searches[0]:
            raise ResourceDefinitionError(
                source, "the first search of a patient-scoped resource must include 'patient'"
            )

        return cls(
            resource_type=data["resource_type"],
            title=data["title"],
            test_id_prefix=data["test_id_prefix"],
            profile=data.get("profile"),
            description=data.get("description", ""),
            delayed=delayed,
            depends_on=depends_on,
            interactions=tuple(data.get("interactions", ("read", "search"))),
            searches=searches,
            search_params=search_params,
            fixed_values=dict(data.get("fixed_values") or {}),
            must_support=tuple(data.get("must_support") or ()),
            revincludes=tuple(data.get("revincludes", (PROVENANCE_REVINCLUDE,))),
            requirements=tuple(data.get("requirements", ("token",))),
            versions=tuple(version.lower() for version in data.get("versions", ("r4",))),
        )

    def supports(self, interaction: str) -> bool:
        return interaction in self.interactions

    def search_param(self, name: str) -> SearchParamDefinition:
        return self.search_params[name]


@dataclass
class ResourceCatalog:
    """All resource definitions loaded from the resources directory."""

    resources: dict[str, ResourceDefinition] = field(default_factory=dict)

    def get(self, resource_type: str) -> ResourceDefinition:
        """
        Get a resource definition by type.

        Raises:
            UnknownResourceTypeError: If no definition is configured
        """
        definition = self.resources.get(resource_type)
        if definition is None:
            raise UnknownResourceTypeError(resource_type, sorted(self.resources))
        return definition

    @property
    def delayed_types(self) -> set[str]:
        """Resource types only reachable through references found by other sequences."""
        return {name for name, definition in self.resources.items() if definition.delayed}

    def ordered_types(self) -> list[str]:
        """Patient-scoped types first, then delayed ones, each alphabetically."""
        return sorted(self.resources, key=lambda name: (self.resources[name].delayed, name))


def _scan_resource_configs(resources_dir: Path) -> dict[str, ResourceDefinition]:
    """
    Scan the resources directory for resource config files.

    Malformed files are logged and skipped so one bad file does not take the
    whole catalog down.
    """
    resources = {}

    if not resources_dir.exists():
        logger.warning(f"Resources directory not found at {resources_dir}")
        return resources

    for config_file in sorted(resources_dir.glob("*.json")):
        try:
            with open(config_file, encoding="utf-8") as f:
                data = json.load(f)
            definition = ResourceDefinition.from_dict(data, source=config_file.name)
            resources[definition.resource_type] = definition
            logger.debug(f"Loaded resource config: {definition.resource_type} from {config_file.name}")

        except json.JSONDecodeError as e:
            logger.warning(f"Invalid JSON in {config_file}: {e}")
        except ResourceDefinitionError as e:
            logger.warning(e.message)

    return resources


def load_resources(resources_dir: Path | None = None) -> ResourceCatalog:
    """
    Load resource definitions from JSON files, caching the result.

    Args:
        resources_dir: Optional path to resources directory. Defaults to
            conformance/resources.
    """
    global _config_cache

    if _config_cache is not None:
        return _config_cache

    dir_path = resources_dir or RESOURCES_DIR
    logger.info(f"Loading resource configuration from {dir_path}")

    _config_cache = ResourceCatalog(resources=_scan_resource_configs(dir_path))
    logger.info(f"Loaded configuration for {len(_config_cache.resources)} resource types")
    return _config_cache


def get_catalog() -> ResourceCatalog:
    """Get the current resource catalog, loading it if needed."""
    if _config_cache is None:
        return load_resources()
    return _config_cache


def reload_resources(resources_dir: Path | None = None) -> ResourceCatalog:
    """Force reload of resource configuration."""
    global _config_cache
    _config_cache = None
    return load_resources(resources_dir)


def get_resource_definition(resource_type: str) -> ResourceDefinition:
    """Get a resource definition by type."""
    return get_catalog().get(resource_type)
