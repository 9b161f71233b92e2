"""Conformance sequence engine for FHIR servers."""

__version__ = "0.1.0"
