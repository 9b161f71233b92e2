"""Sequence builders for configured resource types."""

from conformance.sequences.uscore import build_catalog_sequences, build_sequence

__all__ = ["build_catalog_sequences", "build_sequence"]
