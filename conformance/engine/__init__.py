"""Sequence execution engine."""

from conformance.engine.capabilities import CapabilityIndex
from conformance.engine.context import FHIRClient, ProfileValidator, RunContext, RunOptions
from conformance.engine.coordinator import RunCoordinator
from conformance.engine.references import ReferenceStore
from conformance.engine.runner import SequenceRunner
from conformance.engine.sequence import (
    CapabilityGate,
    SequenceDefinition,
    SequenceRunState,
    TestContext,
    TestSpec,
)

__all__ = [
    "CapabilityIndex",
    "CapabilityGate",
    "FHIRClient",
    "ProfileValidator",
    "ReferenceStore",
    "RunContext",
    "RunCoordinator",
    "RunOptions",
    "SequenceDefinition",
    "SequenceRunState",
    "SequenceRunner",
    "TestContext",
    "TestSpec",
]
