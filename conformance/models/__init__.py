"""Pydantic models for the conformance engine."""

from conformance.models.fhir import (
    FHIRResponse,
    OperationOutcomeIssue,
    ValidationIssue,
)
from conformance.models.results import (
    ReferenceRecord,
    RunReport,
    SequenceReport,
    TestOutcome,
    TestResult,
    worst_outcome,
)

__all__ = [
    "FHIRResponse",
    "OperationOutcomeIssue",
    "ValidationIssue",
    "ReferenceRecord",
    "RunReport",
    "SequenceReport",
    "TestOutcome",
    "TestResult",
    "worst_outcome",
]
