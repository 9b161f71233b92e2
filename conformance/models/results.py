"""
Pydantic models for recorded test outcomes and run reports.
"""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class TestOutcome(str, Enum):
    """Terminal outcome of a single test."""

    __test__ = False

    PASS = "pass"
    FAIL = "fail"
    SKIP = "skip"
    OMIT = "omit"
    ERROR = "error"

    @property
    def rank(self) -> int:
        """Severity used when aggregating a sequence: error > fail > omit > skip > pass."""
        return _OUTCOME_RANK[self]


_OUTCOME_RANK = {
    TestOutcome.PASS: 0,
    TestOutcome.SKIP: 1,
    TestOutcome.OMIT: 2,
    TestOutcome.FAIL: 3,
    TestOutcome.ERROR: 4,
}


def worst_outcome(outcomes: list[TestOutcome]) -> TestOutcome:
    """Return the most severe outcome, or PASS for an empty list."""
    if not outcomes:
        return TestOutcome.PASS
    return max(outcomes, key=lambda outcome: outcome.rank)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TestResult(BaseModel):
    """Outcome of one test, immutable once recorded."""

    __test__ = False

    model_config = ConfigDict(frozen=True)

    test_key: str = Field(description="Stable test key, e.g. read_interaction")
    test_id: str = Field(default="", description="Prefixed sequential id, e.g. USCPR-01")
    name: str = Field(default="", description="Display name")
    outcome: TestOutcome
    message: str = Field(default="", description="Reason for the outcome")
    optional: bool = Field(default=False)
    timestamp: datetime = Field(default_factory=_utcnow)


class ReferenceRecord(BaseModel):
    """A resource discovered during a run."""

    model_config = ConfigDict(frozen=True)

    resource_type: str
    resource_id: str
    run_id: str


class SequenceReport(BaseModel):
    """All results of one sequence execution."""

    resource_type: str
    title: str
    delayed: bool = False
    missing_requirements: list[str] = Field(default_factory=list)
    results: list[TestResult] = Field(default_factory=list)

    @property
    def status(self) -> TestOutcome:
        return worst_outcome([result.outcome for result in self.results])

    def count(self, outcome: TestOutcome) -> int:
        return sum(1 for result in self.results if result.outcome == outcome)


class RunReport(BaseModel):
    """Ordered report for one test run."""

    run_id: str
    patient_id: str | None = None
    started_at: datetime = Field(default_factory=_utcnow)
    finished_at: datetime | None = None
    cancelled: bool = False
    sequences: list[SequenceReport] = Field(default_factory=list)

    @property
    def status(self) -> TestOutcome:
        return worst_outcome([sequence.status for sequence in self.sequences])

    def sequence(self, resource_type: str) -> SequenceReport | None:
        for report in self.sequences:
            if report.resource_type == resource_type:
                return report
        return None
