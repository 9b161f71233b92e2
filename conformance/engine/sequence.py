"""
Declarative model of a test sequence.

A SequenceDefinition is an ordered list of TestSpecs. Order matters: later
tests read the SequenceRunState earlier ones left behind (what was found,
which instance was fetched last).
"""

from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass, field
from typing import Any

from conformance.engine.context import FHIRClient, RunContext


@dataclass(frozen=True)
class CapabilityGate:
    """Interactions the server must declare before a test body runs."""

    resource_type: str
    interactions: tuple[str, ...]

    @property
    def skip_message(self) -> str:
        return (
            f"This server does not support {self.resource_type} "
            f"{','.join(self.interactions)} operation(s) according to conformance statement."
        )


@dataclass
class SequenceRunState:
    """
    Mutable memory of one sequence execution.

    ``resource`` only ever holds an instance the server actually returned
    with a successful status, so dependent tests never validate against a
    failed fetch.
    """

    resources_found: bool = False
    resource: dict[str, Any] | None = None
    resources: list[dict[str, Any]] = field(default_factory=list)
    seeded_ids: list[str] = field(default_factory=list)

    def remember(self, resources: list[dict[str, Any]]) -> None:
        """Adopt a fresh set of fetched instances as the working list."""
        self.resources = list(resources)
        self.resource = self.resources[0] if self.resources else None
        self.resources_found = bool(self.resources)

    def add(self, resource: dict[str, Any]) -> None:
        """Append one instance unless an instance with the same id is known."""
        resource_id = resource.get("id")
        if resource_id and any(existing.get("id") == resource_id for existing in self.resources):
            return
        self.resources.append(resource)


@dataclass
class TestContext:
    """What a test body gets to work with."""

    __test__ = False

    run: RunContext
    state: SequenceRunState
    client: FHIRClient

    @property
    def references(self):
        return self.run.references


TestBody = Callable[[TestContext], Awaitable[None]]


@dataclass(frozen=True)
class TestSpec:
    """One test: metadata plus the coroutine that performs it."""

    __test__ = False

    key: str
    id: str
    name: str
    body: TestBody
    description: str = ""
    link: str | None = None
    versions: tuple[str, ...] = ("r4",)
    optional: bool = False
    capability_gate: CapabilityGate | None = None


@dataclass(frozen=True)
class SequenceDefinition:
    """An ordered suite of tests for one resource type."""

    resource_type: str
    title: str
    tests: tuple[TestSpec, ...]
    test_id_prefix: str = ""
    description: str = ""
    requirements: tuple[str, ...] = ()
    conformance_supports: tuple[str, ...] = ()
    delayed: bool = False
    # delayed types whose sequences record references this one is seeded from
    depends_on: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        keys = [test.key for test in self.tests]
        duplicates = sorted({key for key in keys if keys.count(key) > 1})
        if duplicates:
            raise ValueError(f"Duplicate test keys in {self.title}: {', '.join(duplicates)}")

    def __getitem__(self, key: str) -> TestSpec:
        for test in self.tests:
            if test.key == key:
                return test
        raise KeyError(key)

    def __iter__(self) -> Iterator[TestSpec]:
        return iter(self.tests)

    def __len__(self) -> int:
        return len(self.tests)

    def full_test_id(self, test: TestSpec) -> str:
        if self.test_id_prefix:
            return f"{self.test_id_prefix}-{test.id}"
        return test.id
