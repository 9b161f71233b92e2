"""
Run-scoped state shared by every sequence of one test run.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Protocol

from conformance.constants import DEFAULT_FHIR_VERSION, MAX_REFERENCE_CHECKS, MAX_SEARCH_PAGES
from conformance.engine.capabilities import CapabilityIndex
from conformance.engine.references import ReferenceStore
from conformance.models.fhir import FHIRResponse, ValidationIssue


class FHIRClient(Protocol):
    """HTTP capability the engine drives the server under test through."""

    async def get(
        self,
        path: str,
        params: dict[str, str] | None = None,
        headers: dict[str, str] | None = None,
    ) -> FHIRResponse: ...

    def set_auth(self, token: str | None) -> None: ...


class ProfileValidator(Protocol):
    """Validates a resource instance against a published profile."""

    async def validate(self, resource: dict, profile_url: str) -> list[ValidationIssue]: ...


@dataclass(frozen=True)
class RunOptions:
    """Knobs that shape how tests behave during a run."""

    max_search_pages: int = MAX_SEARCH_PAGES
    max_reference_checks: int = MAX_REFERENCE_CHECKS
    strict_search_matching: bool = False


@dataclass
class RunContext:
    """
    Everything one test run owns.

    The token is the configured bearer token. Tests that need to send an
    unauthenticated request clear the auth on their own client and restore
    it afterwards; the value here is never modified by a test.
    """

    run_id: str
    patient_id: str | None
    token: str = ""
    fhir_version: str = DEFAULT_FHIR_VERSION
    capabilities: CapabilityIndex = field(default_factory=CapabilityIndex)
    references: ReferenceStore | None = None
    options: RunOptions = field(default_factory=RunOptions)
    validator: ProfileValidator | None = None
    cancelled: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        if self.references is None:
            self.references = ReferenceStore(self.run_id)

    @property
    def has_token(self) -> bool:
        return bool(self.token and self.token.strip())

    def cancel(self) -> None:
        self.cancelled.set()

    @property
    def is_cancelled(self) -> bool:
        return self.cancelled.is_set()
