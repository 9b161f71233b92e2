"""
Run orchestration.

A run executes every selected sequence against one patient. Patient-scoped
sequences go first (optionally several at a time); delayed sequences follow
once all of them have finished, each seeded with the IDs the earlier
sequences recorded for its resource type. A delayed sequence that names
other delayed types in ``depends_on`` waits for their sequences too.
"""

import asyncio
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any, Protocol

from conformance.config.logging import get_logger, set_run_id
from conformance.constants import DEFAULT_FHIR_VERSION
from conformance.engine.capabilities import CapabilityIndex
from conformance.engine.context import FHIRClient, ProfileValidator, RunContext, RunOptions
from conformance.engine.runner import SequenceRunner
from conformance.engine.sequence import SequenceDefinition, SequenceRunState
from conformance.errors import CapabilityFetchError, ConfigurationError, UnknownResourceTypeError
from conformance.models.results import RunReport, SequenceReport

logger = get_logger(__name__)

ClientFactory = Callable[[str | None], FHIRClient]


class CapabilitySource(Protocol):
    async def fetch_capabilities(self) -> dict[str, Any] | None: ...


def delayed_run_order(selected: list[SequenceDefinition]) -> list[SequenceDefinition]:
    """
    Order the delayed sequences so each runs after the ones it depends on.

    Dependencies on types that were not selected are ignored. Among sequences
    whose dependencies are satisfied, selection order is kept.

    Raises:
        ConfigurationError: If the selected delayed sequences depend on each
            other in a cycle
    """
    pending = [definition for definition in selected if definition.delayed]
    pending_types = {definition.resource_type for definition in pending}
    ordered: list[SequenceDefinition] = []

    while pending:
        ready = next(
            (
                definition
                for definition in pending
                if not pending_types.intersection(definition.depends_on)
            ),
            None,
        )
        if ready is None:
            cycle = ", ".join(definition.resource_type for definition in pending)
            raise ConfigurationError(
                f"Delayed sequences depend on each other in a cycle: {cycle}",
                details={"resource_types": sorted(pending_types)},
            )
        pending.remove(ready)
        pending_types.discard(ready.resource_type)
        ordered.append(ready)

    return ordered


class RunCoordinator:
    """Runs a set of sequences for one patient and collects the report."""

    def __init__(
        self,
        sequences: dict[str, SequenceDefinition],
        client_factory: ClientFactory,
        capability_source: CapabilitySource | None = None,
        validator: ProfileValidator | None = None,
        options: RunOptions | None = None,
        fhir_version: str = DEFAULT_FHIR_VERSION,
        max_concurrent_sequences: int = 1,
    ):
        """
        Initialize the coordinator.

        Args:
            sequences: Sequence definitions keyed by resource type
            client_factory: Builds a client carrying the given bearer token;
                called once per sequence
            capability_source: Where the CapabilityStatement comes from
            validator: Profile validator handed to profile tests
            options: Behavioural knobs shared by all tests of a run
            fhir_version: FHIR version tests are filtered by
            max_concurrent_sequences: Patient-scoped sequences run at once
        """
        self.sequences = sequences
        self.client_factory = client_factory
        self.capability_source = capability_source
        self.validator = validator
        self.options = options or RunOptions()
        self.fhir_version = fhir_version
        self.max_concurrent_sequences = max(1, max_concurrent_sequences)
        self.context: RunContext | None = None

    async def load_capabilities(self) -> CapabilityIndex:
        """Fetch the CapabilityStatement; any failure leaves the index empty."""
        if self.capability_source is None:
            logger.warning("No capability source configured, treating every interaction as unsupported")
            return CapabilityIndex(None)
        try:
            statement = await self.capability_source.fetch_capabilities()
        except CapabilityFetchError as e:
            logger.warning(e.message, **e.details)
            return CapabilityIndex(None)
        return CapabilityIndex(statement)

    def select(self, resource_types: Iterable[str] | None) -> list[SequenceDefinition]:
        """
        Resolve the selected resource types to sequences.

        Raises:
            UnknownResourceTypeError: If a selected type has no sequence
        """
        if resource_types is None:
            return list(self.sequences.values())
        selected = []
        for resource_type in resource_types:
            definition = self.sequences.get(resource_type)
            if definition is None:
                raise UnknownResourceTypeError(resource_type, sorted(self.sequences))
            selected.append(definition)
        return selected

    def cancel(self) -> None:
        """Stop the active run after the test currently executing."""
        if self.context is not None:
            logger.info("Cancelling run", run_id=self.context.run_id)
            self.context.cancel()

    async def start_run(
        self,
        patient_id: str | None,
        token: str | None,
        resource_types: Iterable[str] | None = None,
    ) -> RunReport:
        """
        Execute a full test run.

        Args:
            patient_id: Patient the patient-scoped searches are made for
            token: Bearer token; blank means unauthorized tests are omitted
            resource_types: Types to test, in report order (all if None)

        Returns:
            RunReport with one SequenceReport per selected type, in selection order
        """
        selected = self.select(resource_types)
        delayed = delayed_run_order(selected)
        run_id = set_run_id()

        capabilities = await self.load_capabilities()
        context = RunContext(
            run_id=run_id,
            patient_id=patient_id,
            token=token or "",
            fhir_version=self.fhir_version,
            capabilities=capabilities,
            options=self.options,
            validator=self.validator,
        )
        self.context = context
        report = RunReport(run_id=run_id, patient_id=patient_id)

        logger.info(
            "Starting run",
            patient_id=patient_id,
            sequences=[definition.resource_type for definition in selected],
            capability_statement=capabilities.present,
            server_fhir_version=capabilities.fhir_version,
        )
        if capabilities.present:
            undeclared = [
                definition.resource_type
                for definition in selected
                if not capabilities.supports_resource(definition.resource_type)
            ]
            if undeclared:
                logger.warning(
                    "Selected resource types missing from the CapabilityStatement",
                    resource_types=undeclared,
                )

        reports: dict[str, SequenceReport] = {}
        semaphore = asyncio.Semaphore(self.max_concurrent_sequences)

        async def run_bounded(definition: SequenceDefinition) -> None:
            async with semaphore:
                reports[definition.resource_type] = await self._run_sequence(definition, context)

        await asyncio.gather(*(run_bounded(d) for d in selected if not d.delayed))

        for definition in delayed:
            reports[definition.resource_type] = await self._run_sequence(definition, context)

        report.sequences = [reports[d.resource_type] for d in selected]
        report.finished_at = datetime.now(timezone.utc)
        report.cancelled = context.is_cancelled

        logger.info(
            "Finished run",
            status=report.status.value,
            references=len(context.references),
            cancelled=report.cancelled,
        )
        return report

    async def _run_sequence(self, definition: SequenceDefinition, context: RunContext) -> SequenceReport:
        missing = [
            requirement
            for requirement in definition.requirements
            if requirement == "token" and not context.has_token
        ]
        if missing:
            logger.warning(
                f"{definition.title} is missing requirements",
                missing=missing,
            )

        state = SequenceRunState()
        if definition.delayed:
            state.seeded_ids = context.references.list_ids(definition.resource_type)
            logger.info(
                f"Seeding delayed sequence {definition.title}",
                seeded=len(state.seeded_ids),
            )

        runner = SequenceRunner(self.client_factory(context.token or None))
        results = await runner.run(definition, context, state)

        return SequenceReport(
            resource_type=definition.resource_type,
            title=definition.title,
            delayed=definition.delayed,
            missing_requirements=missing,
            results=results,
        )
