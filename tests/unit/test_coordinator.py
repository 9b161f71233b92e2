"""
Tests for run orchestration.
"""

import asyncio

import pytest

from conformance.config.resources import get_catalog
from conformance.engine.coordinator import RunCoordinator, delayed_run_order
from conformance.engine.sequence import SequenceDefinition, TestSpec
from conformance.errors import CapabilityFetchError, ConfigurationError, UnknownResourceTypeError
from conformance.models.results import TestOutcome
from conformance.sequences.uscore import build_catalog_sequences
from tests.conftest import PATIENT_ID, TOKEN, bundle, capability_statement

ALL_TYPES = ("CarePlan", "Condition", "DocumentReference", "Organization", "Practitioner", "Patient", "Provenance")


class StaticCapabilities:
    """Capability source returning a fixed statement."""

    def __init__(self, statement=None, error=None):
        self.statement = statement
        self.error = error

    async def fetch_capabilities(self):
        if self.error:
            raise self.error
        return self.statement


def coordinator_for(server, capability_source=None, **kwargs) -> RunCoordinator:
    return RunCoordinator(
        sequences=build_catalog_sequences(get_catalog()),
        client_factory=server.client,
        capability_source=capability_source or StaticCapabilities(capability_statement(*ALL_TYPES)),
        **kwargs,
    )


def stub_careplan_server(server, careplan, practitioner):
    server.stub("CarePlan", json_body=bundle(careplan), params={"patient": PATIENT_ID, "category": "assess-plan"})
    server.stub("CarePlan", status=401, params={"patient": PATIENT_ID})
    server.stub("CarePlan/cp-1", json_body=careplan)
    server.stub("Practitioner/pr-1", json_body=practitioner)
    server.stub("Practitioner", json_body=bundle(practitioner), params={"name": "Bone"})


class TestRunCoordinator:
    """Tests for RunCoordinator."""

    @pytest.mark.asyncio
    async def test_report_in_selection_order(self, server):
        """Should report sequences in the order they were selected."""
        coordinator = coordinator_for(server)

        report = await coordinator.start_run(PATIENT_ID, TOKEN, ["Practitioner", "CarePlan"])

        assert [s.resource_type for s in report.sequences] == ["Practitioner", "CarePlan"]
        assert report.patient_id == PATIENT_ID
        assert report.finished_at is not None
        assert not report.cancelled

    @pytest.mark.asyncio
    async def test_unknown_type(self, server):
        """Should refuse to start with an unconfigured resource type."""
        with pytest.raises(UnknownResourceTypeError) as exc_info:
            await coordinator_for(server).start_run(PATIENT_ID, TOKEN, ["Immunization"])
        assert "Immunization" in exc_info.value.message

    @pytest.mark.asyncio
    async def test_delayed_sequence_seeded_from_references(self, server, sample_careplan, sample_practitioner):
        """Should test Practitioners discovered through CarePlan references."""
        stub_careplan_server(server, sample_careplan, sample_practitioner)

        report = await coordinator_for(server).start_run(PATIENT_ID, TOKEN, ["Practitioner", "CarePlan"])

        practitioner = {r.test_key: r for r in report.sequence("Practitioner").results}
        assert practitioner["resource_read"].outcome == TestOutcome.PASS
        assert practitioner["search_by_name"].outcome == TestOutcome.PASS
        careplan = {r.test_key: r for r in report.sequence("CarePlan").results}
        assert careplan["search_by_patient_category"].outcome == TestOutcome.PASS
        assert careplan["read_interaction"].outcome == TestOutcome.PASS

    @pytest.mark.asyncio
    async def test_delayed_sequence_without_references(self, server):
        """Should skip every Practitioner test and never search for Practitioner."""
        report = await coordinator_for(server).start_run(PATIENT_ID, TOKEN, ["Practitioner"])

        results = report.sequence("Practitioner").results
        assert results
        assert all(result.outcome == TestOutcome.SKIP for result in results)
        assert server.requests_to("Practitioner") == []
        assert report.status == TestOutcome.SKIP

    @pytest.mark.asyncio
    async def test_unauthorized_search_does_not_leak_between_sequences(self, server, sample_careplan):
        """Should keep the token on every request outside the unauthorized test."""
        server.stub("CarePlan", json_body=bundle(sample_careplan), params={"patient": PATIENT_ID, "category": "assess-plan"})
        server.stub("Condition", json_body=bundle(), params={"patient": PATIENT_ID})

        await coordinator_for(server, max_concurrent_sequences=4).start_run(
            PATIENT_ID, TOKEN, ["CarePlan", "Condition", "DocumentReference"]
        )

        anonymous = [request for request in server.requests if "authorization" not in request.headers]
        authorized = [request for request in server.requests if "authorization" in request.headers]

        # one unauthorized probe per sequence, nothing else goes out without the token
        assert len(anonymous) == 3
        assert all(request.headers["authorization"] == f"Bearer {TOKEN}" for request in authorized)
        assert len(authorized) > 3

    @pytest.mark.asyncio
    async def test_missing_token_requirement(self, server):
        """Should report the missing token and omit unauthorized tests."""
        report = await coordinator_for(server).start_run(PATIENT_ID, "", ["CarePlan"])

        sequence = report.sequence("CarePlan")
        assert sequence.missing_requirements == ["token"]
        unauthorized = sequence.results[0]
        assert unauthorized.test_key == "unauthorized_search"
        assert unauthorized.outcome == TestOutcome.OMIT
        assert unauthorized.message == "Do not test if no bearer token set"

    @pytest.mark.asyncio
    async def test_capability_fetch_failure(self, server):
        """Should run with an empty capability index when metadata fails."""
        source = StaticCapabilities(error=CapabilityFetchError("http://www.example.com/fhir/metadata", status=500))

        report = await coordinator_for(server, capability_source=source).start_run(PATIENT_ID, TOKEN, ["CarePlan"])

        first = report.sequence("CarePlan").results[0]
        assert first.outcome == TestOutcome.SKIP
        assert first.message == (
            "This server does not support CarePlan search operation(s) according to conformance statement."
        )

    @pytest.mark.asyncio
    async def test_no_capability_source(self, server):
        """Should treat every interaction as unsupported without a source."""
        coordinator = RunCoordinator(sequences=build_catalog_sequences(get_catalog()), client_factory=server.client)
        capabilities = await coordinator.load_capabilities()
        assert not capabilities.present

    @pytest.mark.asyncio
    async def test_cancel(self, server):
        """Should stop between tests and flag the report as cancelled."""
        coordinator = None

        async def cancels(ctx):
            coordinator.cancel()

        async def never(ctx):
            raise AssertionError("should not run")

        definition = SequenceDefinition(
            resource_type="CarePlan",
            title="Care Plan Tests",
            tests=(
                TestSpec(key="first", id="01", name="first", body=cancels),
                TestSpec(key="second", id="02", name="second", body=never),
            ),
        )
        coordinator = RunCoordinator(
            sequences={"CarePlan": definition},
            client_factory=server.client,
            capability_source=StaticCapabilities(capability_statement("CarePlan")),
        )

        report = await coordinator.start_run(PATIENT_ID, TOKEN)

        assert report.cancelled
        assert [r.test_key for r in report.sequence("CarePlan").results] == ["first"]

    @pytest.mark.asyncio
    async def test_concurrency_limit(self, server):
        """Should not run more patient-scoped sequences at once than allowed."""
        active = 0
        peak = 0

        async def body(ctx):
            nonlocal active, peak
            active += 1
            peak = max(peak, active)
            await asyncio.sleep(0.01)
            active -= 1

        sequences = {
            name: SequenceDefinition(
                resource_type=name,
                title=name,
                tests=(TestSpec(key="only", id="01", name="only", body=body),),
            )
            for name in ("A", "B", "C", "D")
        }
        coordinator = RunCoordinator(
            sequences=sequences,
            client_factory=server.client,
            capability_source=StaticCapabilities(None),
            max_concurrent_sequences=2,
        )

        report = await coordinator.start_run(PATIENT_ID, TOKEN)

        assert peak == 2
        assert [s.resource_type for s in report.sequences] == ["A", "B", "C", "D"]

    @pytest.mark.asyncio
    async def test_delayed_runs_after_patient_scoped(self, server):
        """Should start delayed sequences only once the others have finished."""
        order = []

        def recorder(name):
            async def body(ctx):
                await asyncio.sleep(0.01 if name == "Patient-scoped" else 0)
                order.append(name)

            return body

        sequences = {
            "Delayed": SequenceDefinition(
                resource_type="Delayed",
                title="Delayed",
                tests=(TestSpec(key="only", id="01", name="only", body=recorder("Delayed")),),
                delayed=True,
            ),
            "Scoped": SequenceDefinition(
                resource_type="Scoped",
                title="Scoped",
                tests=(TestSpec(key="only", id="01", name="only", body=recorder("Patient-scoped")),),
            ),
        }
        coordinator = RunCoordinator(
            sequences=sequences,
            client_factory=server.client,
            capability_source=StaticCapabilities(None),
            max_concurrent_sequences=4,
        )

        report = await coordinator.start_run(PATIENT_ID, TOKEN, ["Delayed", "Scoped"])

        assert order == ["Patient-scoped", "Delayed"]
        assert [s.resource_type for s in report.sequences] == ["Delayed", "Scoped"]

    @pytest.mark.asyncio
    async def test_delayed_sequence_seeded_by_another_delayed_sequence(self, server, sample_careplan, sample_practitioner):
        """Should seed Organization from a reference only the Practitioner carries."""
        careplan = {key: value for key, value in sample_careplan.items() if key != "contributor"}
        practitioner = dict(
            sample_practitioner,
            qualification=[{"code": {"text": "MD"}, "issuer": {"reference": "Organization/org-9"}}],
        )
        stub_careplan_server(server, careplan, practitioner)
        server.stub("Organization/org-9", json_body={"resourceType": "Organization", "id": "org-9", "name": "Acme"})

        selected = get_catalog().ordered_types()
        report = await coordinator_for(server).start_run(PATIENT_ID, TOKEN, selected)

        assert [s.resource_type for s in report.sequences] == selected
        organization = {r.test_key: r for r in report.sequence("Organization").results}
        assert organization["resource_read"].outcome == TestOutcome.PASS
        assert server.requests_to("Organization/org-9")


def delayed(name, depends_on=()):
    return SequenceDefinition(resource_type=name, title=name, tests=(), delayed=True, depends_on=depends_on)


class TestDelayedRunOrder:
    """Tests for delayed_run_order function."""

    def test_dependencies_run_first(self):
        """Should move a sequence behind the ones it depends on."""
        organization = delayed("Organization", ("Practitioner",))
        practitioner = delayed("Practitioner")
        scoped = SequenceDefinition(resource_type="CarePlan", title="CarePlan", tests=())

        ordered = delayed_run_order([scoped, organization, practitioner])

        assert [d.resource_type for d in ordered] == ["Practitioner", "Organization"]

    def test_keeps_selection_order_otherwise(self):
        """Should keep independent sequences in selection order."""
        ordered = delayed_run_order([delayed("B"), delayed("A"), delayed("C", ("A",))])
        assert [d.resource_type for d in ordered] == ["B", "A", "C"]

    def test_ignores_unselected_dependencies(self):
        """Should not wait for types that are not part of the run."""
        ordered = delayed_run_order([delayed("Organization", ("Practitioner",))])
        assert [d.resource_type for d in ordered] == ["Organization"]

    def test_cycle(self):
        """Should refuse delayed sequences that depend on each other."""
        with pytest.raises(ConfigurationError, match="cycle"):
            delayed_run_order([delayed("A", ("B",)), delayed("B", ("A",))])
