"""
Sequence execution.

The runner walks a SequenceDefinition in order and turns whatever each test
body signals into a TestResult. A body ends itself by raising SkipTest,
OmitTest or AssertionFailure; any other exception is recorded as an error.
Nothing a body raises stops the loop.
"""

from conformance.config.logging import get_logger
from conformance.engine.context import FHIRClient, RunContext
from conformance.engine.sequence import (
    SequenceDefinition,
    SequenceRunState,
    TestContext,
    TestSpec,
)
from conformance.errors import AssertionFailure, OmitTest, SkipTest
from conformance.models.results import TestOutcome, TestResult

logger = get_logger(__name__)


class SequenceRunner:
    """Executes the tests of one sequence against a live client."""

    def __init__(self, client: FHIRClient):
        self.client = client

    async def run(
        self,
        definition: SequenceDefinition,
        context: RunContext,
        state: SequenceRunState | None = None,
    ) -> list[TestResult]:
        """
        Run every test of ``definition`` in declared order.

        Args:
            definition: The sequence to execute
            context: Run-scoped context (capabilities, references, token)
            state: Initial sequence memory; a fresh one is created if omitted

        Returns:
            One TestResult per executed test. Fewer results than tests means
            the run was cancelled.
        """
        state = state if state is not None else SequenceRunState()
        results: list[TestResult] = []

        logger.info(
            f"Starting sequence {definition.title}",
            resource_type=definition.resource_type,
            tests=len(definition),
            delayed=definition.delayed,
        )

        for test in definition:
            if context.is_cancelled:
                logger.warning(
                    f"Run cancelled, stopping {definition.title}",
                    executed=len(results),
                    remaining=len(definition) - len(results),
                )
                break
            result = await self.run_test(definition, test, context, state)
            results.append(result)

        return results

    async def run_test(
        self,
        definition: SequenceDefinition,
        test: TestSpec,
        context: RunContext,
        state: SequenceRunState,
    ) -> TestResult:
        """Run a single test and record its outcome."""
        outcome, message = await self._execute(test, context, state)

        result = TestResult(
            test_key=test.key,
            test_id=definition.full_test_id(test),
            name=test.name,
            outcome=outcome,
            message=message,
            optional=test.optional,
        )

        log = logger.warning if outcome in (TestOutcome.FAIL, TestOutcome.ERROR) else logger.info
        log(
            "test.result",
            sequence=definition.title,
            test_id=result.test_id,
            outcome=outcome.value,
            message=message,
        )
        return result

    async def _execute(
        self,
        test: TestSpec,
        context: RunContext,
        state: SequenceRunState,
    ) -> tuple[TestOutcome, str]:
        if context.fhir_version not in test.versions:
            return TestOutcome.OMIT, f"This test does not apply to FHIR version {context.fhir_version}."

        gate = test.capability_gate
        if gate:
            missing = context.capabilities.unsupported(gate.resource_type, gate.interactions)
            if missing:
                logger.debug("Capability gate closed", test_id=test.id, missing=missing)
                return TestOutcome.SKIP, gate.skip_message

        try:
            await test.body(TestContext(run=context, state=state, client=self.client))
        except SkipTest as e:
            return TestOutcome.SKIP, e.message
        except OmitTest as e:
            return TestOutcome.OMIT, e.message
        except AssertionFailure as e:
            return TestOutcome.FAIL, e.message
        except Exception as e:
            logger.exception(f"Unexpected error in test {test.key}")
            return TestOutcome.ERROR, f"{e.__class__.__name__}: {e}"

        return TestOutcome.PASS, ""
