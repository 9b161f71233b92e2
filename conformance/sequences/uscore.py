"""
US Core sequence builder.

One generic builder produces the whole test list for any configured resource
type. Patient-scoped resources start from a search by patient; delayed
resources (Practitioner, Organization, ...) start from IDs other sequences
discovered as references and never search for themselves until they have an
instance to take search values from.
"""

from collections.abc import Iterable

from conformance.config.logging import get_logger
from conformance.config.resources import ResourceCatalog, ResourceDefinition
from conformance.constants import (
    BEHAVIOR_LINK,
    CAPABILITY_STATEMENT_LINK,
    MUST_SUPPORT_LINK,
    REFERENCES_LINK,
    REVINCLUDE_LINK,
)
from conformance.engine.assertions import (
    assert_true,
    expect_body_present,
    expect_body_type,
    expect_bundle,
    expect_history_bundle,
    expect_ok,
    expect_resource_id,
    expect_unauthorized,
)
from conformance.engine.paths import can_resolve_path, iter_references, split_reference
from conformance.engine.sequence import (
    CapabilityGate,
    SequenceDefinition,
    TestBody,
    TestContext,
    TestSpec,
)
from conformance.errors import AssertionFailure, OmitTest, SkipTest
from conformance.sequences.search import (
    fetch_all_resources,
    no_resources_message,
    not_found_message,
    record_delayed_references,
    record_resources,
    resolve_search_params,
    search,
    validate_search_reply,
)

logger = get_logger(__name__)

MAX_REPORTED_ISSUES = 10


class _TestList:
    """Accumulates TestSpecs and numbers them in the order they are added."""

    def __init__(self, resource: ResourceDefinition):
        self.resource = resource
        self.tests: list[TestSpec] = []

    def add(
        self,
        key: str,
        name: str,
        body: TestBody,
        *,
        description: str = "",
        link: str | None = CAPABILITY_STATEMENT_LINK,
        optional: bool = False,
        gate: Iterable[str] | None = None,
    ) -> None:
        capability_gate = None
        if gate:
            capability_gate = CapabilityGate(self.resource.resource_type, tuple(gate))
        self.tests.append(
            TestSpec(
                key=key,
                id=f"{len(self.tests) + 1:02d}",
                name=name,
                body=body,
                description=description,
                link=link,
                versions=self.resource.versions,
                optional=optional,
                capability_gate=capability_gate,
            )
        )


def _search_key(params: tuple[str, ...]) -> str:
    return "search_by_" + "_".join(param.replace("-", "_") for param in params)


async def _read_instance(ctx: TestContext, resource_type: str, resource_id: str) -> dict:
    response = await ctx.client.get(f"{resource_type}/{resource_id}")
    expect_ok(response)
    expect_body_present(response, resource_type)
    resource = expect_body_type(response, resource_type)
    expect_resource_id(resource, resource_id)
    return resource


# Test bodies


def _unauthorized_search(resource: ResourceDefinition) -> TestBody:
    async def body(ctx: TestContext) -> None:
        if not ctx.run.has_token:
            raise OmitTest("Do not test if no bearer token set")

        if resource.delayed:
            params = resolve_search_params(resource, resource.searches[0], ctx)
        else:
            params = resolve_search_params(resource, ("patient",), ctx)

        ctx.client.set_auth(None)
        try:
            response = await search(ctx, resource.resource_type, params)
        finally:
            ctx.client.set_auth(ctx.run.token)
        expect_unauthorized(response)

    return body


def _first_search(resource: ResourceDefinition, params: tuple[str, ...], delayed_types: frozenset[str]) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        values = resolve_search_params(resource, params, ctx)
        response = await search(ctx, resource_type, values)
        expect_ok(response)
        expect_bundle(response)

        found = await fetch_all_resources(ctx, resource_type, response)
        if not found:
            ctx.state.resources_found = False
            raise SkipTest(no_resources_message(resource_type))

        ctx.state.remember(found)
        record_resources(ctx, resource_type, found)
        record_delayed_references(ctx, found, delayed_types)
        validate_search_reply(ctx, resource, response, values, entries=found)

    return body


def _follow_up_search(resource: ResourceDefinition, params: tuple[str, ...], delayed_types: frozenset[str]) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found:
            raise SkipTest(no_resources_message(resource_type))

        values = resolve_search_params(resource, params, ctx)
        response = await search(ctx, resource_type, values)
        entries = validate_search_reply(ctx, resource, response, values)

        for entry in entries:
            ctx.state.add(entry)
        record_resources(ctx, resource_type, entries)
        record_delayed_references(ctx, entries, delayed_types)

    return body


def _read_interaction(resource: ResourceDefinition) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found:
            raise SkipTest(not_found_message(resource_type))

        resource_id = (ctx.state.resource or {}).get("id")
        if not resource_id:
            known = ctx.references.list_ids(resource_type)
            resource_id = known[0] if known else None
        if not resource_id:
            raise SkipTest(f"No {resource_type} id provided")

        fetched = await _read_instance(ctx, resource_type, resource_id)
        ctx.state.resource = fetched
        ctx.references.record(resource_type, resource_id)

    return body


def _delayed_resource_read(resource: ResourceDefinition, delayed_types: frozenset[str]) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.seeded_ids:
            raise SkipTest(f"No {resource_type} references found from the prior searches")

        fetched = await _read_instance(ctx, resource_type, ctx.state.seeded_ids[0])
        ctx.state.remember([fetched])
        record_delayed_references(ctx, [fetched], delayed_types)

    return body


def _vread_interaction(resource: ResourceDefinition) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found or not ctx.state.resource:
            raise SkipTest(not_found_message(resource_type))

        current = ctx.state.resource
        version_id = (current.get("meta") or {}).get("versionId")
        if not version_id:
            raise SkipTest(f"No {resource_type} versionId provided")

        response = await ctx.client.get(f"{resource_type}/{current['id']}/_history/{version_id}")
        expect_ok(response)
        expect_body_present(response, resource_type)
        expect_body_type(response, resource_type)

    return body


def _history_interaction(resource: ResourceDefinition) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found or not ctx.state.resource:
            raise SkipTest(not_found_message(resource_type))

        response = await ctx.client.get(f"{resource_type}/{ctx.state.resource['id']}/_history")
        expect_history_bundle(response)

    return body


def _revinclude(resource: ResourceDefinition, revinclude: str) -> TestBody:
    resource_type = resource.resource_type
    included_type = revinclude.split(":")[0]

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found:
            raise SkipTest(no_resources_message(resource_type))

        params = resolve_search_params(resource, resource.searches[0], ctx)
        params["_revinclude"] = revinclude
        response = await search(ctx, resource_type, params)
        expect_ok(response)
        expect_bundle(response)
        assert_true(
            any(entry.get("resourceType") == included_type for entry in response.bundle_entries),
            f"No {included_type} resources were returned from this search",
        )

    return body


def _validate_resources(resource: ResourceDefinition) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found:
            raise SkipTest(no_resources_message())
        if not resource.profile:
            raise OmitTest(f"No profile is declared for {resource_type}")
        if ctx.run.validator is None:
            raise OmitTest("No profile validator is configured")

        errors: list[str] = []
        for instance in ctx.state.resources:
            issues = await ctx.run.validator.validate(instance, resource.profile)
            for issue in issues:
                label = f"{resource_type}/{instance.get('id')}: {issue}"
                if issue.is_error:
                    errors.append(label)
                else:
                    logger.info("Profile validation finding", severity=issue.severity, finding=label)

        if errors:
            shown = "; ".join(errors[:MAX_REPORTED_ISSUES])
            more = len(errors) - MAX_REPORTED_ISSUES
            if more > 0:
                shown += f"; and {more} more"
            raise AssertionFailure(
                f"{len(errors)} validation error(s) found in {len(ctx.state.resources)} "
                f"{resource_type} resource(s): {shown}"
            )

    return body


def _must_support(resource: ResourceDefinition) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        instances = ctx.state.resources
        if not instances:
            raise SkipTest(
                "No resources appear to be available for this patient. "
                "Please use patients with more information"
            )

        for path in resource.must_support:
            if not any(can_resolve_path(instance, path) for instance in instances):
                raise SkipTest(
                    f"Could not find {path} in any of the {len(instances)} "
                    f"provided {resource_type} resource(s)"
                )

    return body


def _references_resolve(resource: ResourceDefinition) -> TestBody:
    resource_type = resource.resource_type

    async def body(ctx: TestContext) -> None:
        if not ctx.state.resources_found or not ctx.state.resource:
            raise SkipTest(no_resources_message())

        targets: list[tuple[str, str]] = []
        for reference in iter_references(ctx.state.resource):
            target = split_reference(reference)
            if target and target not in targets:
                targets.append(target)
        targets = targets[: ctx.run.options.max_reference_checks]

        unresolved: list[str] = []
        for target_type, target_id in targets:
            response = await ctx.client.get(f"{target_type}/{target_id}")
            found = response.resource if response.status == 200 else None
            if found and found.get("resourceType") == target_type:
                ctx.references.record(target_type, target_id)
            else:
                unresolved.append(f"{target_type}/{target_id}")

        if unresolved:
            raise AssertionFailure(
                f"The following references could not be resolved: {', '.join(unresolved)}"
            )
        logger.debug(f"Resolved {len(targets)} reference(s) from {resource_type}")

    return body


def build_sequence(
    resource: ResourceDefinition,
    delayed_types: Iterable[str] = (),
) -> SequenceDefinition:
    """
    Build the test sequence for one configured resource type.

    Args:
        resource: Configuration record for the resource type
        delayed_types: Resource types whose references should be recorded
            for delayed sequences when they show up in fetched instances

    Returns:
        The ordered SequenceDefinition
    """
    delayed = frozenset(delayed_types) - {resource.resource_type}
    resource_type = resource.resource_type
    tests = _TestList(resource)

    if resource.delayed:
        tests.add(
            "resource_read",
            f"Can read {resource_type} from the server",
            _delayed_resource_read(resource, delayed),
            description=f"Reference to {resource_type} can be resolved and read.",
            gate=["read"],
        )

    if resource.searches and resource.supports("search"):
        tests.add(
            "unauthorized_search",
            f"Server rejects {resource_type} search without authorization",
            _unauthorized_search(resource),
            description=(
                "A server SHALL reject any unauthorized requests by returning "
                "an HTTP 401 unauthorized response code."
            ),
            link=BEHAVIOR_LINK,
            gate=["search"],
        )

        for index, params in enumerate(resource.searches):
            joined = "+".join(params)
            factory = _first_search if index == 0 else _follow_up_search
            tests.add(
                _search_key(params),
                f"Server returns expected results from {resource_type} search by {joined}",
                factory(resource, params, delayed),
                description=f"A server SHALL support searching by {joined} on the {resource_type} resource",
                gate=["search"],
            )

    if not resource.delayed and resource.supports("read"):
        tests.add(
            "read_interaction",
            f"Server returns correct {resource_type} resource from {resource_type} read interaction",
            _read_interaction(resource),
            description=f"A server SHALL support the {resource_type} read interaction.",
            gate=["read"],
        )

    if resource.supports("vread"):
        tests.add(
            "vread_interaction",
            f"{resource_type} vread interaction supported",
            _vread_interaction(resource),
            description=f"A server SHOULD support the {resource_type} vread interaction.",
            optional=True,
            gate=["vread"],
        )

    if resource.supports("history"):
        tests.add(
            "history_interaction",
            f"{resource_type} history interaction supported",
            _history_interaction(resource),
            description=f"A server SHOULD support the {resource_type} history interaction.",
            optional=True,
            gate=["history"],
        )

    if resource.searches and resource.supports("search"):
        for revinclude in resource.revincludes:
            tests.add(
                "revinclude_" + revinclude.replace(":", "_").lower(),
                f"Server returns the appropriate resources from the following _revincludes: {revinclude}",
                _revinclude(resource, revinclude),
                description=f"A Server SHALL be capable of supporting the following _revincludes: {revinclude}",
                link=REVINCLUDE_LINK,
                gate=["search"],
            )

    tests.add(
        "validate_resources",
        f"{resource_type} resources returned from previous searches conform to the US Core profile",
        _validate_resources(resource),
        description=(
            "Checks that the resources returned from prior searches conform to "
            f"{resource.profile or 'the declared profile'}."
        ),
        link=resource.profile,
    )

    if resource.must_support:
        tests.add(
            "must_support",
            f"At least one of every must support element is provided in any {resource_type} for this patient.",
            _must_support(resource),
            description="Looks through all fetched resources for: " + ", ".join(resource.must_support),
            link=MUST_SUPPORT_LINK,
        )

    tests.add(
        "references_resolve",
        "All references can be resolved",
        _references_resolve(resource),
        description="Checks that references found in resources from prior searches can be resolved.",
        link=REFERENCES_LINK,
        gate=["search", "read"],
    )

    return SequenceDefinition(
        resource_type=resource_type,
        title=resource.title,
        tests=tuple(tests.tests),
        test_id_prefix=resource.test_id_prefix,
        description=resource.description,
        requirements=resource.requirements,
        conformance_supports=(resource_type,),
        delayed=resource.delayed,
        depends_on=resource.depends_on,
    )


def build_catalog_sequences(catalog: ResourceCatalog) -> dict[str, SequenceDefinition]:
    """Build a sequence for every resource type in the catalog."""
    delayed_types = catalog.delayed_types
    return {
        resource_type: build_sequence(definition, delayed_types)
        for resource_type, definition in catalog.resources.items()
    }
