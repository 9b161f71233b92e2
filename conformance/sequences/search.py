"""
Helpers shared by search-driven tests.
"""

from typing import Any

from conformance.config.logging import get_logger
from conformance.config.resources import ResourceDefinition
from conformance.engine.assertions import (
    entries_of_type,
    expect_bundle,
    expect_ok,
    expect_search_results_match,
)
from conformance.engine.paths import first_search_value, iter_references, split_reference
from conformance.engine.sequence import TestContext
from conformance.errors import SkipTest
from conformance.models.fhir import FHIRResponse

logger = get_logger(__name__)


def no_resources_message(resource_type: str | None = None) -> str:
    """Skip message for a search that returned nothing to test with."""
    subject = f"No {resource_type} resources" if resource_type else "No resources"
    return f"{subject} appear to be available for this patient. Please use patients with more information."


def not_found_message(resource_type: str) -> str:
    """Skip message for tests that need an instance found earlier in the sequence."""
    return (
        f"No {resource_type} resources could be found for this patient. "
        "Please use patients with more information."
    )


def resolve_search_params(
    resource: ResourceDefinition,
    params: tuple[str, ...],
    ctx: TestContext,
) -> dict[str, str]:
    """
    Work out a value for every parameter of a search.

    Values come from the configured fixed values, from the run's patient for
    ``patient``, and otherwise from the instances fetched so far.

    Raises:
        SkipTest: If any parameter has no usable value
    """
    values: dict[str, str] = {}
    for name in params:
        if name in resource.fixed_values:
            value = resource.fixed_values[name]
        elif name == "patient":
            value = ctx.run.patient_id
        else:
            value = first_search_value(ctx.state.resources, resource.search_param(name).path)
        if not value:
            raise SkipTest(f"Could not resolve {name} in given resource")
        values[name] = value
    return values


async def search(ctx: TestContext, resource_type: str, params: dict[str, str]) -> FHIRResponse:
    logger.debug(f"Searching {resource_type}", params=params)
    return await ctx.client.get(resource_type, params=params)


async def fetch_all_resources(
    ctx: TestContext,
    resource_type: str,
    response: FHIRResponse,
) -> list[dict[str, Any]]:
    """
    Collect entries of ``resource_type`` across every page of a search.

    Follows ``next`` links until they run out or the page limit is hit.
    Pages after the first that fail are logged and end the walk.
    """
    resources = entries_of_type(response, resource_type)
    page = response
    pages = 1

    while pages < ctx.run.options.max_search_pages:
        next_url = page.next_link()
        if not next_url:
            break
        page = await ctx.client.get(next_url)
        if page.status != 200:
            logger.warning(
                f"Stopped paging {resource_type} search",
                status=page.status,
                page=pages + 1,
            )
            break
        resources.extend(entries_of_type(page, resource_type))
        pages += 1

    return resources


def record_resources(ctx: TestContext, resource_type: str, resources: list[dict[str, Any]]) -> None:
    """Store the IDs of fetched instances in the run's reference store."""
    ids = [resource["id"] for resource in resources if resource.get("id")]
    added = ctx.references.record_many(resource_type, ids)
    if added:
        logger.debug(f"Recorded {added} new {resource_type} reference(s)")


def record_delayed_references(
    ctx: TestContext,
    resources: list[dict[str, Any]],
    delayed_types: frozenset[str],
) -> int:
    """
    Record references to delayed resource types found inside ``resources``.

    This is how a Practitioner referenced from a CarePlan becomes testable by
    the Practitioner sequence later in the run.
    """
    added = 0
    for resource in resources:
        for reference in iter_references(resource):
            target = split_reference(reference)
            if target and target[0] in delayed_types:
                added += ctx.references.record(*target)
    return added


def validate_search_reply(
    ctx: TestContext,
    resource: ResourceDefinition,
    response: FHIRResponse,
    params: dict[str, str],
    entries: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """Check status, Bundle shape and that results honour the parameters."""
    expect_ok(response)
    expect_bundle(response)
    return expect_search_results_match(
        response,
        resource.resource_type,
        params,
        resource.search_params,
        strict=ctx.run.options.strict_search_matching,
        entries=entries,
    )
