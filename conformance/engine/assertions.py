"""
Assertions over server responses.

Every check raises AssertionFailure with a fully formatted message. The
messages are part of the engine's contract: reports and tests compare them
verbatim.
"""

from collections.abc import Iterable, Mapping
from typing import Any

from conformance.constants import BODY_EXCERPT_CHARS, OK_CODES, UNAUTHORIZED_CODES
from conformance.engine.matchers import get_matcher
from conformance.errors import AssertionFailure
from conformance.models.fhir import FHIRResponse


def assert_true(condition: Any, message: str) -> None:
    """Fail with ``message`` unless ``condition`` holds."""
    if not condition:
        raise AssertionFailure(message)


def expect_status(response: FHIRResponse, allowed: Iterable[int], excerpt: str | None = None) -> None:
    """
    Require one of the ``allowed`` status codes.

    Args:
        response: Server response
        allowed: Acceptable status codes
        excerpt: Extra context appended to the message; defaults to the start
            of the response body
    """
    allowed = list(allowed)
    if response.status in allowed:
        return
    if excerpt is None:
        excerpt = response.body_excerpt(BODY_EXCERPT_CHARS)
    expected = ", ".join(str(code) for code in allowed)
    message = f"Bad response code: expected {expected}, but found {response.status}. {excerpt}"
    raise AssertionFailure(message.rstrip())


def expect_ok(response: FHIRResponse) -> None:
    expect_status(response, OK_CODES)


def expect_unauthorized(response: FHIRResponse) -> None:
    """Require a 401 from a request sent without credentials."""
    if response.status in UNAUTHORIZED_CODES:
        return
    expected = ", ".join(str(code) for code in UNAUTHORIZED_CODES)
    raise AssertionFailure(f"Bad response code: expected {expected}, but found {response.status}")


def expect_body_present(response: FHIRResponse, resource_type: str) -> dict[str, Any]:
    resource = response.resource
    assert_true(resource, f"Expected {resource_type} resource to be present.")
    return resource


def expect_body_type(response: FHIRResponse, resource_type: str) -> dict[str, Any]:
    resource = response.resource
    assert_true(
        response.resource_type == resource_type,
        f"Expected resource to be of type {resource_type}.",
    )
    return resource


def expect_resource_id(resource: Mapping[str, Any], resource_id: str) -> None:
    assert_true(resource.get("id") == resource_id, f"Expected resource to contain id: {resource_id}")


def expect_bundle(response: FHIRResponse) -> dict[str, Any]:
    """Require a Bundle body and return it."""
    assert_true(
        response.resource_type == "Bundle",
        f"Expected FHIR Bundle but found: {response.resource_type}",
    )
    return response.resource


def expect_history_bundle(response: FHIRResponse) -> list[dict[str, Any]]:
    """Require a non-empty history Bundle and return its entries."""
    expect_ok(response)
    bundle = expect_bundle(response)
    assert_true(
        bundle.get("type") == "history",
        f"Expected Bundle of type history but found: {bundle.get('type')}",
    )
    entries = bundle.get("entry") or []
    assert_true(entries, "No bundle entries returned")
    return entries


def entries_of_type(response: FHIRResponse, resource_type: str) -> list[dict[str, Any]]:
    return [
        resource
        for resource in response.bundle_entries
        if resource.get("resourceType") == resource_type
    ]


def _mismatch(resource: dict[str, Any], params: Mapping[str, str], param_defs: Mapping[str, Any]) -> str | None:
    """Return the first parameter ``resource`` contradicts, or None."""
    for name, value in params.items():
        definition = param_defs.get(name)
        if definition is None or name.startswith("_"):
            continue
        matcher = get_matcher(definition.type)
        if not matcher(resource, definition.path, str(value)):
            return name
    return None


def expect_search_results_match(
    response: FHIRResponse,
    resource_type: str,
    params: Mapping[str, str],
    param_defs: Mapping[str, Any],
    strict: bool = False,
    entries: list[dict[str, Any]] | None = None,
) -> list[dict[str, Any]]:
    """
    Check returned entries against the requested search parameters.

    The search fails when no entry of ``resource_type`` comes back, or when
    every entry contradicts at least one parameter. With ``strict`` any single
    contradicting entry fails the search.

    Args:
        response: Search response (already known to be an OK Bundle)
        resource_type: Expected entry resource type
        params: Parameters that were sent
        param_defs: Search parameter definitions keyed by name; each provides
            ``path`` and ``type``
        strict: Fail on the first non-matching entry
        entries: Entries to check instead of the first page, e.g. every page
            of a paged search

    Returns:
        Entries of ``resource_type``
    """
    if entries is None:
        entries = entries_of_type(response, resource_type)
    assert_true(entries, "No resources of this type were returned")

    first_mismatch: str | None = None
    matched = 0
    for resource in entries:
        mismatch = _mismatch(resource, params, param_defs)
        if mismatch is None:
            matched += 1
            continue
        if strict:
            raise AssertionFailure(f"{mismatch} on resource does not match {mismatch} requested")
        first_mismatch = first_mismatch or mismatch

    if matched == 0 and first_mismatch:
        raise AssertionFailure(f"{first_mismatch} on resource does not match {first_mismatch} requested")
    return entries
