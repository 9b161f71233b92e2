"""
Field path resolution over loosely-typed FHIR JSON.

A path is a dot-delimited list of element names (``name.given``,
``identifier.value``). Whenever a step lands on a list, resolution fans out
across every item and the results are concatenated in discovery order, so
``resolve_path([careplan_a, careplan_b], "category.coding.code")`` returns
every category code of both care plans.
"""

from collections.abc import Callable, Iterable
from typing import Any

Predicate = Callable[[Any], bool]


def _as_list(value: Any) -> list[Any]:
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _is_empty(value: Any) -> bool:
    return value is None or value == "" or value == [] or value == {}


def _strip_resource_prefix(path: str) -> str:
    """Drop a leading resource type (``Practitioner.name`` -> ``name``)."""
    head, _, rest = path.partition(".")
    if rest and head[:1].isupper():
        return rest
    if not rest and head[:1].isupper():
        return ""
    return path


def resolve_path(elements: Any, path: str) -> list[Any]:
    """
    Collect every value reachable through ``path``.

    Args:
        elements: A resource, an element, or a list of either
        path: Dot-delimited element path, optionally prefixed with the
            resource type

    Returns:
        All non-empty values found, in discovery order
    """
    current = [item for item in _as_list(elements) if not _is_empty(item)]
    path = _strip_resource_prefix(path)
    if not path:
        return current

    for step in path.split("."):
        next_level: list[Any] = []
        for item in current:
            if not isinstance(item, dict):
                continue
            for value in _as_list(item.get(step)):
                if not _is_empty(value):
                    next_level.append(value)
        current = next_level
        if not current:
            break

    return current


def find_in_path(elements: Any, path: str, predicate: Predicate | None = None) -> Any | None:
    """
    Return the first value at ``path`` accepted by ``predicate``.

    Without a predicate the first non-empty value wins.
    """
    for value in resolve_path(elements, path):
        if predicate is None or predicate(value):
            return value
    return None


def can_resolve_path(element: Any, path: str, predicate: Predicate | None = None) -> bool:
    """Whether ``element`` populates ``path`` (with a value ``predicate`` accepts)."""
    return find_in_path(element, path, predicate) is not None


def search_value(element: Any) -> str | None:
    """
    Turn a matched element into a value usable as a search parameter.

    Complex datatypes are recognised by shape: Reference -> reference,
    Period -> start/end, CodeableConcept -> first coding code, Coding -> code,
    Identifier -> value, HumanName -> family/given/text, Address -> text or
    the first populated locality field. Primitives are returned as strings.
    """
    if _is_empty(element):
        return None
    if isinstance(element, bool):
        return str(element).lower()
    if isinstance(element, (str, int, float)):
        return str(element)
    if not isinstance(element, dict):
        return None

    if "reference" in element:
        return element.get("reference")
    if "start" in element or "end" in element:
        return element.get("start") or element.get("end")
    if "coding" in element:
        return find_in_path(element, "coding.code")
    if "code" in element:
        return str(element["code"])
    if "value" in element and ("system" in element or "type" in element):
        return str(element["value"])
    if "family" in element or "given" in element:
        return element.get("family") or find_in_path(element, "given") or element.get("text")
    for key in ("text", "city", "state", "postalCode", "country"):
        if element.get(key):
            return str(element[key])
    if "value" in element:
        return str(element["value"])
    return None


def first_search_value(instances: Iterable[Any], path: str) -> str | None:
    """
    Pick a representative search value for ``path``.

    Instances are scanned in their original order and the first element that
    yields a non-empty search value is used. None means nothing usable was
    found; callers skip the dependent test rather than failing it.
    """
    for instance in instances:
        for element in resolve_path(instance, path):
            value = search_value(element)
            if value:
                return value
    return None


def iter_references(element: Any) -> Iterable[str]:
    """Yield every ``reference`` string nested anywhere inside ``element``."""
    if isinstance(element, dict):
        reference = element.get("reference")
        if isinstance(reference, str) and reference:
            yield reference
        for key, value in element.items():
            if key == "contained":
                continue
            yield from iter_references(value)
    elif isinstance(element, list):
        for item in element:
            yield from iter_references(item)


def split_reference(reference: str) -> tuple[str, str] | None:
    """
    Split a relative literal reference into ``(resource_type, id)``.

    Contained (``#id``) references and references without a type/id pair
    return None. Absolute URLs keep their last two segments.
    """
    if not reference or reference.startswith("#") or reference.startswith("urn:"):
        return None
    reference = reference.split("/_history/")[0].rstrip("/")
    parts = reference.split("/")
    if len(parts) < 2:
        return None
    resource_type, resource_id = parts[-2], parts[-1]
    if not resource_type[:1].isupper() or not resource_id:
        return None
    return resource_type, resource_id
