"""
Search parameter matching rules.

Each configured search parameter declares a type; the matcher registered for
that type decides whether a returned resource satisfies the value that was
requested.
"""

from collections.abc import Callable
from typing import Any

from conformance.engine.paths import can_resolve_path, resolve_path, search_value

Matcher = Callable[[dict[str, Any], str, str], bool]

# FHIR date search prefixes
_DATE_PREFIXES = ("eq", "ne", "gt", "lt", "ge", "le", "sa", "eb", "ap")


def _match_reference(resource: dict[str, Any], path: str, value: str) -> bool:
    def accepts(reference: Any) -> bool:
        if not isinstance(reference, dict):
            return False
        target = reference.get("reference") or ""
        return target == value or target.endswith(f"/{value}") or value.endswith(f"/{target}")

    return can_resolve_path(resource, path, accepts)


def _match_token(resource: dict[str, Any], path: str, value: str) -> bool:
    system, _, code = value.rpartition("|")

    def accepts(element: Any) -> bool:
        if isinstance(element, dict) and "coding" in element:
            return any(accepts(coding) for coding in element.get("coding") or [])
        if isinstance(element, dict):
            element_code = element.get("code", element.get("value"))
            if element_code is None or str(element_code) != code:
                return False
            return not system or element.get("system") == system
        return search_value(element) == code

    return can_resolve_path(resource, path, accepts)


def _match_identifier(resource: dict[str, Any], path: str, value: str) -> bool:
    system, _, identifier = value.rpartition("|")

    def accepts(element: Any) -> bool:
        if not isinstance(element, dict):
            return False
        if element.get("value") != identifier:
            return False
        return not system or element.get("system") == system

    return can_resolve_path(resource, path, accepts)


def _match_name(resource: dict[str, Any], path: str, value: str) -> bool:
    needle = value.lower()

    def accepts(name: Any) -> bool:
        if isinstance(name, str):
            return name.lower().startswith(needle)
        if not isinstance(name, dict):
            return False
        if (name.get("text") or "").lower().startswith(needle):
            return True
        if needle in (name.get("family") or "").lower():
            return True
        return any(
            part.lower().startswith(needle)
            for key in ("given", "prefix", "suffix")
            for part in name.get(key) or []
            if isinstance(part, str)
        )

    return can_resolve_path(resource, path, accepts)


def _match_string(resource: dict[str, Any], path: str, value: str) -> bool:
    needle = value.lower()
    return any(
        (search_value(element) or "").lower().startswith(needle)
        for element in resolve_path(resource, path)
    )


def _strip_date_prefix(value: str) -> str:
    if len(value) > 2 and value[:2] in _DATE_PREFIXES and value[2].isdigit():
        return value[2:]
    return value


def _match_date(resource: dict[str, Any], path: str, value: str) -> bool:
    wanted = _strip_date_prefix(value)

    def accepts(element: Any) -> bool:
        if isinstance(element, dict):
            candidates = [element.get("start"), element.get("end")]
        else:
            candidates = [element]
        return any(
            isinstance(candidate, str) and (candidate.startswith(wanted) or wanted.startswith(candidate))
            for candidate in candidates
        )

    return can_resolve_path(resource, path, accepts)


MATCHERS: dict[str, Matcher] = {
    "reference": _match_reference,
    "token": _match_token,
    "identifier": _match_identifier,
    "name": _match_name,
    "string": _match_string,
    "date": _match_date,
}


def get_matcher(param_type: str) -> Matcher:
    """Look up the matcher for a search parameter type (defaults to string)."""
    return MATCHERS.get(param_type, _match_string)
