"""
Capability lookups against the server's CapabilityStatement.
"""

from collections.abc import Iterable
from typing import Any

from conformance.config.logging import get_logger

logger = get_logger(__name__)

# Interaction names used by test gates mapped to the CapabilityStatement codes
INTERACTION_ALIASES: dict[str, tuple[str, ...]] = {
    "read": ("read",),
    "vread": ("vread",),
    "update": ("update",),
    "patch": ("patch",),
    "delete": ("delete",),
    "create": ("create",),
    "search": ("search-type",),
    "search-type": ("search-type",),
    "history": ("history-instance",),
    "history-instance": ("history-instance",),
    "history-type": ("history-type",),
}


class CapabilityIndex:
    """
    Answers whether the server supports an interaction on a resource type.

    Built once per run. When no CapabilityStatement is available every query
    returns False.
    """

    def __init__(self, capability_statement: dict[str, Any] | None = None):
        self._statement = capability_statement
        self._interactions: dict[str, set[str]] = {}
        if capability_statement:
            self._index(capability_statement)

    def _index(self, statement: dict[str, Any]) -> None:
        for rest in statement.get("rest") or []:
            if rest.get("mode", "server") != "server":
                continue
            for resource in rest.get("resource") or []:
                resource_type = resource.get("type")
                if not resource_type:
                    continue
                codes = self._interactions.setdefault(resource_type, set())
                for interaction in resource.get("interaction") or []:
                    code = interaction.get("code")
                    if code:
                        codes.add(code)
                # Declared search parameters imply type-level search
                if resource.get("searchParam"):
                    codes.add("search-type")

        logger.debug(
            "Indexed CapabilityStatement",
            resource_types=len(self._interactions),
        )

    @property
    def present(self) -> bool:
        """Whether a CapabilityStatement was available."""
        return self._statement is not None

    @property
    def fhir_version(self) -> str | None:
        if not self._statement:
            return None
        return self._statement.get("fhirVersion")

    def supports_resource(self, resource_type: str) -> bool:
        return resource_type in self._interactions

    def supports(self, resource_type: str, interaction: str) -> bool:
        """
        Check a single interaction.

        Args:
            resource_type: FHIR resource type, e.g. "CarePlan"
            interaction: Interaction name ("read", "search", "history", ...)

        Returns:
            True only if the CapabilityStatement declares the interaction
        """
        codes = self._interactions.get(resource_type)
        if not codes:
            return False
        aliases = INTERACTION_ALIASES.get(interaction, (interaction,))
        return any(alias in codes for alias in aliases)

    def unsupported(self, resource_type: str, interactions: Iterable[str]) -> list[str]:
        """The interactions in ``interactions`` the server does not declare."""
        return [
            interaction
            for interaction in interactions
            if not self.supports(resource_type, interaction)
        ]
