"""
Client for an external FHIR profile validator service.

The validator (for example the HL7 validator wrapper) accepts a resource and
a profile URL and answers with an OperationOutcome listing its findings.
"""

from typing import Any

import httpx
from pydantic import ValidationError

from conformance.config.logging import get_logger
from conformance.config.settings import get_settings
from conformance.constants import FHIR_JSON_CONTENT_TYPE
from conformance.errors import ProfileValidationError
from conformance.models.fhir import OperationOutcomeIssue, ValidationIssue
from conformance.services.fhir_client import fhir_request_headers

logger = get_logger(__name__)


def issues_from_outcome(outcome: dict[str, Any]) -> list[ValidationIssue]:
    """Convert an OperationOutcome into validation issues."""
    issues = []
    for raw in outcome.get("issue") or []:
        issue = OperationOutcomeIssue.model_validate(raw)
        issues.append(ValidationIssue.from_outcome_issue(issue))
    return issues


class RemoteProfileValidator:
    """Validates resources by posting them to a validator service."""

    def __init__(
        self,
        validator_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.validator_url = validator_url.rstrip("/")
        self._http = httpx.AsyncClient(
            timeout=timeout or get_settings().request_timeout,
            transport=transport,
        )

    async def validate(self, resource: dict[str, Any], profile_url: str) -> list[ValidationIssue]:
        """
        Validate ``resource`` against ``profile_url``.

        Raises:
            ProfileValidationError: If the service is unreachable or answers
                with something other than an OperationOutcome
        """
        endpoint = f"{self.validator_url}/validate"
        try:
            resp = await self._http.post(
                endpoint,
                params={"profile": profile_url},
                json=resource,
                headers=fhir_request_headers(content_type=FHIR_JSON_CONTENT_TYPE),
            )
        except httpx.HTTPError as e:
            logger.error(f"Validator request to {endpoint} failed: {e}")
            raise ProfileValidationError(profile_url, f"validator unreachable: {e}") from None

        if resp.status_code != 200:
            raise ProfileValidationError(profile_url, f"validator returned {resp.status_code}")

        try:
            outcome = resp.json()
        except ValueError:
            raise ProfileValidationError(profile_url, "validator returned invalid JSON") from None

        if not isinstance(outcome, dict) or outcome.get("resourceType") != "OperationOutcome":
            raise ProfileValidationError(profile_url, "validator did not return an OperationOutcome")

        try:
            issues = issues_from_outcome(outcome)
        except ValidationError as e:
            raise ProfileValidationError(profile_url, f"malformed OperationOutcome: {e}") from None

        logger.debug(
            "Validated resource",
            resource_type=resource.get("resourceType"),
            resource_id=resource.get("id"),
            issues=len(issues),
        )
        return issues

    async def aclose(self) -> None:
        await self._http.aclose()
