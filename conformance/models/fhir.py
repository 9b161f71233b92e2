"""
Pydantic models for FHIR traffic seen by the engine.
"""

import json
from typing import Any

from pydantic import BaseModel, Field


class FHIRResponse(BaseModel):
    """A raw HTTP response from the server under test."""

    status: int = Field(description="HTTP status code")
    body: str = Field(default="", description="Raw response body")
    headers: dict[str, str] = Field(default_factory=dict, description="Response headers")
    url: str | None = Field(default=None, description="Requested URL")

    @property
    def resource(self) -> dict[str, Any] | None:
        """
        Decoded FHIR resource, or None when the body is empty.

        Raises:
            ValueError: If the body is present but is not a JSON object
        """
        if not self.body or not self.body.strip():
            return None
        decoded = json.loads(self.body)
        if not isinstance(decoded, dict):
            raise ValueError(f"Expected a JSON object in response body, got {type(decoded).__name__}")
        return decoded

    @property
    def resource_type(self) -> str | None:
        resource = self.resource
        return resource.get("resourceType") if resource else None

    @property
    def bundle_entries(self) -> list[dict[str, Any]]:
        """Resources contained in a Bundle body, in entry order."""
        resource = self.resource
        if not resource or resource.get("resourceType") != "Bundle":
            return []
        return [
            entry["resource"]
            for entry in resource.get("entry") or []
            if isinstance(entry, dict) and isinstance(entry.get("resource"), dict)
        ]

    def next_link(self) -> str | None:
        """URL of the next search page, if the Bundle declares one."""
        resource = self.resource
        if not resource:
            return None
        for link in resource.get("link") or []:
            if link.get("relation") == "next" and link.get("url"):
                return link["url"]
        return None

    def body_excerpt(self, max_chars: int) -> str:
        body = (self.body or "").strip()
        if len(body) > max_chars:
            return body[:max_chars] + "..."
        return body


class OperationOutcomeIssue(BaseModel):
    """A single issue in an OperationOutcome."""

    severity: str = Field(description="fatal | error | warning | information")
    code: str = Field(default="processing", description="Issue type code")
    diagnostics: str | None = Field(default=None, description="Additional diagnostic info")
    expression: list[str] | None = Field(default=None, description="FHIRPath of the element")


class ValidationIssue(BaseModel):
    """One finding reported by the profile validator."""

    severity: str = Field(description="fatal | error | warning | information")
    message: str = Field(description="Human-readable finding")
    location: str | None = Field(default=None, description="Element path the finding refers to")

    @property
    def is_error(self) -> bool:
        return self.severity in ("fatal", "error")

    @classmethod
    def from_outcome_issue(cls, issue: OperationOutcomeIssue) -> "ValidationIssue":
        location = issue.expression[0] if issue.expression else None
        return cls(
            severity=issue.severity,
            message=issue.diagnostics or issue.code,
            location=location,
        )

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message
