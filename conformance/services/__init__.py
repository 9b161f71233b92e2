"""Collaborators the engine talks to: the server under test and the profile validator."""

from conformance.services.fhir_client import FHIRHttpClient, fhir_request_headers
from conformance.services.profile_validation import RemoteProfileValidator, issues_from_outcome

__all__ = [
    "FHIRHttpClient",
    "fhir_request_headers",
    "RemoteProfileValidator",
    "issues_from_outcome",
]
