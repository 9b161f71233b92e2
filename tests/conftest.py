"""
Shared pytest fixtures for conformance engine tests.
"""

import json
import os
from typing import Any

import httpx
import pytest

# Set test environment variables before importing engine modules
os.environ["FHIR_CONFORMANCE_FHIR_BASE_URL"] = ""
os.environ["FHIR_CONFORMANCE_VALIDATOR_URL"] = ""

from conformance.engine.capabilities import CapabilityIndex  # noqa: E402
from conformance.engine.context import RunContext  # noqa: E402
from conformance.services.fhir_client import FHIRHttpClient  # noqa: E402

BASE_URL = "http://www.example.com/fhir"
TOKEN = "ABC"
PATIENT_ID = "123"


class StubServer:
    """
    Canned FHIR server behind httpx.MockTransport.

    Routes are matched on path and, when given, on an exact query parameter
    set. Unmatched requests get a 404 so a test that forgets a stub fails
    loudly instead of hanging.
    """

    def __init__(self, base_url: str = BASE_URL):
        self.base_path = httpx.URL(base_url).path.rstrip("/")
        self.routes: list[tuple[str, dict[str, str] | None, httpx.Response]] = []
        self.requests: list[httpx.Request] = []

    def stub(
        self,
        path: str,
        status: int = 200,
        json_body: Any = None,
        body: str = "",
        params: dict[str, str] | None = None,
    ) -> None:
        content = json.dumps(json_body) if json_body is not None else body
        self.routes.append((path, params, httpx.Response(status, text=content)))

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path.startswith(self.base_path):
            path = path[len(self.base_path):]
        path = path.lstrip("/")
        query = dict(request.url.params)

        for route_path, params, response in reversed(self.routes):
            if route_path == path and (params is None or params == query):
                return httpx.Response(response.status_code, content=response.content)
        return httpx.Response(404, text="")

    def client(self, token: str | None = TOKEN) -> FHIRHttpClient:
        return FHIRHttpClient(BASE_URL, token=token, transport=httpx.MockTransport(self.handler))

    def requests_to(self, path: str) -> list[httpx.Request]:
        return [
            request
            for request in self.requests
            if request.url.path.rstrip("/").endswith("/" + path)
        ]


def bundle(*resources: dict[str, Any], bundle_type: str = "searchset", next_url: str | None = None) -> dict[str, Any]:
    """Wrap resources in a Bundle."""
    result: dict[str, Any] = {
        "resourceType": "Bundle",
        "type": bundle_type,
        "total": len(resources),
        "entry": [
            {"fullUrl": f"{BASE_URL}/{r['resourceType']}/{r.get('id', '')}", "resource": r}
            for r in resources
        ],
    }
    if next_url:
        result["link"] = [{"relation": "next", "url": next_url}]
    return result


def capability_statement(*resource_types: str, interactions: tuple[str, ...] = (
    "read",
    "vread",
    "history-instance",
    "search-type",
)) -> dict[str, Any]:
    return {
        "resourceType": "CapabilityStatement",
        "status": "active",
        "fhirVersion": "4.0.1",
        "rest": [
            {
                "mode": "server",
                "resource": [
                    {"type": resource_type, "interaction": [{"code": code} for code in interactions]}
                    for resource_type in resource_types
                ],
            }
        ],
    }


@pytest.fixture(autouse=True)
def reset_caches():
    """Reset cached settings and resource configuration between tests."""
    from conformance.config.resources import reload_resources
    from conformance.config.settings import reset_settings

    reset_settings()
    reload_resources()
    yield
    reset_settings()


@pytest.fixture
def server() -> StubServer:
    return StubServer()


@pytest.fixture
def all_capabilities() -> CapabilityIndex:
    return CapabilityIndex(
        capability_statement(
            "CarePlan",
            "Condition",
            "DocumentReference",
            "Organization",
            "Practitioner",
            "Patient",
            "Provenance",
        )
    )


@pytest.fixture
def run_context(all_capabilities) -> RunContext:
    return RunContext(
        run_id="test-run",
        patient_id=PATIENT_ID,
        token=TOKEN,
        capabilities=all_capabilities,
    )


@pytest.fixture
def sample_careplan() -> dict[str, Any]:
    """Sample US Core CarePlan resource."""
    return {
        "resourceType": "CarePlan",
        "id": "cp-1",
        "meta": {"versionId": "2", "lastUpdated": "2024-01-15T10:30:00Z"},
        "text": {"status": "generated", "div": "<div>Care plan</div>"},
        "status": "active",
        "intent": "plan",
        "category": [
            {
                "coding": [
                    {
                        "system": "http://hl7.org/fhir/us/core/CodeSystem/careplan-category",
                        "code": "assess-plan",
                    }
                ]
            }
        ],
        "subject": {"reference": f"Patient/{PATIENT_ID}"},
        "period": {"start": "2024-01-01"},
        "author": {"reference": "Practitioner/pr-1"},
        "contributor": [{"reference": "Organization/org-1"}],
    }


@pytest.fixture
def sample_practitioner() -> dict[str, Any]:
    """Sample US Core Practitioner resource."""
    return {
        "resourceType": "Practitioner",
        "id": "pr-1",
        "meta": {"versionId": "1"},
        "identifier": [{"system": "http://hl7.org/fhir/sid/us-npi", "value": "9941339108"}],
        "name": [{"family": "Bone", "given": ["Ronald"], "prefix": ["Dr"]}],
    }


@pytest.fixture
def sample_document_reference() -> dict[str, Any]:
    """Sample US Core DocumentReference resource."""
    return {
        "resourceType": "DocumentReference",
        "id": "456",
        "status": "current",
        "type": {"coding": [{"system": "http://loinc.org", "code": "34117-2"}]},
        "category": [{"coding": [{"code": "clinical-note"}]}],
        "subject": {"reference": f"Patient/{PATIENT_ID}"},
        "date": "2024-02-01T09:00:00Z",
        "author": [{"reference": "Practitioner/pr-1"}],
        "custodian": {"reference": "Organization/org-1"},
        "content": [
            {
                "attachment": {"contentType": "text/plain", "url": "Binary/b-1"},
                "format": {"code": "urn:ihe:iti:xds:2017:mimeTypeSufficient"},
            }
        ],
        "context": {
            "encounter": [{"reference": "Encounter/enc-1"}],
            "period": {"start": "2024-02-01"},
        },
    }
