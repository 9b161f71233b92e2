"""
HTTP client for the FHIR server under test.

Unlike a regular FHIR client this one never raises on an error status: the
conformance tests need to see 401s, 404s and malformed bodies exactly as the
server sent them.
"""

from typing import Any

import httpx

from conformance.config.logging import get_logger
from conformance.config.settings import get_settings
from conformance.constants import FHIR_JSON_CONTENT_TYPE
from conformance.errors import CapabilityFetchError
from conformance.models.fhir import FHIRResponse

logger = get_logger(__name__)


def fhir_request_headers(
    accept: str = FHIR_JSON_CONTENT_TYPE,
    content_type: str | None = None,
) -> dict[str, str]:
    """
    Build HTTP headers for FHIR API requests.

    Args:
        accept: Accept header value for response format
        content_type: Content-Type header for request body (None to omit)

    Returns:
        Dictionary of HTTP headers for FHIR requests
    """
    headers = {"Accept": accept}
    if content_type:
        headers["Content-Type"] = content_type
    return headers


class FHIRHttpClient:
    """
    Thin GET-only FHIR client on top of httpx.

    Several FHIRHttpClient instances may share one httpx.AsyncClient (and its
    connection pool) while each keeps its own bearer token, which lets every
    sequence of a run drop its credentials without affecting the others.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        timeout: float | None = None,
        http: httpx.AsyncClient | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            base_url: FHIR server base URL
            token: Bearer token sent with every request until cleared
            timeout: Request timeout in seconds (defaults to settings)
            http: Existing httpx client to share
            transport: Custom transport for a newly created httpx client
        """
        self.base_url = base_url.rstrip("/") + "/"
        self._token = token or None
        self._owns_http = http is None
        self._http = http or httpx.AsyncClient(
            base_url=self.base_url,
            timeout=timeout or get_settings().request_timeout,
            transport=transport,
        )

    @property
    def token(self) -> str | None:
        return self._token

    def set_auth(self, token: str | None) -> None:
        """Set or clear (None/blank) the bearer token."""
        self._token = token or None

    def fork(self, token: str | None = None) -> "FHIRHttpClient":
        """A new client sharing this one's connection pool."""
        return FHIRHttpClient(self.base_url, token=token, http=self._http)

    def _headers(self, extra: dict[str, str] | None) -> dict[str, str]:
        headers = fhir_request_headers()
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        if extra:
            headers.update(extra)
        return headers

    def _url(self, path: str) -> str:
        if path.startswith(("http://", "https://")):
            return path
        return self.base_url + path.lstrip("/")

    async def get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> FHIRResponse:
        """
        Issue a GET and return the response whatever its status.

        Args:
            path: Path relative to the base URL, or an absolute URL (paging links)
            params: Query parameters
            headers: Extra headers

        Raises:
            httpx.HTTPError: On transport failures and timeouts
        """
        url = self._url(path)
        try:
            resp = await self._http.get(url, params=params, headers=self._headers(headers))
        except httpx.TimeoutException:
            logger.error(f"Timeout requesting {url}")
            raise

        logger.debug(f"GET {url} -> {resp.status_code}", params=params, authorized=bool(self._token))
        return FHIRResponse(
            status=resp.status_code,
            body=resp.text,
            headers=dict(resp.headers),
            url=str(resp.url),
        )

    async def fetch_capabilities(self) -> dict[str, Any]:
        """
        Retrieve the server's CapabilityStatement.

        Raises:
            CapabilityFetchError: If the metadata endpoint cannot be reached,
                returns an error, or returns something other than a
                CapabilityStatement
        """
        endpoint = self._url("metadata")
        try:
            response = await self.get("metadata")
        except httpx.HTTPError as e:
            raise CapabilityFetchError(endpoint, reason=str(e) or e.__class__.__name__) from None

        if response.status != 200:
            raise CapabilityFetchError(endpoint, status=response.status)

        try:
            statement = response.resource
        except ValueError as e:
            raise CapabilityFetchError(endpoint, reason=f"invalid JSON: {e}") from None

        if not statement or statement.get("resourceType") != "CapabilityStatement":
            found = statement.get("resourceType") if statement else None
            raise CapabilityFetchError(endpoint, reason=f"expected CapabilityStatement, got {found}")

        logger.debug(
            "Retrieved CapabilityStatement",
            fhir_version=statement.get("fhirVersion", "unknown"),
        )
        return statement

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def __aenter__(self) -> "FHIRHttpClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.aclose()
