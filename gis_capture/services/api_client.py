"""
GIS API Client.

Async client for the form server's GIS endpoints:
- POST {apiBase}/checkOverlap   overlap of a polygon with stored boundaries
- GET  {apiBase}/nearbyParcels  stored boundaries inside a bounding box
- GET  {apiBase}/geocode        free-text location search

The server wraps bodies in an envelope whose ``message`` field may hold the
real payload as a JSON string, and the payload may itself nest the body in a
``data`` member. Both layers are removed here so callers receive typed
responses only.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urljoin

import aiohttp

from gis_capture.config import CaptureSettings
from gis_capture.exceptions import (
    ApiRequestError,
    InvalidApiUrlError,
    RequestTimeoutError,
    ResponseFormatError,
)
from gis_capture.overlap.models import (
    GeocodeResult,
    NearbyParcelsQuery,
    NearbyParcelsResponse,
    OverlapCheckRequest,
    OverlapCheckResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0


def validate_api_url(url: str) -> str:
    """
    Check that an API URL is safe to call.

    Relative paths and HTTPS URLs are accepted; plain HTTP is accepted with a
    warning for development setups.

    Raises:
        InvalidApiUrlError: For empty URLs or any other scheme.
    """
    if not url:
        raise InvalidApiUrlError(url)
    if url.startswith("/") or url.startswith("https://"):
        return url
    if url.startswith("http://"):
        logger.warning("API URL uses insecure HTTP protocol. Consider using HTTPS: %s", url)
        return url
    raise InvalidApiUrlError(url)


def unwrap_envelope(payload: Any) -> Any:
    """
    Remove the server's response envelope.

    ``{"code": ..., "message": "<json>"}`` yields the decoded message; a
    ``data`` member of the result, when present, is the body.
    """
    body = payload
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        try:
            body = json.loads(body["message"])
        except json.JSONDecodeError:
            # Plain-text message; the envelope itself is the body
            body = payload
    if isinstance(body, dict) and "data" in body and body["data"] is not None:
        body = body["data"]
    return body


class GISApiClient:
    """
    Client for the GIS API.

    Example:
        async with GISApiClient("/jw/api/gis/gis", base_url="https://forms.example.org") as client:
            response = await client.check_overlap(request)
    """

    def __init__(
        self,
        api_base: str,
        api_id: str = "",
        api_key: str = "",
        base_url: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
    ):
        """
        Initialize API client.

        Args:
            api_base: Base path or URL of the GIS API
            api_id: Optional API id header
            api_key: Optional API key header
            base_url: Origin used to resolve a relative ``api_base``
            timeout: Transport timeout in seconds
        """
        self.api_base = api_base.rstrip("/")
        self.api_id = api_id
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    @classmethod
    def from_settings(cls, settings: CaptureSettings) -> "GISApiClient":
        return cls(
            api_base=settings.api_base,
            api_id=settings.api_id,
            api_key=settings.api_key,
            base_url=settings.base_url,
            timeout=settings.timing.request_timeout,
        )

    async def __aenter__(self) -> "GISApiClient":
        self._get_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    @property
    def headers(self) -> Dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.api_id and self.api_key:
            headers["api_id"] = self.api_id
            headers["api_key"] = self.api_key
        return headers

    def endpoint_url(self, endpoint: str) -> str:
        """Validated URL for an endpoint under ``api_base``."""
        url = validate_api_url(f"{self.api_base}/{endpoint}")
        if url.startswith("/") and self.base_url:
            url = urljoin(self.base_url, url)
        return url

    async def _send(
        self,
        method: str,
        endpoint: str,
        payload: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> Any:
        url = self.endpoint_url(endpoint)
        session = self._get_session()
        timeout = aiohttp.ClientTimeout(total=self.timeout)

        try:
            if method == "POST":
                request = session.post(url, json=payload, headers=self.headers, timeout=timeout)
            else:
                request = session.get(url, params=params, headers=self.headers, timeout=timeout)

            async with request as response:
                if response.status >= 400:
                    raise ApiRequestError(
                        f"HTTP {response.status}: {getattr(response, 'reason', '')}".strip(),
                        status=response.status,
                    )
                data = await response.json(content_type=None)

        except asyncio.TimeoutError as e:
            raise RequestTimeoutError(
                f"{endpoint} timed out after {self.timeout:.0f} seconds"
            ) from e
        except aiohttp.ClientError as e:
            raise ApiRequestError(f"{endpoint} request failed: {e}") from e
        except json.JSONDecodeError as e:
            raise ResponseFormatError(f"{endpoint} returned invalid JSON: {e}") from e

        return unwrap_envelope(data)

    async def check_overlap(self, request: OverlapCheckRequest) -> OverlapCheckResponse:
        """
        Query overlap of a polygon with stored boundaries.

        Raises:
            InvalidApiUrlError: If the API base is not an allowed URL
            ApiRequestError: On HTTP or transport failure
            ResponseFormatError: If the body cannot be interpreted
        """
        body = await self._send("POST", "checkOverlap", payload=request.to_payload())
        response = OverlapCheckResponse.from_payload(body)
        logger.debug("checkOverlap returned %d overlap(s)", len(response.overlaps))
        return response

    async def nearby_parcels(self, query: NearbyParcelsQuery) -> NearbyParcelsResponse:
        """Fetch stored boundaries inside a bounding box."""
        body = await self._send("GET", "nearbyParcels", params=query.to_params())
        response = NearbyParcelsResponse.from_payload(body)
        logger.debug(
            "nearbyParcels returned %d parcel(s)%s",
            len(response.parcels),
            " (truncated)" if response.truncated else "",
        )
        return response

    async def geocode(self, query: str, limit: int = 5) -> List[GeocodeResult]:
        """Search locations through the server's geocoding endpoint."""
        body = await self._send("GET", "geocode", params={"query": query, "limit": str(limit)})
        if isinstance(body, dict):
            body = body.get("results", body.get("list", []))
        if not isinstance(body, list):
            raise ResponseFormatError("geocode response must be a list of candidates")
        results = [GeocodeResult.from_candidate(item) for item in body if isinstance(item, dict)]
        return [r for r in results if r is not None]
