"""
Geocoding services.

Free-text location search returning ranked ``GeocodeResult`` candidates.
Two backends share the ``Geocoder`` interface:
- NominatimGeocoder: the public OpenStreetMap search API, used by auto-center
- ApiGeocoder: the form server's ``geocode`` endpoint, used by location search
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import List, Optional

import aiohttp

from gis_capture.exceptions import ApiRequestError, GeocodingError, InvalidApiUrlError, ResponseFormatError
from gis_capture.overlap.models import GeocodeResult
from gis_capture.services.api_client import GISApiClient

logger = logging.getLogger(__name__)

NOMINATIM_SEARCH_URL = "https://nominatim.openstreetmap.org/search"
USER_AGENT = "gis-capture/1.0"


class Geocoder(ABC):
    """Abstract free-text geocoder."""

    @abstractmethod
    async def geocode(self, query: str, limit: int = 5) -> List[GeocodeResult]:
        """
        Search for a location.

        Args:
            query: Free-text place description
            limit: Maximum candidates to return

        Returns:
            Candidates in ranking order, possibly empty.

        Raises:
            GeocodingError: If the service cannot be queried.
        """
        pass

    async def close(self) -> None:
        """Release network resources."""


class NominatimGeocoder(Geocoder):
    """
    Geocoder backed by OpenStreetMap Nominatim.

    Example:
        geocoder = NominatimGeocoder()
        results = await geocoder.geocode("Ha Mokhalinyane, Maseru, Lesotho", limit=1)
        await geocoder.close()
    """

    def __init__(self, search_url: str = NOMINATIM_SEARCH_URL, timeout: float = 30.0):
        self.search_url = search_url
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession()
        return self._session

    async def close(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    async def geocode(self, query: str, limit: int = 5) -> List[GeocodeResult]:
        params = {"format": "json", "q": query, "limit": str(limit)}
        headers = {"Accept": "application/json", "User-Agent": USER_AGENT}
        session = self._get_session()

        try:
            async with session.get(
                self.search_url,
                params=params,
                headers=headers,
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            ) as response:
                if response.status != 200:
                    raise GeocodingError(f"Geocoding HTTP {response.status}", query=query)
                data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise GeocodingError("Geocoding request timed out", query=query) from e
        except aiohttp.ClientError as e:
            raise GeocodingError(f"Geocoding request failed: {e}", query=query) from e

        if not isinstance(data, list):
            raise GeocodingError("Unexpected geocoding response", query=query)

        results = [GeocodeResult.from_candidate(item) for item in data if isinstance(item, dict)]
        results = [r for r in results if r is not None]
        logger.debug("Geocoded %r to %d candidate(s)", query, len(results))
        return results


class ApiGeocoder(Geocoder):
    """Geocoder delegating to the GIS API's ``geocode`` endpoint."""

    def __init__(self, client: GISApiClient):
        self.client = client

    async def geocode(self, query: str, limit: int = 5) -> List[GeocodeResult]:
        try:
            return await self.client.geocode(query, limit=limit)
        except (ApiRequestError, InvalidApiUrlError, ResponseFormatError) as e:
            raise GeocodingError(str(e), query=query) from e
