"""Network clients for the GIS API and geocoding services."""

from gis_capture.services.api_client import GISApiClient, unwrap_envelope, validate_api_url
from gis_capture.services.geocoding import ApiGeocoder, Geocoder, NominatimGeocoder

__all__ = [
    "GISApiClient",
    "unwrap_envelope",
    "validate_api_url",
    "Geocoder",
    "NominatimGeocoder",
    "ApiGeocoder",
]
