"""
Exception types for the boundary capture library.

Network clients and parsers raise these; the capture controller and the
background monitors catch them at their boundary and turn them into
notifications and ``on_error`` callbacks.
"""

from typing import Optional


class GISCaptureError(Exception):
    """Base exception for all capture errors."""

    def __init__(self, message: str):
        self.message = message
        super().__init__(self.message)


class InvalidApiUrlError(GISCaptureError):
    """API URL is neither a relative path nor an HTTP(S) URL."""

    def __init__(self, url: str):
        self.url = url
        super().__init__(
            f"Invalid API URL format: {url!r}. Must be relative path or HTTPS URL."
        )


class ApiRequestError(GISCaptureError):
    """Request to the GIS API failed at the transport or HTTP level."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class ResponseFormatError(GISCaptureError):
    """Response payload could not be interpreted."""


class GeocodingError(GISCaptureError):
    """Geocoding request failed."""

    def __init__(self, message: str, query: Optional[str] = None):
        self.query = query
        super().__init__(message)


class GeometryError(GISCaptureError):
    """Ring is degenerate or a persisted geometry cannot be parsed."""


class RequestTimeoutError(ApiRequestError):
    """Request did not complete within its timeout."""


class PositioningError(GISCaptureError):
    """Position source reported a failure."""
