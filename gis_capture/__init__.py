"""
GIS Capture

Polygon boundary capture for data-collection forms: draw or walk a parcel
boundary, measure it, validate its shape and check it against stored
boundaries before it is persisted.

Usage:
    from gis_capture import CaptureController, CaptureSettings

    controller = CaptureController(CaptureSettings.from_options(options), host=page, map_view=view)
    controller.start()
"""

__version__ = "1.0.0"

from gis_capture.capture.controller import CaptureCallbacks, CaptureController, init
from gis_capture.capture.state import CaptureMethod, CaptureState, EditOutcome, Phase
from gis_capture.config import CaptureMode, CaptureSettings, DefaultMode, get_settings
from gis_capture.exceptions import (
    ApiRequestError,
    GeocodingError,
    GeometryError,
    GISCaptureError,
    InvalidApiUrlError,
    PositioningError,
    RequestTimeoutError,
    ResponseFormatError,
)
from gis_capture.geometry import PolygonMetrics, SelfIntersectionValidator, Vertex, compute_metrics
from gis_capture.host import HostPage, MapView

__all__ = [
    "__version__",
    "ApiRequestError",
    "CaptureCallbacks",
    "CaptureController",
    "CaptureMethod",
    "CaptureMode",
    "CaptureSettings",
    "CaptureState",
    "DefaultMode",
    "EditOutcome",
    "GeocodingError",
    "GeometryError",
    "GISCaptureError",
    "HostPage",
    "InvalidApiUrlError",
    "MapView",
    "Phase",
    "PolygonMetrics",
    "PositioningError",
    "RequestTimeoutError",
    "ResponseFormatError",
    "SelfIntersectionValidator",
    "Vertex",
    "compute_metrics",
    "get_settings",
    "init",
]
