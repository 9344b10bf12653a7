"""
Overlap detection against stored boundaries.

``checker.OverlapChecker`` and ``nearby.NearbyParcelsLoader`` depend on the
network clients in ``gis_capture.services`` and are imported from their
modules directly.
"""

from gis_capture.overlap.models import (
    GeocodeResult,
    NearbyParcel,
    NearbyParcelsQuery,
    NearbyParcelsResponse,
    OverlapCheckRequest,
    OverlapCheckResponse,
    OverlapOptions,
    OverlapRecord,
    OverlapTarget,
)
from gis_capture.overlap.requests import PendingRequest, RequestPurpose, RequestTracker
from gis_capture.overlap.self_overlap import filter_self_overlaps, self_overlap_reason

__all__ = [
    "GeocodeResult",
    "NearbyParcel",
    "NearbyParcelsQuery",
    "NearbyParcelsResponse",
    "OverlapCheckRequest",
    "OverlapCheckResponse",
    "OverlapOptions",
    "OverlapRecord",
    "OverlapTarget",
    "PendingRequest",
    "RequestPurpose",
    "RequestTracker",
    "filter_self_overlaps",
    "self_overlap_reason",
]
