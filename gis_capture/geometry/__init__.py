"""
Geometry for boundary capture.

Ring codec, geodesic metrics, self-intersection detection and validation
rules. Everything here is pure and synchronous.
"""

from gis_capture.geometry.ring import (
    Vertex,
    closed_coordinates,
    edge_midpoints,
    extract_polygon,
    haversine_distance,
    ring_from_geojson,
    ring_to_geojson,
    ring_to_polygon,
)
from gis_capture.geometry.metrics import (
    PolygonMetrics,
    compute_metrics,
    geodesic_area_hectares,
)
from gis_capture.geometry.intersections import (
    IntersectionResult,
    SelfIntersectionValidator,
    find_kinks,
    segment_intersection,
    sweep_line_crossings,
)
from gis_capture.geometry.validation import (
    ValidationReport,
    area_warnings,
    validate_boundary,
    vertex_limit_warning,
)

__all__ = [
    "Vertex",
    "closed_coordinates",
    "edge_midpoints",
    "extract_polygon",
    "haversine_distance",
    "ring_from_geojson",
    "ring_to_geojson",
    "ring_to_polygon",
    "PolygonMetrics",
    "compute_metrics",
    "geodesic_area_hectares",
    "IntersectionResult",
    "SelfIntersectionValidator",
    "find_kinks",
    "segment_intersection",
    "sweep_line_crossings",
    "ValidationReport",
    "area_warnings",
    "validate_boundary",
    "vertex_limit_warning",
]
