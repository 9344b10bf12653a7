"""
Polygon Metrics.

Derives area, perimeter, centroid and vertex count from a vertex ring.
Area and perimeter are geodesic on the WGS84 ellipsoid (pyproj); the
centroid is the mean of the ring vertices. Metrics are recomputed from the
ring after every mutation and replaced as a whole.
"""

import logging
import math
from dataclasses import dataclass
from typing import Any, Dict, Optional

from pyproj import Geod
from pyproj.exceptions import GeodError
from shapely.errors import GEOSException
from shapely.geometry import MultiPoint

from gis_capture.geometry.ring import Ring, Vertex, ring_to_polygon
from gis_capture.exceptions import GeometryError

logger = logging.getLogger(__name__)

SQUARE_METERS_PER_HECTARE = 10000.0

_GEOD = Geod(ellps="WGS84")


@dataclass(frozen=True)
class PolygonMetrics:
    """
    Derived measurements of a closed boundary.

    Attributes:
        area_square_meters: Geodesic area
        area_hectares: Geodesic area in hectares
        perimeter_meters: Length of the closed ring
        centroid: Mean of the ring vertices
        vertex_count: Number of distinct corners
    """
    area_square_meters: float
    area_hectares: float
    perimeter_meters: float
    centroid: Vertex
    vertex_count: int

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "areaSquareMeters": self.area_square_meters,
            "areaHectares": self.area_hectares,
            "perimeterMeters": self.perimeter_meters,
            "centroid": self.centroid.to_dict(),
            "vertexCount": self.vertex_count,
        }


def geodesic_area_hectares(polygon: Any) -> float:
    """Absolute geodesic area of a lng/lat shapely polygon, in hectares."""
    area, _ = _GEOD.geometry_area_perimeter(polygon)
    return abs(area) / SQUARE_METERS_PER_HECTARE


def compute_metrics(vertices: Ring) -> Optional[PolygonMetrics]:
    """
    Compute metrics for a ring.

    Args:
        vertices: Ring without the closing point

    Returns:
        PolygonMetrics, or None when the ring has fewer than 3 vertices or the
        geometry cannot be measured.
    """
    if len(vertices) < 3:
        return None

    try:
        polygon = ring_to_polygon(vertices)
        area, perimeter = _GEOD.geometry_area_perimeter(polygon)
        area = abs(area)
        centroid = MultiPoint([v.to_lng_lat() for v in vertices]).centroid
    except (GeometryError, GEOSException, GeodError, ValueError) as e:
        logger.error("Metrics calculation error: %s", e)
        return None

    if not (math.isfinite(area) and math.isfinite(perimeter)):
        logger.error("Metrics calculation produced non-finite values for %d vertices", len(vertices))
        return None

    return PolygonMetrics(
        area_square_meters=area,
        area_hectares=area / SQUARE_METERS_PER_HECTARE,
        perimeter_meters=perimeter,
        centroid=Vertex(lat=centroid.y, lng=centroid.x),
        vertex_count=len(vertices),
    )
