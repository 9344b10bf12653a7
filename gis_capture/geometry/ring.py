"""
Vertex ring primitives.

The live ring is an ordered list of ``Vertex`` without the repeated closing
point. The closing point is added when exporting to GeoJSON and stripped
when importing.
"""

import json
import math
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from shapely.geometry import Polygon

from gis_capture.exceptions import GeometryError

EARTH_RADIUS_METERS = 6371000.0


@dataclass(frozen=True)
class Vertex:
    """A boundary corner in WGS84 degrees."""

    lat: float
    lng: float

    def to_lng_lat(self) -> Tuple[float, float]:
        return (self.lng, self.lat)

    def to_dict(self) -> Dict[str, float]:
        return {"lat": self.lat, "lng": self.lng}


Ring = Sequence[Vertex]


def closed_coordinates(vertices: Ring) -> List[List[float]]:
    """GeoJSON ``[lng, lat]`` positions with the first vertex repeated at the end."""
    coords = [[v.lng, v.lat] for v in vertices]
    if coords:
        coords.append(list(coords[0]))
    return coords


def ring_to_geojson(vertices: Ring) -> Optional[Dict[str, Any]]:
    """
    Export a ring as a GeoJSON Polygon.

    Returns:
        ``{"type": "Polygon", "coordinates": [[...]]}`` or None for fewer than 3 vertices.
    """
    if len(vertices) < 3:
        return None
    return {"type": "Polygon", "coordinates": [closed_coordinates(vertices)]}


def ring_to_polygon(vertices: Ring) -> Polygon:
    """Shapely polygon in lng/lat axis order."""
    if len(vertices) < 3:
        raise GeometryError(f"Polygon needs at least 3 vertices, got {len(vertices)}")
    return Polygon([v.to_lng_lat() for v in vertices])


def extract_polygon(value: Union[str, Dict[str, Any]]) -> Dict[str, Any]:
    """
    Normalize a persisted value to a bare GeoJSON Polygon.

    Accepts a JSON string or mapping holding either a Polygon or a Feature
    whose geometry is a Polygon.

    Raises:
        GeometryError: If the value is not JSON or not a polygon.
    """
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError as e:
            raise GeometryError(f"Persisted geometry is not valid JSON: {e}") from e

    if not isinstance(value, dict):
        raise GeometryError("Persisted geometry must be a JSON object")

    if value.get("type") == "Feature":
        value = value.get("geometry") or {}

    if value.get("type") != "Polygon":
        raise GeometryError(f"Unsupported geometry type: {value.get('type')!r}")

    rings = value.get("coordinates") or []
    if not rings or not isinstance(rings[0], list):
        raise GeometryError("Polygon has no exterior ring")

    return value


def ring_from_geojson(value: Union[str, Dict[str, Any]]) -> List[Vertex]:
    """
    Import the exterior ring of a persisted polygon.

    The closing point is stripped when the last position repeats the first.
    """
    polygon = extract_polygon(value)
    coords = polygon["coordinates"][0]
    try:
        vertices = [Vertex(lat=float(c[1]), lng=float(c[0])) for c in coords]
    except (TypeError, ValueError, IndexError) as e:
        raise GeometryError(f"Malformed polygon position: {e}") from e

    if len(vertices) > 1 and vertices[0] == vertices[-1]:
        vertices = vertices[:-1]
    return vertices


def haversine_distance(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance in meters."""
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def edge_midpoints(vertices: Ring) -> List[Tuple[int, Vertex]]:
    """Midpoint of every closed-ring edge, keyed by the index of its first vertex."""
    if len(vertices) < 3:
        return []
    midpoints = []
    for i, v1 in enumerate(vertices):
        v2 = vertices[(i + 1) % len(vertices)]
        midpoints.append((i, Vertex(lat=(v1.lat + v2.lat) / 2, lng=(v1.lng + v2.lng) / 2)))
    return midpoints
