"""
Self-Intersection Detection.

Two independent crossing detectors over a closed ring:
- find_kinks: edges indexed in a shapely STRtree, candidate pairs intersected
  exactly; point intersections between non-adjacent edges are kinks.
- sweep_line_crossings: edges swept in x order with an active set, each new
  edge tested against the active ones with a parametric segment test that
  only accepts crossings strictly inside both segments.

SelfIntersectionValidator runs the primary detector and consults the
fallback only when the primary reports no crossings; primary positives are
returned as-is.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List, Optional, Sequence, Tuple

from shapely.errors import GEOSException
from shapely.geometry import LineString
from shapely.strtree import STRtree

from gis_capture.geometry.ring import Ring, Vertex

logger = logging.getLogger(__name__)

Point2D = Tuple[float, float]
CrossingDetector = Callable[[Sequence[Point2D]], List[Point2D]]

PARALLEL_EPSILON = 1e-10
ENDPOINT_TOLERANCE = 1e-4
_POINT_PRECISION = 12


@dataclass
class IntersectionResult:
    """
    Outcome of a self-intersection check.

    Attributes:
        has_crossing: Whether any two non-adjacent edges cross
        points: Crossing locations
        detector: Name of the detector that produced the points
    """
    has_crossing: bool = False
    points: List[Vertex] = field(default_factory=list)
    detector: Optional[str] = None


def _distinct_positions(coords: Sequence[Point2D]) -> List[Point2D]:
    """Drop consecutive duplicates and an explicit closing point."""
    positions: List[Point2D] = []
    for xy in coords:
        xy = (float(xy[0]), float(xy[1]))
        if not positions or positions[-1] != xy:
            positions.append(xy)
    while len(positions) > 1 and positions[0] == positions[-1]:
        positions.pop()
    return positions


def _edges(positions: Sequence[Point2D]) -> List[Tuple[Point2D, Point2D]]:
    n = len(positions)
    return [(positions[i], positions[(i + 1) % n]) for i in range(n)]


def _adjacent(i: int, j: int, n: int) -> bool:
    if i > j:
        i, j = j, i
    return j - i == 1 or (i == 0 and j == n - 1)


def _unique(points: List[Point2D]) -> List[Point2D]:
    seen = set()
    unique = []
    for x, y in points:
        key = (round(x, _POINT_PRECISION), round(y, _POINT_PRECISION))
        if key not in seen:
            seen.add(key)
            unique.append((x, y))
    return unique


def find_kinks(coords: Sequence[Point2D]) -> List[Point2D]:
    """
    Find crossings between non-adjacent edges of a ring.

    Args:
        coords: Ring positions as ``(x, y)``; a closing point is optional

    Returns:
        Distinct crossing points.
    """
    positions = _distinct_positions(coords)
    n = len(positions)
    if n < 4:
        return []

    segments = [LineString(edge) for edge in _edges(positions)]
    tree = STRtree(segments)

    kinks: List[Point2D] = []
    for i, segment in enumerate(segments):
        for j in tree.query(segment, predicate="intersects"):
            j = int(j)
            if j <= i or _adjacent(i, j, n):
                continue
            crossing = segment.intersection(segments[j])
            if crossing.geom_type == "Point":
                kinks.append((crossing.x, crossing.y))
            elif crossing.geom_type == "MultiPoint":
                kinks.extend((p.x, p.y) for p in crossing.geoms)

    return _unique(kinks)


def segment_intersection(
    p1: Point2D, p2: Point2D, p3: Point2D, p4: Point2D
) -> Optional[Point2D]:
    """
    Crossing point of segments p1-p2 and p3-p4 strictly inside both.

    Parallel segments and touches at or near an endpoint return None.
    """
    (x1, y1), (x2, y2), (x3, y3), (x4, y4) = p1, p2, p3, p4
    denom = (x2 - x1) * (y4 - y3) - (y2 - y1) * (x4 - x3)
    if abs(denom) < PARALLEL_EPSILON:
        return None

    t = ((x3 - x1) * (y4 - y3) - (y3 - y1) * (x4 - x3)) / denom
    u = ((x3 - x1) * (y2 - y1) - (y3 - y1) * (x2 - x1)) / denom

    lo, hi = ENDPOINT_TOLERANCE, 1 - ENDPOINT_TOLERANCE
    if lo < t < hi and lo < u < hi:
        return (x1 + t * (x2 - x1), y1 + t * (y2 - y1))
    return None


def sweep_line_crossings(coords: Sequence[Point2D]) -> List[Point2D]:
    """
    Find crossings with an x-ordered sweep over the ring edges.

    Args:
        coords: Ring positions as ``(x, y)``; a closing point is optional

    Returns:
        Distinct crossing points.
    """
    positions = _distinct_positions(coords)
    n = len(positions)
    if n < 4:
        return []

    edges = _edges(positions)
    events = []
    for index, (a, b) in enumerate(edges):
        left, right = (a, b) if a <= b else (b, a)
        events.append((left[0], 0, index))
        events.append((right[0], 1, index))
    # Inserts before removals at equal x so touching extents are still compared.
    events.sort()

    active: List[int] = []
    crossings: List[Point2D] = []
    for _, kind, index in events:
        if kind == 1:
            active.remove(index)
            continue
        a, b = edges[index]
        for other in active:
            if _adjacent(index, other, n):
                continue
            c, d = edges[other]
            point = segment_intersection(a, b, c, d)
            if point is not None:
                crossings.append(point)
        active.append(index)

    return _unique(crossings)


class SelfIntersectionValidator:
    """
    Crossing detector with an optional backstop.

    The fallback is an injected strategy resolved at construction; pass
    ``fallback=None`` to run with the primary detector alone.

    Example:
        validator = SelfIntersectionValidator()
        result = validator.check(vertices)
        if result.has_crossing:
            print(result.points)
    """

    def __init__(
        self,
        primary: CrossingDetector = find_kinks,
        fallback: Optional[CrossingDetector] = sweep_line_crossings,
    ):
        self.primary = primary
        self.fallback = fallback

    @property
    def has_fallback(self) -> bool:
        return self.fallback is not None

    def check(self, vertices: Ring) -> IntersectionResult:
        """
        Check a ring for crossing edges.

        Args:
            vertices: Ring without the closing point

        Returns:
            IntersectionResult; empty for rings with fewer than 3 vertices.
        """
        if len(vertices) < 3:
            return IntersectionResult()

        coords = [v.to_lng_lat() for v in vertices]
        points: List[Point2D] = []
        detector = None

        try:
            points = self.primary(coords)
            detector = _detector_name(self.primary)
        except (GEOSException, ValueError) as e:
            logger.warning("Primary self-intersection check failed: %s", e)

        if not points and self.fallback is not None:
            try:
                fallback_points = self.fallback(coords)
            except (ArithmeticError, ValueError) as e:
                logger.warning("Fallback self-intersection check failed: %s", e)
                fallback_points = []
            if fallback_points:
                logger.debug(
                    "Self-intersection detected via fallback: %d crossing(s)",
                    len(fallback_points),
                )
                points = fallback_points
                detector = _detector_name(self.fallback)

        if not points:
            return IntersectionResult()

        logger.debug("Self-intersection detected via %s: %d crossing(s)", detector, len(points))
        return IntersectionResult(
            has_crossing=True,
            points=[Vertex(lat=y, lng=x) for x, y in points],
            detector=detector,
        )


def _detector_name(detector: CrossingDetector) -> str:
    return getattr(detector, "__name__", type(detector).__name__)
