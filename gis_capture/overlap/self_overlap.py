"""
Edit-mode self-overlap filter.

When an existing record is edited, the stored copy of its own boundary is
still on the server and the overlap service reports it. Candidates matching
one of the rules below are treated as the record overlapping itself and
dropped; the first matching rule wins:

1. shrink: the polygon got smaller and the overlap covers nearly all of it
2. unchanged: the overlap covers nearly all of the polygon and its area
   matches the current area
3. expansion: the polygon got larger, contains its former shape, and the
   overlap area matches the former area

Without a baseline area only the unchanged rule applies.

The thresholds are tuning constants (``SelfOverlapThresholds``).
"""

import logging
from typing import Any, List, Optional

from shapely.errors import GEOSException

from gis_capture.config import SelfOverlapThresholds
from gis_capture.overlap.models import OverlapRecord

logger = logging.getLogger(__name__)


def self_overlap_reason(
    record: OverlapRecord,
    current_area: float,
    initial_area: Optional[float],
    current_polygon: Any,
    initial_polygon: Any,
    thresholds: SelfOverlapThresholds,
) -> Optional[str]:
    """
    Name of the rule classifying a candidate as self-overlap, or None.

    Args:
        record: Overlap candidate
        current_area: Current area in hectares
        initial_area: Area at load in hectares, None when it could not be
            measured; only the unchanged rule applies then
        current_polygon: Current shapely polygon
        initial_polygon: Shapely polygon at load
        thresholds: Rule constants

    Returns:
        "shrink", "unchanged", "expansion" or None.
    """
    shrunk = initial_area is not None and initial_area > current_area
    if shrunk and record.overlap_percentage >= thresholds.shrink_min_percent:
        return "shrink"

    if record.overlap_percentage >= thresholds.unchanged_min_percent:
        if abs(record.overlap_area - current_area) <= current_area * thresholds.unchanged_area_tolerance:
            return "unchanged"

    if initial_area is not None and current_area > initial_area:
        diff = abs(record.overlap_area - initial_area)
        contains = _contains(current_polygon, initial_polygon)
        if contains is None:
            tolerance = thresholds.expansion_fallback_tolerance
        elif contains:
            tolerance = thresholds.expansion_area_tolerance
        else:
            return None
        if diff <= initial_area * tolerance:
            return "expansion"

    return None


def _contains(outer: Any, inner: Any) -> Optional[bool]:
    """Containment test; None when it cannot be evaluated."""
    if outer is None or inner is None:
        logger.warning("Spatial containment check skipped: polygon unavailable")
        return None
    try:
        return bool(outer.contains(inner))
    except (GEOSException, ValueError) as e:
        logger.warning("Spatial containment check failed: %s", e)
        return None


def filter_self_overlaps(
    overlaps: List[OverlapRecord],
    current_area: float,
    initial_area: Optional[float],
    current_polygon: Any,
    initial_polygon: Any,
    thresholds: Optional[SelfOverlapThresholds] = None,
) -> List[OverlapRecord]:
    """
    Drop candidates that are the edited record overlapping itself.

    Returns:
        Remaining candidates in their original order.
    """
    thresholds = thresholds or SelfOverlapThresholds()
    kept = []
    for record in overlaps:
        reason = self_overlap_reason(
            record, current_area, initial_area, current_polygon, initial_polygon, thresholds
        )
        if reason is None:
            kept.append(record)
        else:
            logger.debug(
                "Dropping overlap with %s as self-overlap (%s, %.1f%%)",
                record.id,
                reason,
                record.overlap_percentage,
            )

    if len(kept) < len(overlaps):
        logger.info("Self-overlap filter removed %d overlap(s)", len(overlaps) - len(kept))
    return kept
