"""
Boundary validation rules.

Validation never blocks persistence on its own: the report is surfaced to the
user and to the host's ``on_validation_error`` callback, and the host decides.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from gis_capture.config import ValidationSettings
from gis_capture.geometry.intersections import IntersectionResult
from gis_capture.geometry.metrics import PolygonMetrics

VERTEX_LIMIT_WARNING_RATIO = 0.9

CROSSING_MESSAGE = "Boundary lines are crossing"


@dataclass
class ValidationReport:
    """Errors and warnings for the current boundary."""

    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> Dict[str, Any]:
        return {"errors": list(self.errors), "warnings": list(self.warnings), "valid": self.is_valid}


def area_warnings(metrics: Optional[PolygonMetrics], rules: ValidationSettings) -> List[str]:
    """Warnings for an area outside the configured bounds."""
    if metrics is None:
        return []

    warnings = []
    if rules.min_area_hectares and metrics.area_hectares < rules.min_area_hectares:
        warnings.append(
            f"Area ({metrics.area_hectares:.4f} ha) is very small "
            f"(minimum: {rules.min_area_hectares} ha)"
        )
    if rules.max_area_hectares and metrics.area_hectares > rules.max_area_hectares:
        warnings.append(
            f"Area ({metrics.area_hectares:.2f} ha) exceeds maximum "
            f"({rules.max_area_hectares} ha)"
        )
    return warnings


def vertex_limit_warning(vertex_count: int, max_vertices: int) -> Optional[str]:
    """Warning once the ring reaches 90% of the corner limit."""
    threshold = math.floor(max_vertices * VERTEX_LIMIT_WARNING_RATIO)
    if vertex_count >= max_vertices:
        return f"Maximum corners reached ({vertex_count}/{max_vertices}). Cannot add more."
    if vertex_count >= threshold:
        return (
            f"Corners: {vertex_count}/{max_vertices} - approaching limit. "
            "Consider simplifying."
        )
    return None


def validate_boundary(
    vertex_count: int,
    metrics: Optional[PolygonMetrics],
    intersections: IntersectionResult,
    rules: ValidationSettings,
) -> ValidationReport:
    """
    Full validation run on polygon completion.

    Args:
        vertex_count: Corners in the ring
        metrics: Current metrics, None if unavailable
        intersections: Latest self-intersection result
        rules: Validation limits

    Returns:
        ValidationReport with errors (blocking in the host's judgement) and warnings.
    """
    report = ValidationReport()

    if vertex_count < rules.min_vertices:
        report.errors.append(f"Need at least {rules.min_vertices} corners")

    if metrics is None:
        return report

    report.warnings.extend(area_warnings(metrics, rules))

    if metrics.vertex_count > rules.max_vertices:
        report.warnings.append(
            f"Too many corners ({metrics.vertex_count}). Consider simplifying."
        )

    if not rules.allow_self_intersection and intersections.has_crossing:
        report.errors.append(CROSSING_MESSAGE)

    return report
