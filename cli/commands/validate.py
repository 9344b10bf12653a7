"""
Validate Command - Run shape checks on a boundary.

Usage:
    gis-capture validate --input parcel.geojson
    gis-capture validate --input parcel.geojson --max-vertices 50 --strict
"""

import json
import logging
from pathlib import Path
from typing import Optional

import click

from cli.commands import read_ring
from gis_capture.config import ValidationSettings
from gis_capture.geometry.intersections import SelfIntersectionValidator, find_kinks, sweep_line_crossings
from gis_capture.geometry.metrics import compute_metrics
from gis_capture.geometry.validation import validate_boundary

logger = logging.getLogger("gis_capture.cli.validate")

DETECTORS = {
    "both": (find_kinks, sweep_line_crossings),
    "kinks": (find_kinks, None),
    "sweep": (sweep_line_crossings, None),
}


@click.command("validate")
@click.option(
    "--input",
    "-i",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="GeoJSON Polygon or Feature file.",
)
@click.option("--min-area", type=float, default=None, help="Minimum area in hectares.")
@click.option("--max-area", type=float, default=None, help="Maximum area in hectares.")
@click.option("--max-vertices", type=int, default=None, help="Maximum number of corners.")
@click.option(
    "--detector",
    type=click.Choice(sorted(DETECTORS), case_sensitive=False),
    default="both",
    help="Self-intersection detector(s) to run (default: both).",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.option(
    "--strict",
    is_flag=True,
    default=False,
    help="Fail on warnings as well as errors.",
)
@click.pass_obj
def validate(
    ctx,
    input_path: Path,
    min_area: Optional[float],
    max_area: Optional[float],
    max_vertices: Optional[int],
    detector: str,
    output_format: str,
    strict: bool,
):
    """
    Check a boundary for crossing edges, corner count and area limits.

    Exits with status 1 when errors are found (or warnings, with --strict).

    \b
    Examples:
        gis-capture validate --input parcel.geojson
        gis-capture validate --input parcel.geojson --detector sweep --format json
    """
    overrides = {
        "min_area_hectares": min_area,
        "max_area_hectares": max_area,
        "max_vertices": max_vertices,
    }
    rules = ValidationSettings(**{k: v for k, v in overrides.items() if v is not None})

    vertices = read_ring(input_path)
    primary, fallback = DETECTORS[detector]
    intersections = SelfIntersectionValidator(primary=primary, fallback=fallback).check(vertices)
    report = validate_boundary(len(vertices), compute_metrics(vertices), intersections, rules)
    logger.debug("Validation of %s: %s", input_path, report.to_dict())

    if output_format == "json":
        result = report.to_dict()
        result["intersections"] = [p.to_dict() for p in intersections.points]
        click.echo(json.dumps(result, indent=2))
    else:
        click.echo(f"\n=== Boundary Validation ===")
        click.echo(f"  Input: {input_path}")
        click.echo(f"  Corners: {len(vertices)}")
        for error in report.errors:
            click.echo(f"  ERROR: {error}")
        for warning in report.warnings:
            click.echo(f"  WARNING: {warning}")
        for point in intersections.points:
            click.echo(f"  Crossing at {point.lat:.6f}, {point.lng:.6f}")
        click.echo(f"  Status: {'PASSED' if report.is_valid else 'FAILED'}")

    if not report.is_valid or (strict and report.warnings):
        raise SystemExit(1)
