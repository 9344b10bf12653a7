"""
Metrics Command - Measure a boundary.

Usage:
    gis-capture metrics --input parcel.geojson
    gis-capture metrics --input parcel.geojson --format json
"""

import json
import logging
from pathlib import Path

import click

from cli.commands import read_ring
from gis_capture.geometry.metrics import compute_metrics

logger = logging.getLogger("gis_capture.cli.metrics")


@click.command("metrics")
@click.option(
    "--input",
    "-i",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="GeoJSON Polygon or Feature file.",
)
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.pass_obj
def metrics(ctx, input_path: Path, output_format: str):
    """
    Compute area, perimeter, centroid and corner count of a boundary.

    \b
    Examples:
        gis-capture metrics --input parcel.geojson
        gis-capture metrics --input parcel.geojson --format json
    """
    vertices = read_ring(input_path)
    logger.debug("Loaded %d vertices from %s", len(vertices), input_path)

    result = compute_metrics(vertices)
    if result is None:
        click.echo(f"Boundary needs at least 3 corners, got {len(vertices)}", err=True)
        raise SystemExit(1)

    if output_format == "json":
        click.echo(json.dumps(result.to_dict(), indent=2))
        return

    click.echo(f"\n=== Boundary Metrics ===")
    click.echo(f"  Area: {result.area_hectares:.4f} ha ({result.area_square_meters:.1f} m2)")
    click.echo(f"  Perimeter: {result.perimeter_meters:.2f} m")
    click.echo(f"  Centroid: {result.centroid.lat:.6f}, {result.centroid.lng:.6f}")
    click.echo(f"  Corners: {result.vertex_count}")
