"""
Check-Overlap Command - Query stored boundaries overlapping a boundary.

Usage:
    gis-capture check-overlap --input parcel.geojson --api-base https://example.org/api/gis --form-id parcels
    gis-capture check-overlap --input edited.geojson --baseline original.geojson --record-id <uuid> ...
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import List, Optional

import click

from cli.commands import read_boundary
from gis_capture.config import CaptureSettings
from gis_capture.exceptions import GISCaptureError
from gis_capture.geometry.metrics import compute_metrics, geodesic_area_hectares
from gis_capture.geometry.ring import ring_from_geojson, ring_to_polygon
from gis_capture.overlap.checker import OverlapChecker
from gis_capture.overlap.models import OverlapRecord
from gis_capture.overlap.requests import RequestTracker
from gis_capture.services.api_client import GISApiClient

logger = logging.getLogger("gis_capture.cli.overlap")


@click.command("check-overlap")
@click.option(
    "--input",
    "-i",
    "input_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    required=True,
    help="GeoJSON Polygon or Feature file to check.",
)
@click.option("--api-base", required=True, envvar="GIS_CAPTURE_API_BASE", help="GIS API base URL.")
@click.option("--form-id", required=True, help="Form holding the stored boundaries.")
@click.option("--geometry-field", default="c_geometry", help="Geometry column (default: c_geometry).")
@click.option("--record-id", default="", help="Record being edited; excluded from the query.")
@click.option(
    "--baseline",
    "baseline_path",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="Boundary as loaded before editing, enables the self-overlap filter.",
)
@click.option("--api-id", default="", envvar="GIS_CAPTURE_API_ID", help="API id header.")
@click.option("--api-key", default="", envvar="GIS_CAPTURE_API_KEY", help="API key header.")
@click.option("--min-overlap", type=float, default=1.0, help="Minimum overlap percent (default: 1).")
@click.option("--max-results", type=int, default=10, help="Maximum overlaps returned (default: 10).")
@click.option("--timeout", type=float, default=30.0, help="Request timeout in seconds (default: 30).")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.pass_obj
def check_overlap(
    ctx,
    input_path: Path,
    api_base: str,
    form_id: str,
    geometry_field: str,
    record_id: str,
    baseline_path: Optional[Path],
    api_id: str,
    api_key: str,
    min_overlap: float,
    max_results: int,
    timeout: float,
    output_format: str,
):
    """
    Check a boundary against the stored boundaries of a form.

    Exits with status 2 when overlaps remain after self-overlap filtering.

    \b
    Examples:
        gis-capture check-overlap -i parcel.geojson --api-base https://example.org/api/gis --form-id parcels
    """
    settings = CaptureSettings.from_options({
        "apiBase": api_base,
        "apiId": api_id,
        "apiKey": api_key,
        "recordId": record_id,
        "overlap": {
            "enabled": True,
            "formId": form_id,
            "geometryField": geometry_field,
            "minOverlapPercent": min_overlap,
            "maxResults": max_results,
        },
        "timing": {"requestTimeout": timeout},
    })

    geometry = read_boundary(input_path)
    baseline = read_boundary(baseline_path) if baseline_path else None

    try:
        overlaps = asyncio.run(_check(settings, geometry, baseline))
    except GISCaptureError as e:
        logger.error("Overlap check failed: %s", e)
        click.echo(f"Overlap check failed: {e.message}", err=True)
        raise SystemExit(1)

    if output_format == "json":
        click.echo(json.dumps({
            "hasOverlaps": bool(overlaps),
            "overlaps": [o.to_dict() for o in overlaps],
        }, indent=2))
    else:
        click.echo(f"\n=== Overlap Check ===")
        click.echo(f"  Form: {form_id}")
        if not overlaps:
            click.echo("  No overlapping boundaries")
        for overlap in overlaps:
            label = ", ".join(v for v in overlap.display_values.values() if v) or overlap.id
            click.echo(
                f"  {label}: {overlap.overlap_area:.4f} ha ({overlap.overlap_percentage:.1f}%)"
            )

    if overlaps:
        raise SystemExit(2)


async def _check(settings: CaptureSettings, geometry, baseline) -> List[OverlapRecord]:
    async with GISApiClient.from_settings(settings) as client:
        checker = OverlapChecker(settings, client, RequestTracker(), record_id=settings.record_id)
        response = await client.check_overlap(checker.build_request(geometry))

    vertices = ring_from_geojson(geometry)
    metrics = compute_metrics(vertices)
    initial_area = None
    if baseline is not None:
        initial_area = geodesic_area_hectares(ring_to_polygon(ring_from_geojson(baseline)))

    return checker.resolve(
        response,
        vertices,
        metrics.area_hectares if metrics else None,
        baseline,
        initial_area,
    )
