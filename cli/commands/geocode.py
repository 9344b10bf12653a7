"""
Geocode Command - Look up a place name.

Usage:
    gis-capture geocode "Ha Mohale, Maseru, Lesotho"
    gis-capture geocode "Teyateyaneng" --provider api --api-base https://example.org/api/gis
"""

import asyncio
import json
import logging
from typing import List, Optional

import click

from gis_capture.exceptions import GeocodingError
from gis_capture.overlap.models import GeocodeResult
from gis_capture.services.api_client import GISApiClient
from gis_capture.services.geocoding import ApiGeocoder, Geocoder, NominatimGeocoder

logger = logging.getLogger("gis_capture.cli.geocode")


@click.command("geocode")
@click.argument("query")
@click.option(
    "--provider",
    type=click.Choice(["nominatim", "api"], case_sensitive=False),
    default="nominatim",
    help="Geocoding backend (default: nominatim).",
)
@click.option("--api-base", default=None, envvar="GIS_CAPTURE_API_BASE", help="GIS API base URL for --provider api.")
@click.option("--limit", "-n", type=int, default=5, help="Maximum candidates (default: 5).")
@click.option(
    "--format",
    "-f",
    "output_format",
    type=click.Choice(["text", "json"], case_sensitive=False),
    default="text",
    help="Output format (default: text).",
)
@click.pass_obj
def geocode(ctx, query: str, provider: str, api_base: Optional[str], limit: int, output_format: str):
    """
    Geocode a free-text place description.

    \b
    Examples:
        gis-capture geocode "Maseru"
        gis-capture geocode "Maseru" --limit 1 --format json
    """
    if provider == "api" and not api_base:
        raise click.BadParameter("--api-base is required with --provider api", param_hint="--api-base")

    try:
        results = asyncio.run(_geocode(query, provider, api_base, limit))
    except GeocodingError as e:
        logger.error("Geocoding %r failed: %s", query, e)
        click.echo(f"Geocoding failed: {e.message}", err=True)
        raise SystemExit(1)

    if output_format == "json":
        click.echo(json.dumps(
            [{"lat": r.lat, "lon": r.lon, "displayName": r.display_name} for r in results],
            indent=2,
        ))
        return

    if not results:
        click.echo("No results found")
        return
    for i, result in enumerate(results, 1):
        click.echo(f"  {i}. {result.display_name} ({result.lat:.6f}, {result.lon:.6f})")


async def _geocode(query: str, provider: str, api_base: Optional[str], limit: int) -> List[GeocodeResult]:
    client = None
    if provider == "api":
        client = GISApiClient(api_base)
        geocoder: Geocoder = ApiGeocoder(client)
    else:
        geocoder = NominatimGeocoder()

    try:
        return await geocoder.geocode(query, limit=limit)
    finally:
        await geocoder.close()
        if client is not None:
            await client.close()
