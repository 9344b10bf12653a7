"""
GIS Capture CLI entry point.

Usage:
    gis-capture metrics --input parcel.geojson
    gis-capture validate --input parcel.geojson --strict
    gis-capture check-overlap --input parcel.geojson --api-base https://example.org/api/gis/ --form-id parcels
    gis-capture geocode "Ha Mohale, Maseru"
"""

import logging
import sys

import click

from cli import __version__
from cli.commands.geocode import geocode
from cli.commands.metrics import metrics
from cli.commands.overlap import check_overlap
from cli.commands.validate import validate


@click.group()
@click.version_option(__version__, prog_name="gis-capture")
@click.option("--verbose", "-v", is_flag=True, default=False, help="Enable debug logging.")
@click.pass_context
def app(ctx, verbose: bool):
    """Measure, validate and check parcel boundaries captured as GeoJSON."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stderr)],
    )
    ctx.obj = {"verbose": verbose}


app.add_command(metrics)
app.add_command(validate)
app.add_command(check_overlap)
app.add_command(geocode)


if __name__ == "__main__":
    app()
