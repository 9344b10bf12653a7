"""CLI commands."""

import json
from pathlib import Path
from typing import Any, Dict, List

import click

from gis_capture.exceptions import GeometryError
from gis_capture.geometry.ring import Vertex, extract_polygon, ring_from_geojson


def read_boundary(path: Path) -> Dict[str, Any]:
    """Read a Polygon, Feature or FeatureCollection file and return its Polygon."""
    try:
        with open(path) as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise click.BadParameter(f"Cannot read {path}: {e}", param_hint="--input")

    if isinstance(data, dict) and data.get("type") == "FeatureCollection":
        features = data.get("features") or []
        if not features:
            raise click.BadParameter(f"{path} contains no features", param_hint="--input")
        data = features[0]

    try:
        return extract_polygon(data)
    except GeometryError as e:
        raise click.BadParameter(str(e), param_hint="--input")


def read_ring(path: Path) -> List[Vertex]:
    return ring_from_geojson(read_boundary(path))
