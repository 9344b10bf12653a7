"""
GIS Capture CLI Package

Command-line access to the boundary metrics, validation, overlap check and
geocoding used by the capture component.

Usage:
    gis-capture metrics --input parcel.geojson
    gis-capture validate --input parcel.geojson
    gis-capture check-overlap --input parcel.geojson --api-base https://example.org/api/gis/
    gis-capture geocode "Maseru"
"""

__version__ = "1.0.0"
