"""
Wire models for the overlap, nearby-parcel and geocoding services.

Responses are normalized at the transport boundary (see
``gis_capture.services.api_client.unwrap_envelope``) and parsed into these
types before the capture core sees them.
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple

from gis_capture.exceptions import ResponseFormatError


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _as_geometry(value: Any) -> Optional[Dict[str, Any]]:
    """Geometries may arrive as GeoJSON text; Features are unwrapped."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return None
    if not isinstance(value, dict):
        return None
    if value.get("type") == "Feature":
        return value.get("geometry")
    return value


@dataclass
class OverlapRecord:
    """
    A stored boundary overlapping the captured one.

    Attributes:
        id: Record id of the stored boundary
        geometry: Intersection polygon, if the service returned it
        display_values: Field name to display text
        overlap_area: Intersection area in hectares
        overlap_percentage: Intersection as a percentage of the captured area
    """
    id: str
    geometry: Optional[Dict[str, Any]] = None
    display_values: Dict[str, str] = field(default_factory=dict)
    overlap_area: float = 0.0
    overlap_percentage: float = 0.0

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "OverlapRecord":
        """Create from a service overlap item."""
        record_data = item.get("recordData") or {}
        return cls(
            id=str(item.get("recordId", "")),
            geometry=_as_geometry(item.get("overlapGeometry")),
            display_values={str(k): "" if v is None else str(v) for k, v in record_data.items()},
            overlap_area=_as_float(item.get("overlapAreaHectares")),
            overlap_percentage=_as_float(item.get("overlapPercentOfInput")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "geometry": self.geometry,
            "displayValues": dict(self.display_values),
            "overlapArea": self.overlap_area,
            "overlapPercentage": self.overlap_percentage,
        }


@dataclass
class OverlapTarget:
    """Which stored boundaries to compare against."""

    form_id: str
    geometry_field_id: str
    filter_condition: Optional[str] = None
    exclude_record_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        target: Dict[str, Any] = {
            "formId": self.form_id,
            "geometryFieldId": self.geometry_field_id,
        }
        if self.filter_condition:
            target["filterCondition"] = self.filter_condition
        if self.exclude_record_id:
            target["excludeRecordId"] = self.exclude_record_id
        return target


@dataclass
class OverlapOptions:
    """Result shaping options for an overlap query."""

    return_fields: List[str] = field(default_factory=list)
    min_overlap_percent: float = 1.0
    max_results: int = 10
    include_overlap_geometry: bool = True

    def to_dict(self) -> Dict[str, Any]:
        return {
            "returnFields": list(self.return_fields),
            "minOverlapPercent": self.min_overlap_percent,
            "maxResults": self.max_results,
            "includeOverlapGeometry": self.include_overlap_geometry,
        }


@dataclass
class OverlapCheckRequest:
    """Body of a ``checkOverlap`` call."""

    geometry: Dict[str, Any]
    target: OverlapTarget
    options: OverlapOptions = field(default_factory=OverlapOptions)

    def to_payload(self) -> Dict[str, Any]:
        return {
            "geometry": self.geometry,
            "target": self.target.to_dict(),
            "options": self.options.to_dict(),
        }


@dataclass
class OverlapCheckResponse:
    """Normalized ``checkOverlap`` result."""

    has_overlaps: bool = False
    overlaps: List[OverlapRecord] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Any) -> "OverlapCheckResponse":
        """
        Parse an unwrapped response body.

        Raises:
            ResponseFormatError: If the body is not an object or overlaps is not a list.
        """
        if not isinstance(payload, dict):
            raise ResponseFormatError("Overlap response must be a JSON object")

        items = payload.get("overlaps") or []
        if not isinstance(items, list):
            raise ResponseFormatError("Overlap response 'overlaps' must be a list")

        # hasOverlaps without any items carries nothing to show
        overlaps = [OverlapRecord.from_api(item) for item in items if isinstance(item, dict)]
        return cls(has_overlaps=bool(overlaps), overlaps=overlaps)


@dataclass
class NearbyParcelsQuery:
    """Parameters of a ``nearbyParcels`` call."""

    form_id: str
    geometry_field_id: str
    bounds: Tuple[float, float, float, float]
    max_results: int = 100
    filter_condition: Optional[str] = None
    return_fields: List[str] = field(default_factory=list)
    exclude_record_id: Optional[str] = None

    def to_params(self) -> Dict[str, str]:
        """Query string parameters; bounds as ``west,south,east,north`` at 6 dp."""
        west, south, east, north = self.bounds
        params = {
            "formId": self.form_id,
            "geometryFieldId": self.geometry_field_id,
            "bounds": ",".join(f"{v:.6f}" for v in (west, south, east, north)),
            "maxResults": str(self.max_results),
        }
        if self.exclude_record_id:
            params["excludeRecordId"] = self.exclude_record_id
        if self.filter_condition:
            params["filterCondition"] = self.filter_condition
        if self.return_fields:
            params["returnFields"] = ",".join(self.return_fields)
        return params


@dataclass
class NearbyParcel:
    """A registered parcel shown read-only around the capture."""

    record_id: str
    geometry: Optional[Dict[str, Any]] = None
    record_data: Dict[str, Any] = field(default_factory=dict)
    area_hectares: Optional[float] = None

    @classmethod
    def from_api(cls, item: Dict[str, Any]) -> "NearbyParcel":
        area = item.get("areaHectares")
        return cls(
            record_id=str(item.get("recordId", item.get("id", ""))),
            geometry=_as_geometry(item.get("geometry")),
            record_data=dict(item.get("recordData") or {}),
            area_hectares=_as_float(area) if area is not None else None,
        )


@dataclass
class NearbyParcelsResponse:
    """Normalized ``nearbyParcels`` result."""

    parcels: List[NearbyParcel] = field(default_factory=list)
    truncated: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "NearbyParcelsResponse":
        if not isinstance(payload, dict):
            raise ResponseFormatError("Nearby parcels response must be a JSON object")
        items = payload.get("parcels") or []
        if not isinstance(items, list):
            raise ResponseFormatError("Nearby parcels response 'parcels' must be a list")
        return cls(
            parcels=[NearbyParcel.from_api(item) for item in items if isinstance(item, dict)],
            truncated=bool(payload.get("truncated", False)),
        )


@dataclass
class GeocodeResult:
    """A ranked geocoding candidate."""

    lat: float
    lon: float
    display_name: str = ""

    @classmethod
    def from_candidate(cls, item: Dict[str, Any]) -> Optional["GeocodeResult"]:
        """Accept the field spellings used by Nominatim and the GIS API."""
        lat = item.get("lat", item.get("latitude"))
        lon = item.get("lon", item.get("lng", item.get("longitude")))
        try:
            lat_f, lon_f = float(lat), float(lon)
        except (TypeError, ValueError):
            return None
        name = item.get("display_name") or item.get("displayName") or item.get("name") or ""
        return cls(lat=lat_f, lon=lon_f, display_name=str(name))
