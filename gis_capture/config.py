"""
Capture Configuration using Pydantic Settings.

Provides the recognized option surface of the boundary capture component with
environment variable loading, validation, and the defaults the hosting form
framework falls back to when an option is left blank.

Options may be supplied by the host in camelCase (``apiBase``,
``validation.maxVertices``) or snake_case; environment variables use the
``GIS_CAPTURE_`` prefix and ``__`` for nested groups
(``GIS_CAPTURE_VALIDATION__MAX_VERTICES=50``).
"""

from enum import Enum
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel, to_snake
from pydantic_settings import BaseSettings, SettingsConfigDict


class CaptureMode(str, Enum):
    """Capture methods the host allows."""

    BOTH = "BOTH"
    WALK = "WALK"
    DRAW = "DRAW"
    VIEW_ONLY = "VIEW_ONLY"


class DefaultMode(str, Enum):
    """Preferred capture method when both are allowed."""

    AUTO = "AUTO"
    WALK = "WALK"
    DRAW = "DRAW"


class NearbyParcelsMode(str, Enum):
    """When existing parcels are shown as read-only context."""

    DISABLED = "DISABLED"
    ON_LOAD = "ON_LOAD"
    ON_DEMAND = "ON_DEMAND"


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


def _parse_field_list(v: Any) -> List[str]:
    """Parse comma-separated field ids from a host option or environment variable."""
    if isinstance(v, str):
        return [item.strip() for item in v.split(",") if item.strip()]
    return list(v or [])


class _OptionGroup(BaseModel):
    """Nested option group accepting camelCase and snake_case keys."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class OutputFieldSettings(_OptionGroup):
    """Form fields receiving the derived metrics."""

    area_field_id: str = Field(default="", description="Area in hectares (4 dp)")
    perimeter_field_id: str = Field(default="", description="Perimeter in meters (2 dp)")
    centroid_field_id: str = Field(default="", description="Centroid as GeoJSON Point")
    vertex_count_field_id: str = Field(default="", description="Vertex count")


class ValidationSettings(_OptionGroup):
    """Shape validation limits."""

    min_area_hectares: float = Field(default=0.01, description="Minimum area warning")
    max_area_hectares: float = Field(default=1000.0, description="Maximum area warning")
    min_vertices: int = Field(default=3, description="Minimum corners")
    max_vertices: int = Field(default=100, description="Maximum corners")
    allow_self_intersection: bool = Field(
        default=False, description="Accept boundaries whose edges cross"
    )


class GPSSettings(_OptionGroup):
    """Walk mode positioning options."""

    high_accuracy: bool = Field(default=True, description="Request high accuracy fixes")
    min_accuracy: float = Field(
        default=10.0, description="Accuracy radius (m) above which marking is discouraged"
    )
    auto_close_distance: float = Field(
        default=15.0, description="Distance (m) to the first corner that prompts closing"
    )


class StyleSettings(_OptionGroup):
    """Outline styling handed to the map surface."""

    fill_color: str = "#3388ff"
    fill_opacity: float = 0.2
    stroke_color: str = "#3388ff"
    stroke_width: int = 3


class NearbyStyleSettings(_OptionGroup):
    """Styling for read-only nearby parcels."""

    fill_color: str = "#808080"
    fill_opacity: float = 0.15
    stroke_color: str = "#666666"
    stroke_width: int = 1
    stroke_dash_array: str = "3, 3"


class SelfOverlapThresholds(_OptionGroup):
    """
    Tuning constants for dropping an edited record's overlap with itself.

    Attributes:
        shrink_min_percent: Overlap % that marks a shrunk polygon as self-overlap
        unchanged_min_percent: Overlap % required for the unchanged-shape rule
        unchanged_area_tolerance: Fraction of current area for the unchanged rule
        expansion_area_tolerance: Fraction of initial area for the expansion rule
        expansion_fallback_tolerance: Fraction used when containment cannot be evaluated
    """

    shrink_min_percent: float = 95.0
    unchanged_min_percent: float = 99.0
    unchanged_area_tolerance: float = 0.02
    expansion_area_tolerance: float = 0.10
    expansion_fallback_tolerance: float = 0.05


class OverlapSettings(_OptionGroup):
    """Overlap checking against stored boundaries."""

    enabled: bool = Field(default=False, description="Check for overlaps on finalize")
    form_id: str = Field(default="", description="Form/collection holding stored boundaries")
    geometry_field: str = Field(default="c_geometry", description="Geometry field id")
    filter_condition: Optional[str] = Field(default=None, description="Server-side filter")
    display_fields: List[str] = Field(
        default_factory=list, description="Fields returned for each overlapping record"
    )
    min_overlap_percent: float = 1.0
    max_results: int = 10
    include_overlap_geometry: bool = True
    self_overlap: SelfOverlapThresholds = Field(default_factory=SelfOverlapThresholds)

    @field_validator("display_fields", mode="before")
    @classmethod
    def parse_display_fields(cls, v: Any) -> List[str]:
        """Parse comma-separated display fields."""
        return _parse_field_list(v)


class NearbyParcelsSettings(_OptionGroup):
    """Read-only display of registered parcels around the view."""

    enabled: NearbyParcelsMode = NearbyParcelsMode.DISABLED
    form_id: str = ""
    geometry_field_id: str = "c_geometry"
    display_fields: List[str] = Field(default_factory=list)
    filter_condition: Optional[str] = None
    max_results: int = 100
    style: NearbyStyleSettings = Field(default_factory=NearbyStyleSettings)

    @field_validator("display_fields", mode="before")
    @classmethod
    def parse_display_fields(cls, v: Any) -> List[str]:
        """Parse comma-separated display fields."""
        return _parse_field_list(v)

    @property
    def is_enabled(self) -> bool:
        return self.enabled != NearbyParcelsMode.DISABLED


class AutoCenterSettings(_OptionGroup):
    """Recentering the view from values of other form fields."""

    enabled: bool = False
    district_field_id: str = ""
    village_field_id: str = ""
    lat_field_id: str = ""
    lon_field_id: str = ""
    retry_on_field_change: bool = True
    zoom: int = 14
    country_suffix: str = "Lesotho"

    @property
    def field_ids(self) -> List[str]:
        """Configured source field ids, blanks skipped."""
        return [
            f for f in (
                self.district_field_id,
                self.village_field_id,
                self.lat_field_id,
                self.lon_field_id,
            ) if f
        ]


class TimingSettings(_OptionGroup):
    """Timer intervals in seconds."""

    request_timeout: float = 30.0
    overlap_debounce: float = 0.5
    intersection_debounce: float = 0.15
    drag_throttle: float = 0.016
    drag_metrics_debounce: float = 0.1
    nearby_reload_interval: float = 2.0
    auto_close_prompt_reset: float = 5.0
    auto_center_initial_delay: float = 0.3
    auto_center_debounce: float = 0.3
    auto_center_poll_interval: float = 3.0


class CaptureSettings(BaseSettings):
    """Main capture component settings."""

    model_config = SettingsConfigDict(
        env_prefix="GIS_CAPTURE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # API
    api_base: str = Field(default="/jw/api/gis/gis", description="GIS API base path")
    api_id: str = Field(default="", description="API id header value")
    api_key: str = Field(default="", description="API key header value")
    base_url: Optional[str] = Field(
        default=None, description="Origin used to resolve relative API paths"
    )

    # Host binding
    hidden_field_id: str = Field(default="", description="Field holding the persisted GeoJSON")
    record_id: str = Field(default="", description="Record being edited, if any")
    output_fields: OutputFieldSettings = Field(default_factory=OutputFieldSettings)

    # Capture mode
    capture_mode: CaptureMode = CaptureMode.BOTH
    default_mode: DefaultMode = DefaultMode.AUTO

    # Map
    default_latitude: float = -29.5
    default_longitude: float = 28.5
    default_zoom: int = 10
    tile_provider: str = "OSM"
    show_satellite_option: bool = True
    map_height: int = 400

    # Behaviour groups
    validation: ValidationSettings = Field(default_factory=ValidationSettings)
    gps: GPSSettings = Field(default_factory=GPSSettings)
    style: StyleSettings = Field(default_factory=StyleSettings)
    overlap: OverlapSettings = Field(default_factory=OverlapSettings)
    nearby_parcels: NearbyParcelsSettings = Field(default_factory=NearbyParcelsSettings)
    auto_center: AutoCenterSettings = Field(default_factory=AutoCenterSettings)
    timing: TimingSettings = Field(default_factory=TimingSettings)

    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")

    @classmethod
    def from_options(cls, options: Optional[Dict[str, Any]] = None) -> "CaptureSettings":
        """
        Build settings from a host-supplied option mapping.

        Blank values (None or empty string) fall back to the defaults, the way
        the hosting form framework leaves unset properties empty.

        Args:
            options: Option mapping, camelCase or snake_case keys

        Returns:
            CaptureSettings with the options applied over environment and defaults.
        """
        pruned = _prune_blank(options or {})
        return cls(**{to_snake(key): value for key, value in pruned.items()})


def _prune_blank(options: Dict[str, Any]) -> Dict[str, Any]:
    pruned: Dict[str, Any] = {}
    for key, value in options.items():
        if value is None or value == "":
            continue
        if isinstance(value, dict):
            value = _prune_blank(value)
        pruned[key] = value
    return pruned


@lru_cache()
def get_settings() -> CaptureSettings:
    """
    Get cached settings instance.

    Returns:
        CaptureSettings loaded from environment and defaults.
    """
    return CaptureSettings()


def get_settings_uncached() -> CaptureSettings:
    """
    Get fresh settings instance (useful for testing).

    Returns:
        New CaptureSettings instance.
    """
    return CaptureSettings()
