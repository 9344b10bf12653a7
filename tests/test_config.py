"""
Tests for capture settings.

Tests cover:
- Defaults
- Host option mapping (camelCase, blanks, comma-separated lists)
- Environment variable loading
"""

import pytest
from pydantic import ValidationError

from gis_capture.config import (
    CaptureMode,
    CaptureSettings,
    DefaultMode,
    NearbyParcelsMode,
    get_settings_uncached,
)


class TestDefaults:
    """Tests for default values."""

    def test_defaults(self):
        settings = CaptureSettings()

        assert settings.capture_mode == CaptureMode.BOTH
        assert settings.default_mode == DefaultMode.AUTO
        assert settings.validation.min_vertices == 3
        assert settings.validation.max_vertices == 100
        assert settings.validation.min_area_hectares == 0.01
        assert settings.gps.auto_close_distance == 15.0
        assert settings.overlap.enabled is False
        assert settings.overlap.geometry_field == "c_geometry"
        assert settings.nearby_parcels.is_enabled is False
        assert settings.timing.overlap_debounce == 0.5
        assert settings.timing.intersection_debounce == 0.15

    def test_self_overlap_thresholds(self):
        thresholds = CaptureSettings().overlap.self_overlap

        assert thresholds.shrink_min_percent == 95.0
        assert thresholds.unchanged_min_percent == 99.0
        assert thresholds.expansion_area_tolerance == 0.10
        assert thresholds.expansion_fallback_tolerance == 0.05


class TestFromOptions:
    """Tests for host option mapping."""

    def test_camel_case_options(self):
        settings = CaptureSettings.from_options({
            "apiBase": "https://forms.example.org/api/gis",
            "hiddenFieldId": "boundary",
            "captureMode": "WALK",
            "validation": {"maxVertices": 50, "minAreaHectares": 0.5},
            "gps": {"autoCloseDistance": 10},
        })

        assert settings.api_base == "https://forms.example.org/api/gis"
        assert settings.hidden_field_id == "boundary"
        assert settings.capture_mode == CaptureMode.WALK
        assert settings.validation.max_vertices == 50
        assert settings.validation.min_area_hectares == 0.5
        assert settings.gps.auto_close_distance == 10.0

    def test_blank_options_use_defaults(self):
        """Unset host properties arrive as empty strings."""
        settings = CaptureSettings.from_options({
            "apiBase": "",
            "captureMode": None,
            "validation": {"maxVertices": ""},
        })

        assert settings.api_base == "/jw/api/gis/gis"
        assert settings.capture_mode == CaptureMode.BOTH
        assert settings.validation.max_vertices == 100

    def test_display_fields_from_string(self):
        settings = CaptureSettings.from_options({
            "overlap": {"enabled": True, "displayFields": "c_farmer_name, c_parcel_id,"},
            "nearbyParcels": {"enabled": "ON_DEMAND", "displayFields": "c_parcel_id"},
        })

        assert settings.overlap.display_fields == ["c_farmer_name", "c_parcel_id"]
        assert settings.nearby_parcels.enabled == NearbyParcelsMode.ON_DEMAND
        assert settings.nearby_parcels.display_fields == ["c_parcel_id"]

    def test_auto_center_field_ids(self):
        settings = CaptureSettings.from_options({
            "autoCenter": {"enabled": True, "districtFieldId": "district", "latFieldId": "lat"},
        })
        assert settings.auto_center.field_ids == ["district", "lat"]

    def test_invalid_mode_rejected(self):
        with pytest.raises(ValidationError):
            CaptureSettings.from_options({"captureMode": "FLY"})

    def test_none_options(self):
        assert CaptureSettings.from_options(None).capture_mode == CaptureMode.BOTH


class TestEnvironment:
    """Tests for environment loading."""

    def test_prefixed_variables(self, monkeypatch):
        monkeypatch.setenv("GIS_CAPTURE_API_BASE", "https://gis.example.org/api")
        monkeypatch.setenv("GIS_CAPTURE_VALIDATION__MAX_VERTICES", "40")

        settings = get_settings_uncached()

        assert settings.api_base == "https://gis.example.org/api"
        assert settings.validation.max_vertices == 40

    def test_options_override_environment(self, monkeypatch):
        monkeypatch.setenv("GIS_CAPTURE_CAPTURE_MODE", "WALK")
        settings = CaptureSettings.from_options({"captureMode": "DRAW"})
        assert settings.capture_mode == CaptureMode.DRAW
