"""Field-driven map recentering."""

from gis_capture.autocenter.monitor import NOT_FOUND_MESSAGE, AutoCenter, LocationFields

__all__ = ["AutoCenter", "LocationFields", "NOT_FOUND_MESSAGE"]
