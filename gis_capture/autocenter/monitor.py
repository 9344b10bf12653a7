"""
Auto-center.

Recenters the map from values of other form fields, trying in order:
1. precomputed latitude/longitude fields (both parseable and non-zero)
2. geocoding "village, district, country" and taking the first candidate
3. leaving the default view, warning once that the location was not found

Evaluation runs shortly after start, then again whenever a monitored field
changes (debounced) or a periodic poll sees different values. Evaluation is
skipped while a geocoding request it started is still in flight.
"""

import asyncio
import logging
import math
from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

from gis_capture.config import CaptureSettings
from gis_capture.exceptions import GeocodingError
from gis_capture.host import HostPage, MapView, Remover
from gis_capture.scheduling import Debouncer, PeriodicTask
from gis_capture.services.geocoding import Geocoder

logger = logging.getLogger(__name__)

NOT_FOUND_MESSAGE = "Location not found, using default view"

NotifyCallback = Callable[[str, str], None]


@dataclass(frozen=True)
class LocationFields:
    """Snapshot of the monitored field values."""

    district: str = ""
    village: str = ""
    lat: str = ""
    lon: str = ""

    def coordinates(self) -> Optional[Tuple[float, float]]:
        """Parsed ``(lat, lon)`` when both are numbers and neither is zero."""
        try:
            lat, lon = float(self.lat), float(self.lon)
        except (TypeError, ValueError):
            return None
        if not (math.isfinite(lat) and math.isfinite(lon)) or lat == 0 or lon == 0:
            return None
        return lat, lon

    def query(self, country_suffix: str = "") -> str:
        parts = [p for p in (self.village, self.district, country_suffix) if p]
        return ", ".join(parts)


class AutoCenter:
    """
    Field-driven map recentering.

    Example:
        auto_center = AutoCenter(settings, host, map_view, NominatimGeocoder())
        auto_center.start()
        ...
        auto_center.stop()
    """

    def __init__(
        self,
        settings: CaptureSettings,
        host: HostPage,
        map_view: MapView,
        geocoder: Geocoder,
        notify: Optional[NotifyCallback] = None,
    ):
        self.config = settings.auto_center
        self.timing = settings.timing
        self.host = host
        self.map_view = map_view
        self.geocoder = geocoder
        self.notify = notify

        self.attempted = False
        self.in_progress = False
        self.last_values: Optional[LocationFields] = None

        self._stopped = False
        self._initial_handle: Optional[asyncio.TimerHandle] = None
        self._geocode_task: Optional["asyncio.Task[None]"] = None
        self._removers: List[Remover] = []
        self._debounced_check = Debouncer(
            self._check_guarded, self.timing.auto_center_debounce, name="auto_center_check"
        )
        self._poll = PeriodicTask(
            self._check_guarded, self.timing.auto_center_poll_interval, name="auto_center_poll"
        )

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def start(self) -> None:
        """Schedule the first attempt and start monitoring the fields."""
        if not self.enabled or self._stopped:
            return
        loop = asyncio.get_running_loop()
        self._initial_handle = loop.call_later(
            self.timing.auto_center_initial_delay, self._initial_attempt
        )
        if self.config.retry_on_field_change:
            for field_id in self.config.field_ids:
                self._removers.append(
                    self.host.add_field_listener(field_id, self._on_field_changed)
                )
            self._poll.start()

    def _initial_attempt(self) -> None:
        self._initial_handle = None
        self.attempt()

    def _on_field_changed(self) -> None:
        if not self._stopped:
            self._debounced_check()

    def _check_guarded(self) -> None:
        if self.in_progress or self._stopped:
            return
        self.check_for_changes()

    def read_fields(self) -> LocationFields:
        def value(field_id: str) -> str:
            if not field_id:
                return ""
            return (self.host.get_field_value(field_id) or "").strip()

        return LocationFields(
            district=value(self.config.district_field_id),
            village=value(self.config.village_field_id),
            lat=value(self.config.lat_field_id),
            lon=value(self.config.lon_field_id),
        )

    def check_for_changes(self) -> bool:
        """Attempt again if the fields changed since the last attempt."""
        current = self.read_fields()
        if self.last_values is not None and current != self.last_values:
            logger.debug("Auto-center fields changed: %s", current)
            self.attempt()
            return True
        return False

    def attempt(self) -> Optional["asyncio.Task[None]"]:
        """
        Run the fallback chain once.

        Returns:
            The geocoding task when a lookup was started, otherwise None.
        """
        if self.in_progress or self._stopped:
            return None

        values = self.read_fields()
        self.last_values = values

        coordinates = values.coordinates()
        if coordinates is not None:
            self._center(coordinates[0], coordinates[1], "Using pre-computed coordinates")
            return None

        if values.district or values.village:
            query = values.query(self.config.country_suffix)
            self.in_progress = True
            loop = asyncio.get_running_loop()
            self._geocode_task = loop.create_task(
                self._geocode(query, values.village or values.district)
            )
            return self._geocode_task

        # Nothing to go on; the configured default view stays
        self.attempted = True
        return None

    async def _geocode(self, query: str, place: str) -> None:
        logger.info("Locating %s", place)
        try:
            results = await self.geocoder.geocode(query, limit=1)
        except GeocodingError as e:
            logger.warning("Auto-center geocode failed: %s", e)
            results = []
        finally:
            self.in_progress = False
            self._geocode_task = None

        if self._stopped:
            return
        if results:
            self._center(results[0].lat, results[0].lon, f"Map centered on {place}")
            self.attempted = True
        else:
            self._fall_back_to_defaults()

    def _center(self, lat: float, lon: float, message: str) -> None:
        self.map_view.set_view(lat, lon, self.config.zoom)
        logger.info("%s (%.6f, %.6f)", message, lat, lon)
        self._notify(message, "success")

    def _fall_back_to_defaults(self) -> None:
        if not self.attempted:
            self.attempted = True
            self._notify(NOT_FOUND_MESSAGE, "warning")

    def _notify(self, message: str, level: str) -> None:
        if self.notify is not None:
            self.notify(message, level)

    def stop(self) -> None:
        """Cancel timers, the poll, a running lookup and the field listeners."""
        self._stopped = True
        if self._initial_handle is not None:
            self._initial_handle.cancel()
            self._initial_handle = None
        self._debounced_check.cancel()
        self._poll.stop()
        if self._geocode_task is not None and not self._geocode_task.done():
            self._geocode_task.cancel()
        self._geocode_task = None
        for remove in self._removers:
            remove()
        self._removers = []
