"""
Nearby parcels.

Loads already-registered boundaries inside the current map bounds as a
read-only context layer. ON_LOAD shows them from the start; ON_DEMAND waits
for ``toggle()``. While visible, map movements trigger a throttled reload.
"""

import logging
from typing import Callable, List, Optional

from gis_capture.config import CaptureSettings, NearbyParcelsMode
from gis_capture.exceptions import InvalidApiUrlError, RequestTimeoutError
from gis_capture.host import MapView, Remover
from gis_capture.overlap.models import NearbyParcel, NearbyParcelsQuery, NearbyParcelsResponse
from gis_capture.overlap.requests import PendingRequest, RequestPurpose, RequestTracker
from gis_capture.scheduling import Throttler
from gis_capture.services.api_client import GISApiClient

logger = logging.getLogger(__name__)

ParcelsCallback = Callable[[List[NearbyParcel], bool], None]


class NearbyParcelsLoader:
    """
    Read-only nearby parcel layer controller.

    Example:
        loader = NearbyParcelsLoader(settings, client, tracker, map_view)
        loader.start()
    """

    def __init__(
        self,
        settings: CaptureSettings,
        client: GISApiClient,
        tracker: RequestTracker,
        map_view: MapView,
        record_id: str = "",
        on_parcels: Optional[ParcelsCallback] = None,
    ):
        self.config = settings.nearby_parcels
        self.client = client
        self.tracker = tracker
        self.map_view = map_view
        self.record_id = record_id
        self.on_parcels = on_parcels

        self.visible = False
        self.loading = False
        self.parcels: List[NearbyParcel] = []
        self.truncated = False

        self._reload = Throttler(
            self._reload_if_visible,
            settings.timing.nearby_reload_interval,
            leading=False,
            trailing=True,
            name="nearby_parcels_reload",
        )
        self._remove_move_listener: Optional[Remover] = None

    @property
    def enabled(self) -> bool:
        return self.config.is_enabled

    def start(self) -> None:
        """Attach to map movements and load immediately in ON_LOAD mode."""
        if not self.enabled:
            return
        self._remove_move_listener = self.map_view.add_move_listener(self.on_map_moved)
        if self.config.enabled == NearbyParcelsMode.ON_LOAD:
            self.load()

    def on_map_moved(self) -> None:
        self._reload()

    def _reload_if_visible(self) -> None:
        if self.visible:
            self.load()

    def toggle(self) -> bool:
        """Show or hide the layer; returns the new visibility."""
        if not self.enabled:
            return False
        if self.visible:
            self.visible = False
            self.tracker.cancel(RequestPurpose.NEARBY_PARCELS)
            self.loading = False
            self._deliver([], False)
        else:
            self.visible = True
            self.load()
        return self.visible

    def build_query(self) -> NearbyParcelsQuery:
        return NearbyParcelsQuery(
            form_id=self.config.form_id,
            geometry_field_id=self.config.geometry_field_id or "c_geometry",
            bounds=self.map_view.get_bounds(),
            max_results=self.config.max_results,
            filter_condition=self.config.filter_condition,
            return_fields=list(self.config.display_fields),
            exclude_record_id=self.record_id or None,
        )

    def load(self) -> Optional[PendingRequest]:
        """Fetch parcels for the current bounds, superseding a fetch in flight."""
        if not self.enabled:
            return None
        if self.config.enabled == NearbyParcelsMode.ON_LOAD:
            self.visible = True

        try:
            self.client.endpoint_url("nearbyParcels")
        except InvalidApiUrlError as e:
            logger.error("Invalid API URL, skipping nearby parcels fetch: %s", e)
            return None

        query = self.build_query()
        self.loading = True
        return self.tracker.launch(
            RequestPurpose.NEARBY_PARCELS,
            self.client.nearby_parcels(query),
            on_result=self._on_result,
            on_error=self._on_error,
            on_cancelled=self._on_cancelled,
        )

    def _on_result(self, response: NearbyParcelsResponse) -> None:
        self.loading = False
        logger.info(
            "Loaded %d nearby parcel(s)%s",
            len(response.parcels),
            " (truncated)" if response.truncated else "",
        )
        self._deliver(response.parcels, response.truncated)

    def _on_error(self, error: BaseException) -> None:
        self.loading = False
        if isinstance(error, RequestTimeoutError):
            logger.info("Nearby parcels fetch cancelled: %s", error)
            return
        logger.warning("Failed to load nearby parcels: %s", error)

    def _on_cancelled(self, request: PendingRequest) -> None:
        self.loading = False
        logger.info("Nearby parcels fetch cancelled")

    def _deliver(self, parcels: List[NearbyParcel], truncated: bool) -> None:
        self.parcels = list(parcels)
        self.truncated = truncated
        self.map_view.show_nearby_parcels(self.parcels, truncated)
        if self.on_parcels is not None:
            try:
                self.on_parcels(self.parcels, truncated)
            except Exception:
                logger.exception("on_parcels callback failed")

    def stop(self) -> None:
        """Cancel the pending reload and fetch and detach from the map."""
        self._reload.cancel()
        self.tracker.cancel(RequestPurpose.NEARBY_PARCELS)
        self.loading = False
        if self._remove_move_listener is not None:
            self._remove_move_listener()
            self._remove_move_listener = None
