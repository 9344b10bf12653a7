"""
Overlap checking against stored boundaries.

Builds ``checkOverlap`` requests from the capture settings, runs them on the
``overlap`` request channel and classifies failures. Timeouts and superseded
requests are silent; any other failure is reported once through
``on_failure`` so that the caller can warn the user and carry on.
"""

import logging
from typing import Any, Callable, Dict, List, Optional

from shapely.errors import GEOSException
from shapely.geometry import shape

from gis_capture.config import CaptureSettings
from gis_capture.exceptions import GeometryError, InvalidApiUrlError, RequestTimeoutError
from gis_capture.geometry.ring import Ring, ring_to_polygon
from gis_capture.overlap.models import (
    OverlapCheckRequest,
    OverlapCheckResponse,
    OverlapOptions,
    OverlapRecord,
    OverlapTarget,
)
from gis_capture.overlap.requests import PendingRequest, RequestPurpose, RequestTracker
from gis_capture.overlap.self_overlap import filter_self_overlaps
from gis_capture.services.api_client import GISApiClient

logger = logging.getLogger(__name__)

FAILURE_WARNING = "Could not check for overlaps. Proceeding without check."


class OverlapChecker:
    """
    Issues overlap queries and filters their results.

    Example:
        checker = OverlapChecker(settings, client, RequestTracker())
        checker.check(geometry, on_result=show, on_failure=warn)
    """

    def __init__(
        self,
        settings: CaptureSettings,
        client: GISApiClient,
        tracker: RequestTracker,
        record_id: str = "",
    ):
        self.settings = settings
        self.client = client
        self.tracker = tracker
        self.record_id = record_id

    @property
    def enabled(self) -> bool:
        return self.settings.overlap.enabled

    @property
    def pending(self) -> bool:
        return self.tracker.has_pending(RequestPurpose.OVERLAP)

    def build_request(self, geometry: Dict[str, Any]) -> OverlapCheckRequest:
        config = self.settings.overlap
        target = OverlapTarget(
            form_id=config.form_id,
            geometry_field_id=config.geometry_field or "c_geometry",
            filter_condition=config.filter_condition,
            exclude_record_id=self.record_id or None,
        )
        if self.record_id:
            logger.debug("Overlap check excludes record %s", self.record_id)
        options = OverlapOptions(
            return_fields=list(config.display_fields),
            min_overlap_percent=config.min_overlap_percent,
            max_results=config.max_results,
            include_overlap_geometry=config.include_overlap_geometry,
        )
        return OverlapCheckRequest(geometry=geometry, target=target, options=options)

    def check(
        self,
        geometry: Optional[Dict[str, Any]],
        on_result: Callable[[OverlapCheckResponse], None],
        on_failure: Callable[[str], None],
        on_cancelled: Optional[Callable[[], None]] = None,
    ) -> Optional[PendingRequest]:
        """
        Start an overlap query, superseding any query in flight.

        Args:
            geometry: GeoJSON polygon to check
            on_result: Receives the parsed response of the latest query
            on_failure: Receives the failure message of the latest query
            on_cancelled: Called when the latest query times out

        Returns:
            The PendingRequest, or None when checking is disabled, there is no
            geometry, or the API URL is rejected.
        """
        if not self.enabled or geometry is None:
            return None

        try:
            self.client.endpoint_url("checkOverlap")
        except InvalidApiUrlError as e:
            logger.error("Invalid API URL, skipping overlap check: %s", e)
            return None

        request = self.build_request(geometry)

        def handle_error(error: BaseException) -> None:
            if isinstance(error, RequestTimeoutError):
                logger.warning("Overlap check timed out: %s", error)
                if on_cancelled is not None:
                    on_cancelled()
                return
            message = getattr(error, "message", None) or str(error)
            logger.warning("Overlap check failed: %s", message)
            on_failure(message)

        def handle_cancelled(_: PendingRequest) -> None:
            logger.info("Overlap check cancelled")
            if on_cancelled is not None:
                on_cancelled()

        return self.tracker.launch(
            RequestPurpose.OVERLAP,
            self.client.check_overlap(request),
            on_result=on_result,
            on_error=handle_error,
            on_cancelled=handle_cancelled,
        )

    def cancel(self) -> None:
        self.tracker.cancel(RequestPurpose.OVERLAP)

    def resolve(
        self,
        response: OverlapCheckResponse,
        vertices: Ring,
        current_area: Optional[float],
        initial_geometry: Optional[Dict[str, Any]],
        initial_area: Optional[float],
    ) -> List[OverlapRecord]:
        """
        Overlaps left after dropping the edited record's overlap with itself.

        The self-overlap filter runs only when a baseline was loaded and the
        current area is known. Without a baseline area only the unchanged
        rule can apply.
        """
        overlaps = list(response.overlaps)
        if not overlaps:
            return []

        if initial_geometry is None:
            logger.debug("Self-overlap filter skipped: no stored baseline")
            return overlaps
        if current_area is None:
            logger.debug("Self-overlap filter skipped: no current metrics")
            return overlaps

        current_polygon = _polygon_or_none(lambda: ring_to_polygon(vertices))
        initial_polygon = _polygon_or_none(lambda: shape(initial_geometry))

        return filter_self_overlaps(
            overlaps,
            current_area=current_area,
            initial_area=initial_area,
            current_polygon=current_polygon,
            initial_polygon=initial_polygon,
            thresholds=self.settings.overlap.self_overlap,
        )


def _polygon_or_none(build: Callable[[], Any]) -> Any:
    try:
        return build()
    except (GeometryError, GEOSException, ValueError, TypeError, KeyError) as e:
        logger.warning("Could not build polygon for containment check: %s", e)
        return None
