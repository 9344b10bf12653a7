"""
Capture Controller.

Owns the capture state and every operation that changes it. After each
mutation of the vertex ring the derived state (metrics, crossings, warnings,
persisted output) is rebuilt from the ring, and while previewing the overlap
check is re-issued.

Phases:
    EMPTY -> SELECT (mode choice) -> DRAWING -> PREVIEW -> SAVED
    PREVIEW -> DRAWING via enter_edit_mode(), back via complete_polygon()
    VIEW for read-only hosts

Operations return an ``EditOutcome`` instead of raising for expected
refusals; user-facing messages go to the ``on_notify`` callback. Faults in
background work (network, positioning) are logged and reported through
``on_error`` and never propagate to the host.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Tuple, Union

from gis_capture.autocenter.monitor import AutoCenter
from gis_capture.capture.drag import VertexDrag
from gis_capture.capture.state import (
    CaptureMethod,
    CaptureState,
    Drawing,
    EditOutcome,
    Empty,
    OverlapStatus,
    Phase,
    Preview,
    Saved,
    Selecting,
    Viewing,
)
from gis_capture.config import CaptureMode, CaptureSettings, DefaultMode
from gis_capture.exceptions import GeocodingError, GeometryError
from gis_capture.geometry.intersections import IntersectionResult, SelfIntersectionValidator
from gis_capture.geometry.metrics import PolygonMetrics, compute_metrics, geodesic_area_hectares
from gis_capture.geometry.ring import (
    Vertex,
    edge_midpoints,
    extract_polygon,
    haversine_distance,
    ring_from_geojson,
    ring_to_geojson,
    ring_to_polygon,
)
from gis_capture.geometry.validation import (
    CROSSING_MESSAGE,
    ValidationReport,
    area_warnings,
    validate_boundary,
    vertex_limit_warning,
)
from gis_capture.host import HostPage, MapView, extract_record_id, is_mobile_device
from gis_capture.overlap.checker import FAILURE_WARNING, OverlapChecker
from gis_capture.overlap.models import GeocodeResult, NearbyParcel, OverlapCheckResponse, OverlapRecord
from gis_capture.overlap.nearby import NearbyParcelsLoader
from gis_capture.overlap.requests import RequestTracker
from gis_capture.positioning.sources import PositionFix, PositionSource
from gis_capture.positioning.tracker import FIRST_FIX_ZOOM, AccuracyBand, PositioningTracker
from gis_capture.scheduling import Debouncer
from gis_capture.services.api_client import GISApiClient
from gis_capture.services.geocoding import ApiGeocoder, Geocoder, NominatimGeocoder

logger = logging.getLogger(__name__)

CLOSE_HINT_DISTANCE = 20.0
SEARCH_RESULT_ZOOM = 16
SEARCH_RESULT_LIMIT = 5

INTERSECTION_WARNING = f"{CROSSING_MESSAGE}. Adjust the corners to fix this."
MIN_CORNERS_MESSAGE = "Need at least 3 corners"

EDITABLE_PHASES = (Phase.DRAWING, Phase.PREVIEW)


# =============================================================================
# Callbacks
# =============================================================================


@dataclass
class CaptureCallbacks:
    """
    Host callbacks.

    Attributes:
        on_geometry_change: Called with (GeoJSON polygon, metrics) when metrics change
        on_validation_error: Called with the errors of a failed validation
        on_error: Called with a message when background work fails
        on_notify: Called with (message, level) for user-facing notices
        on_mode_prompt: Called when the user must choose between walk and draw
        on_close_prompt: Called with the distance when the walker is back at the start
        on_overlaps: Called with the overlap list after each applied check
        on_nearby_parcels: Called with (parcels, truncated) after each load
    """
    on_geometry_change: Optional[Callable[[Optional[Dict[str, Any]], Optional[PolygonMetrics]], None]] = None
    on_validation_error: Optional[Callable[[List[str]], None]] = None
    on_error: Optional[Callable[[str], None]] = None
    on_notify: Optional[Callable[[str, str], None]] = None
    on_mode_prompt: Optional[Callable[[], None]] = None
    on_close_prompt: Optional[Callable[[float], None]] = None
    on_overlaps: Optional[Callable[[List[OverlapRecord]], None]] = None
    on_nearby_parcels: Optional[Callable[[List[NearbyParcel], bool], None]] = None


# =============================================================================
# Controller
# =============================================================================


class CaptureController:
    """
    Boundary capture state machine.

    Example:
        controller = CaptureController(settings, host=page, map_view=view)
        controller.start()
        controller.begin()
        controller.add_vertex(-29.310, 27.480)
        controller.add_vertex(-29.310, 27.482)
        controller.add_vertex(-29.312, 27.482)
        controller.complete_polygon()
    """

    def __init__(
        self,
        settings: CaptureSettings,
        host: Optional[HostPage] = None,
        map_view: Optional[MapView] = None,
        position_source: Optional[PositionSource] = None,
        client: Optional[GISApiClient] = None,
        geocoder: Optional[Geocoder] = None,
        search_geocoder: Optional[Geocoder] = None,
        callbacks: Optional[CaptureCallbacks] = None,
        validator: Optional[SelfIntersectionValidator] = None,
        user_agent: Optional[str] = None,
    ):
        """
        Initialize the controller.

        Args:
            settings: Capture settings
            host: Hosting form page
            map_view: Map surface
            position_source: Position stream for walk mode
            client: GIS API client, built from settings if omitted
            geocoder: Geocoder used by auto-center, Nominatim if omitted
            search_geocoder: Geocoder used by location search, the GIS API if omitted
            callbacks: Host callbacks
            validator: Self-intersection validator
            user_agent: Device user agent, read from the host if omitted
        """
        self.settings = settings
        self.host = host
        self.map_view = map_view
        self.callbacks = callbacks or CaptureCallbacks()
        self.validator = validator or SelfIntersectionValidator()
        self.state = CaptureState()
        self.warnings: Dict[str, str] = {}
        self.last_report: Optional[ValidationReport] = None

        self.record_id = settings.record_id
        if not self.record_id and host is not None:
            self.record_id = extract_record_id(host.page_url())
            if self.record_id:
                logger.info("Record id extracted from URL: %s", self.record_id)

        if user_agent is None:
            user_agent = host.user_agent() if host is not None else ""
        self.user_agent = user_agent

        timing = settings.timing
        self._owned_client = client is None
        self.client = client or GISApiClient.from_settings(settings)
        self.requests = RequestTracker(timeout=timing.request_timeout)
        self.overlap_checker = OverlapChecker(settings, self.client, self.requests, self.record_id)
        self.search_geocoder = search_geocoder or ApiGeocoder(self.client)

        self.tracker: Optional[PositioningTracker] = None
        if position_source is not None:
            self.tracker = PositioningTracker(
                position_source,
                settings.gps,
                add_vertex=self.add_vertex,
                on_fix=self._on_position_fix,
                on_error=self._on_position_error,
                on_auto_close=self._on_auto_close,
                prompt_reset=timing.auto_close_prompt_reset,
            )

        self.nearby: Optional[NearbyParcelsLoader] = None
        if map_view is not None and settings.nearby_parcels.is_enabled:
            self.nearby = NearbyParcelsLoader(
                settings,
                self.client,
                self.requests,
                map_view,
                record_id=self.record_id,
                on_parcels=self._on_nearby_parcels,
            )

        self._owned_geocoder: Optional[Geocoder] = None
        self.auto_center: Optional[AutoCenter] = None
        if host is not None and map_view is not None and settings.auto_center.enabled:
            if geocoder is None:
                geocoder = self._owned_geocoder = NominatimGeocoder(timeout=timing.request_timeout)
            self.auto_center = AutoCenter(settings, host, map_view, geocoder, notify=self._notify)

        self._intersection_check = Debouncer(
            self._run_intersection_check, timing.intersection_debounce, name="self_intersection_check"
        )
        self._overlap_check = Debouncer(
            self.check_overlaps_now, timing.overlap_debounce, name="overlap_check"
        )
        self._drag: Optional[VertexDrag] = None
        self._started = False
        self._destroyed = False

    # -------------------------------------------------------------------------
    # Read access
    # -------------------------------------------------------------------------

    @property
    def phase(self) -> Phase:
        return self.state.phase

    @property
    def mode(self) -> Optional[CaptureMethod]:
        return self.state.mode

    @property
    def vertices(self) -> Tuple[Vertex, ...]:
        return tuple(self.state.vertices)

    @property
    def metrics(self) -> Optional[PolygonMetrics]:
        return self.state.metrics

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def average_gps_accuracy(self) -> int:
        return self.tracker.average_accuracy if self.tracker else 0

    def to_geojson(self) -> Optional[Dict[str, Any]]:
        return ring_to_geojson(self.state.vertices)

    def edge_midpoints(self) -> List[Tuple[int, Vertex]]:
        """Insertion handles: (edge index, midpoint) for every edge of the ring."""
        return edge_midpoints(self.state.vertices)

    def is_near_first_vertex(self, lat: float, lng: float, distance: float = CLOSE_HINT_DISTANCE) -> bool:
        """Whether a pointer position should offer closing the ring."""
        if len(self.state.vertices) < 3:
            return False
        first = self.state.vertices[0]
        return haversine_distance(first.lat, first.lng, lat, lng) <= distance

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def start(self) -> None:
        """Load any persisted boundary and start the background helpers."""
        if self._started or self._destroyed:
            return
        self._started = True

        if self.map_view is not None:
            self.map_view.set_view(
                self.settings.default_latitude,
                self.settings.default_longitude,
                self.settings.default_zoom,
            )

        self.load_existing_value()
        if self.settings.capture_mode == CaptureMode.VIEW_ONLY:
            self._set_phase(Viewing())

        if self.nearby is not None:
            self.nearby.start()
        if self.auto_center is not None:
            self.auto_center.start()
        self._render()

    def begin(self) -> EditOutcome:
        """Start capturing from EMPTY according to the configured modes."""
        if self._destroyed or self.state.phase != Phase.EMPTY:
            return EditOutcome.INVALID_PHASE

        capture_mode = self.settings.capture_mode
        if capture_mode == CaptureMode.VIEW_ONLY:
            self._set_phase(Viewing())
        elif capture_mode == CaptureMode.WALK:
            self._start_drawing(CaptureMethod.WALK)
        elif capture_mode == CaptureMode.DRAW:
            self._start_drawing(CaptureMethod.DRAW)
        elif self.settings.default_mode == DefaultMode.WALK:
            self._start_drawing(CaptureMethod.WALK)
        elif self.settings.default_mode == DefaultMode.DRAW:
            self._start_drawing(CaptureMethod.DRAW)
        elif is_mobile_device(self.user_agent):
            self._set_phase(Selecting())
            self._emit("on_mode_prompt")
        else:
            self._start_drawing(CaptureMethod.DRAW)
        return EditOutcome.APPLIED

    def choose_mode(self, mode: Union[CaptureMethod, str]) -> EditOutcome:
        """Answer the mode prompt."""
        if self._destroyed or self.state.phase != Phase.SELECT:
            return EditOutcome.INVALID_PHASE
        self._start_drawing(CaptureMethod(mode))
        return EditOutcome.APPLIED

    def _start_drawing(self, mode: CaptureMethod) -> None:
        self.state.vertices = []
        self.state.accuracy_samples = []
        self._set_phase(Drawing(mode=mode))
        self._rebuild()
        if mode == CaptureMethod.WALK:
            if self.tracker is None:
                self._notify("GPS not available on this device", "error")
            else:
                self.tracker.start()
        else:
            self._notify("Click on the map to add corners", "info")

    def _set_phase(self, phase_state) -> None:
        previous = self.state.phase
        self.state.phase_state = phase_state
        if previous != phase_state.phase:
            logger.info("Phase %s -> %s", previous.value, phase_state.phase.value)

    # -------------------------------------------------------------------------
    # Vertex operations
    # -------------------------------------------------------------------------

    def add_vertex(self, lat: float, lng: float) -> EditOutcome:
        """Append a corner while drawing."""
        if self._destroyed or self.state.phase != Phase.DRAWING:
            return EditOutcome.INVALID_PHASE

        max_vertices = self.settings.validation.max_vertices
        if len(self.state.vertices) >= max_vertices:
            self._notify(f"Maximum corners reached ({max_vertices})", "error")
            return EditOutcome.VERTEX_LIMIT

        self.state.vertices.append(Vertex(lat=lat, lng=lng))
        self._rebuild()
        self._update_vertex_limit_warning()

        if self.state.mode == CaptureMethod.WALK and self.tracker is not None:
            self.tracker.check_auto_close(self.state.vertices)

        self._notify(f"Corner {len(self.state.vertices)} marked", "success")
        self._after_geometry_edit(persist=False)
        return EditOutcome.APPLIED

    def undo_last_vertex(self) -> EditOutcome:
        """Remove the most recent corner while drawing."""
        if self._destroyed or self.state.phase != Phase.DRAWING:
            return EditOutcome.INVALID_PHASE
        if not self.state.vertices:
            return EditOutcome.NOTHING_TO_UNDO

        self.state.vertices.pop()
        if self.tracker is not None and len(self.tracker.samples) > len(self.state.vertices):
            self.tracker.samples.pop()
            self.state.accuracy_samples = list(self.tracker.samples)
        self.state.clear_selection()
        self._rebuild()
        self._update_vertex_limit_warning()
        self._notify("Corner removed", "info")
        return EditOutcome.APPLIED

    def delete_vertex(self, index: int) -> EditOutcome:
        """Remove the corner at ``index``; refused at 3 corners or fewer."""
        if self._destroyed or self.state.phase not in EDITABLE_PHASES:
            return EditOutcome.INVALID_PHASE
        if not 0 <= index < len(self.state.vertices):
            return EditOutcome.INVALID_INDEX
        if len(self.state.vertices) <= 3:
            self._notify(MIN_CORNERS_MESSAGE, "warning")
            return EditOutcome.MIN_VERTICES

        del self.state.vertices[index]
        self.state.clear_selection()
        self._rebuild()
        self._update_vertex_limit_warning()
        self._after_geometry_edit(persist=True)
        self._notify("Corner removed", "info")
        return EditOutcome.APPLIED

    def select_vertex(self, index: int) -> EditOutcome:
        if self._destroyed or self.state.phase not in EDITABLE_PHASES:
            return EditOutcome.INVALID_PHASE
        if not 0 <= index < len(self.state.vertices):
            return EditOutcome.INVALID_INDEX
        self.state.phase_state.selected_vertex_index = index
        self._render()
        return EditOutcome.APPLIED

    def deselect_vertex(self) -> None:
        self.state.clear_selection()
        self._render()

    def delete_selected_vertex(self) -> EditOutcome:
        index = self.state.selected_vertex_index
        if index is None:
            return EditOutcome.INVALID_INDEX
        return self.delete_vertex(index)

    def insert_vertex_on_edge(self, edge_index: int, lat: float, lng: float) -> EditOutcome:
        """Insert a corner right after ``edge_index``, splitting that edge."""
        if self._destroyed or self.state.phase not in EDITABLE_PHASES:
            return EditOutcome.INVALID_PHASE
        if not 0 <= edge_index < len(self.state.vertices):
            return EditOutcome.INVALID_INDEX
        max_vertices = self.settings.validation.max_vertices
        if len(self.state.vertices) >= max_vertices:
            self._notify(f"Maximum corners reached ({max_vertices})", "error")
            return EditOutcome.VERTEX_LIMIT

        self.state.vertices.insert(edge_index + 1, Vertex(lat=lat, lng=lng))
        self.state.clear_selection()
        self._rebuild()
        self._update_vertex_limit_warning()
        self._after_geometry_edit(persist=True)
        self._notify(f"Corner {edge_index + 2} added", "success")
        return EditOutcome.APPLIED

    def move_vertex(self, index: int, lat: float, lng: float) -> EditOutcome:
        """Reposition a corner in one step."""
        if self._destroyed or self.state.phase not in EDITABLE_PHASES:
            return EditOutcome.INVALID_PHASE
        if not 0 <= index < len(self.state.vertices):
            return EditOutcome.INVALID_INDEX

        self.state.vertices[index] = Vertex(lat=lat, lng=lng)
        self._rebuild()
        self._after_geometry_edit(persist=True)
        return EditOutcome.APPLIED

    def begin_vertex_drag(self, index: int) -> Optional[VertexDrag]:
        """Start dragging a corner; a drag already running is ended first."""
        if self._destroyed or self.state.phase not in EDITABLE_PHASES:
            return None
        if not 0 <= index < len(self.state.vertices):
            return None
        if self._drag is not None and self._drag.active:
            self._drag.end()
        self._drag = VertexDrag(self, index)
        return self._drag

    def _reposition_vertex(self, index: int, vertex: Vertex) -> None:
        if self._destroyed or not 0 <= index < len(self.state.vertices):
            return
        self.state.vertices[index] = vertex
        if self.map_view is not None:
            self.map_view.show_drag_position(index, vertex.lat, vertex.lng)

    def _refresh_during_drag(self) -> None:
        if self._destroyed:
            return
        self._recompute_metrics()
        self._intersection_check()
        self._render()

    def _finish_drag(self, drag: VertexDrag, position: Optional[Vertex]) -> EditOutcome:
        if self._drag is drag:
            self._drag = None
        if self._destroyed or self.state.phase not in EDITABLE_PHASES:
            return EditOutcome.INVALID_PHASE
        if not 0 <= drag.index < len(self.state.vertices):
            return EditOutcome.INVALID_INDEX
        if position is not None:
            self.state.vertices[drag.index] = position
        self._rebuild()
        self._after_geometry_edit(persist=True)
        return EditOutcome.APPLIED

    # -------------------------------------------------------------------------
    # Derived state
    # -------------------------------------------------------------------------

    def _recompute_metrics(self) -> None:
        self.state.metrics = compute_metrics(self.state.vertices)
        if self.state.metrics is not None:
            self._emit("on_geometry_change", self.to_geojson(), self.state.metrics)

    def _rebuild(self) -> None:
        """Recompute everything derived from the ring right away."""
        self._intersection_check.cancel()
        self._recompute_metrics()
        self._run_intersection_check()
        self._update_area_warnings()
        self._render()

    def _run_intersection_check(self) -> IntersectionResult:
        if len(self.state.vertices) < 3:
            self.state.intersection_points = []
            self._set_warning("intersection", None)
            return IntersectionResult()

        result = self.validator.check(self.state.vertices)
        self.state.intersection_points = list(result.points)
        self._set_warning("intersection", INTERSECTION_WARNING if result.has_crossing else None)
        self._render()
        return result

    def _update_area_warnings(self) -> None:
        warnings = area_warnings(self.state.metrics, self.settings.validation)
        self._set_warning("area", ". ".join(warnings) if warnings else None)

    def _update_vertex_limit_warning(self) -> None:
        self._set_warning(
            "vertexLimit",
            vertex_limit_warning(len(self.state.vertices), self.settings.validation.max_vertices),
        )

    def _set_warning(self, kind: str, message: Optional[str]) -> None:
        if message:
            if self.warnings.get(kind) != message:
                logger.debug("Warning %s: %s", kind, message)
            self.warnings[kind] = message
        else:
            self.warnings.pop(kind, None)

    def _after_geometry_edit(self, persist: bool) -> None:
        if persist:
            self.persist()
        if self.state.phase == Phase.PREVIEW:
            self.check_overlaps_now()

    def validate(self) -> ValidationReport:
        """Full validation of the current ring; errors go to ``on_validation_error``."""
        intersections = IntersectionResult(
            has_crossing=bool(self.state.intersection_points),
            points=list(self.state.intersection_points),
        )
        report = validate_boundary(
            len(self.state.vertices), self.state.metrics, intersections, self.settings.validation
        )
        self.last_report = report
        if report.errors:
            logger.info("Validation failed: %s", "; ".join(report.errors))
            self._emit("on_validation_error", list(report.errors))
        return report

    # -------------------------------------------------------------------------
    # Phase transitions
    # -------------------------------------------------------------------------

    def complete_polygon(self) -> EditOutcome:
        """Finish drawing: DRAWING -> PREVIEW, validate, persist, check overlaps."""
        if self._destroyed or self.state.phase != Phase.DRAWING:
            return EditOutcome.INVALID_PHASE
        if len(self.state.vertices) < 3:
            self._notify(MIN_CORNERS_MESSAGE, "error")
            return EditOutcome.MIN_VERTICES

        if self.tracker is not None:
            self.tracker.stop()

        self._set_phase(Preview(mode=self.state.mode))
        self._rebuild()
        self.validate()
        self.persist()
        self.check_overlaps_now()
        return EditOutcome.APPLIED

    def enter_edit_mode(self) -> EditOutcome:
        """PREVIEW (or SAVED) -> DRAWING; the overlap findings become stale."""
        if self._destroyed or self.state.phase not in (Phase.PREVIEW, Phase.SAVED):
            return EditOutcome.INVALID_PHASE
        self._overlap_check.cancel()
        self.overlap_checker.cancel()
        self._set_phase(Drawing(mode=CaptureMethod.DRAW))
        self._show_overlaps([])
        self._render()
        return EditOutcome.APPLIED

    def save(self) -> EditOutcome:
        """PREVIEW -> SAVED; refused while overlaps are unresolved."""
        if self._destroyed or self.state.phase != Phase.PREVIEW:
            return EditOutcome.INVALID_PHASE
        status = self.state.overlap
        if status.unresolved:
            self._notify("Resolve the overlapping boundaries before saving", "warning")
            return EditOutcome.OVERLAP_UNCONFIRMED

        self.overlap_checker.cancel()
        self._overlap_check.cancel()
        self._set_phase(Saved(mode=self.state.mode, overlap_confirmed=status.confirmed))
        self.persist()
        self._render()
        return EditOutcome.APPLIED

    def confirm_overlaps(self) -> EditOutcome:
        """Accept the reported overlaps and keep the geometry ("save anyway")."""
        if self._destroyed or self.state.phase != Phase.PREVIEW:
            return EditOutcome.INVALID_PHASE
        self.state.overlap.confirmed = True
        self._show_overlaps([], clear_status=False)
        self._notify("Saving boundary with overlaps", "warning")
        self.persist()
        return EditOutcome.APPLIED

    def adjust_for_overlaps(self) -> EditOutcome:
        """Go back to editing to move the boundary off the overlaps."""
        outcome = self.enter_edit_mode()
        if outcome.applied:
            self._notify("Adjust the boundary to avoid overlaps", "info")
        return outcome

    def clear(self) -> EditOutcome:
        """Drop the ring and all derived state; back to EMPTY."""
        if self._destroyed or self.state.phase == Phase.VIEW:
            return EditOutcome.INVALID_PHASE
        if self._drag is not None:
            self._drag.cancel()
            self._drag = None
        self._intersection_check.cancel()
        self._overlap_check.cancel()
        self.overlap_checker.cancel()
        if self.tracker is not None:
            self.tracker.stop()

        self.state.vertices = []
        self.state.metrics = None
        self.state.intersection_points = []
        self.state.accuracy_samples = []
        self.warnings.clear()
        self.last_report = None
        self._set_phase(Empty())
        self._show_overlaps([])

        if self.host is not None and self.settings.hidden_field_id:
            self.host.set_field_value(self.settings.hidden_field_id, "")
        self._render()
        self._notify("Drawing cleared", "info")
        return EditOutcome.APPLIED

    def redraw(self) -> EditOutcome:
        return self.clear()

    # -------------------------------------------------------------------------
    # Overlap checking
    # -------------------------------------------------------------------------

    def check_overlaps_now(self) -> bool:
        """
        Query overlaps for the previewed boundary immediately.

        Returns:
            True if a request was issued.
        """
        self._overlap_check.cancel()
        if self._destroyed or self.state.phase != Phase.PREVIEW:
            return False
        if not self.overlap_checker.enabled:
            return False

        status = self.state.overlap
        status.overlaps = []
        status.checked = False
        status.confirmed = False
        self._show_overlaps([], clear_status=False)

        request = self.overlap_checker.check(
            self.to_geojson(),
            on_result=self._on_overlap_result,
            on_failure=self._on_overlap_failure,
            on_cancelled=self._on_overlap_cancelled,
        )
        status.pending = request is not None
        return request is not None

    def check_overlaps_debounced(self) -> None:
        """Query overlaps once edits pause."""
        if not self._destroyed:
            self._overlap_check()

    def _preview_status(self) -> Optional[OverlapStatus]:
        if self._destroyed or self.state.phase != Phase.PREVIEW:
            return None
        return self.state.overlap

    def _on_overlap_result(self, response: OverlapCheckResponse) -> None:
        status = self._preview_status()
        if status is None:
            logger.debug("Ignoring overlap response outside preview")
            return

        current_area = self.state.metrics.area_hectares if self.state.metrics else None
        overlaps = self.overlap_checker.resolve(
            response,
            self.state.vertices,
            current_area,
            self.state.initial_geometry,
            self.state.initial_area_hectares,
        )
        status.pending = False
        status.checked = True
        status.overlaps = overlaps
        if overlaps:
            logger.info("Boundary overlaps %d stored record(s)", len(overlaps))
        self._show_overlaps(overlaps, clear_status=False)

    def _on_overlap_failure(self, message: str) -> None:
        status = self._preview_status()
        if status is None:
            return
        status.pending = False
        self._show_overlaps([], clear_status=False)
        self._notify(FAILURE_WARNING, "warning")
        self._emit("on_error", f"Overlap check failed: {message}")

    def _on_overlap_cancelled(self) -> None:
        status = self._preview_status()
        if status is not None:
            status.pending = False

    def _show_overlaps(self, overlaps: List[OverlapRecord], clear_status: bool = True) -> None:
        if clear_status:
            status = self.state.overlap
            if status is not None:
                status.overlaps = []
                status.checked = False
                status.pending = False
        if self.map_view is not None and not self._destroyed:
            self.map_view.show_overlaps(list(overlaps))
        self._emit("on_overlaps", list(overlaps))

    # -------------------------------------------------------------------------
    # Walk mode
    # -------------------------------------------------------------------------

    def mark_corner(self) -> EditOutcome:
        """Add the current position as a corner."""
        if self._destroyed or self.state.phase != Phase.DRAWING:
            return EditOutcome.INVALID_PHASE
        if self.tracker is None or self.state.mode != CaptureMethod.WALK:
            return EditOutcome.INVALID_PHASE
        outcome = self.tracker.mark_corner()
        if outcome is None:
            self._notify("Waiting for a usable GPS position", "warning")
            return EditOutcome.INVALID_PHASE
        if outcome.applied:
            self.state.accuracy_samples = list(self.tracker.samples)
        return outcome

    @property
    def can_mark_corner(self) -> bool:
        return (
            self.tracker is not None
            and self.state.phase == Phase.DRAWING
            and self.state.mode == CaptureMethod.WALK
            and self.tracker.can_mark
        )

    def _on_position_fix(self, fix: PositionFix, band: AccuracyBand, first: bool) -> None:
        if self._destroyed:
            return
        self.state.current_position = Vertex(lat=fix.lat, lng=fix.lng)
        self.state.gps_accuracy = fix.accuracy
        if first and self.map_view is not None:
            self.map_view.set_view(fix.lat, fix.lng, FIRST_FIX_ZOOM)
        if self.state.phase == Phase.DRAWING and self.tracker is not None:
            self.tracker.check_auto_close(self.state.vertices)
        self._render()

    def _on_position_error(self, error: Exception) -> None:
        if self._destroyed:
            return
        self._notify(f"GPS error: {error}", "error")

    def _on_auto_close(self, distance: float) -> None:
        if self._destroyed or self.state.phase != Phase.DRAWING:
            return
        self._notify("Close to start point.", "warning")
        self._emit("on_close_prompt", distance)

    def _on_nearby_parcels(self, parcels: List[NearbyParcel], truncated: bool) -> None:
        if not self._destroyed:
            self._emit("on_nearby_parcels", parcels, truncated)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def load_existing_value(self) -> bool:
        """Load the persisted boundary from the hidden field, if any."""
        if self.host is None or not self.settings.hidden_field_id:
            return False
        value = self.host.get_field_value(self.settings.hidden_field_id)
        if not value:
            logger.debug("No persisted boundary to load")
            return False
        return self.load_geometry(value)

    def load_geometry(self, value: Union[str, Dict[str, Any]]) -> bool:
        """
        Load a persisted Polygon or Feature and preview it.

        The first successful load becomes the baseline for self-overlap
        filtering.

        Returns:
            True if a ring was loaded.
        """
        if self._destroyed:
            return False
        try:
            polygon = extract_polygon(value)
            vertices = ring_from_geojson(polygon)
        except GeometryError as e:
            logger.warning("Failed to load existing value: %s", e)
            return False
        if not vertices:
            return False

        initial_area = None
        if len(vertices) >= 3:
            try:
                initial_area = geodesic_area_hectares(ring_to_polygon(vertices))
            except (GeometryError, ValueError) as e:
                logger.warning("Could not calculate initial area: %s", e)
        if self.state.set_baseline(polygon, initial_area):
            logger.info(
                "Stored initial geometry for self-overlap detection, area=%s ha",
                f"{initial_area:.4f}" if initial_area is not None else "unknown",
            )

        self.state.vertices = vertices
        if self.settings.capture_mode == CaptureMode.VIEW_ONLY:
            self._set_phase(Viewing())
        else:
            self._set_phase(Preview(mode=None))
        self._rebuild()
        return True

    def persist(self) -> None:
        """Write the GeoJSON and the derived output fields to the host form."""
        if self.host is None or self._destroyed:
            return
        geometry = self.to_geojson()
        if self.settings.hidden_field_id:
            self.host.set_field_value(
                self.settings.hidden_field_id, json.dumps(geometry) if geometry else ""
            )

        metrics = self.state.metrics
        if metrics is None:
            return
        fields = self.settings.output_fields
        if fields.area_field_id:
            self.host.set_field_value(fields.area_field_id, f"{metrics.area_hectares:.4f}")
        if fields.perimeter_field_id:
            self.host.set_field_value(fields.perimeter_field_id, f"{metrics.perimeter_meters:.2f}")
        if fields.centroid_field_id:
            centroid = {"type": "Point", "coordinates": [metrics.centroid.lng, metrics.centroid.lat]}
            self.host.set_field_value(fields.centroid_field_id, json.dumps(centroid))
        if fields.vertex_count_field_id:
            self.host.set_field_value(fields.vertex_count_field_id, str(metrics.vertex_count))

    # -------------------------------------------------------------------------
    # Location search
    # -------------------------------------------------------------------------

    async def search_location(self, query: str) -> List[GeocodeResult]:
        """Search places; failures are reported and yield no results."""
        query = query.strip()
        if not query or self._destroyed:
            return []
        try:
            return await self.search_geocoder.geocode(query, limit=SEARCH_RESULT_LIMIT)
        except GeocodingError as e:
            logger.warning("Search error: %s", e)
            self._notify("Search failed. Please try again.", "error")
            return []

    def select_search_result(self, result: GeocodeResult) -> bool:
        if self._destroyed or self.map_view is None:
            return False
        self.map_view.set_view(result.lat, result.lon, SEARCH_RESULT_ZOOM)
        logger.info("Map moved to %s", result.display_name or "selected location")
        self._notify("Navigated to location", "success")
        return True

    # -------------------------------------------------------------------------
    # Notifications
    # -------------------------------------------------------------------------

    def _render(self) -> None:
        if self.map_view is not None and not self._destroyed:
            self.map_view.render(self.state)

    def _notify(self, message: str, level: str = "info") -> None:
        log = logger.warning if level in ("warning", "error") else logger.debug
        log("%s", message)
        self._emit("on_notify", message, level)

    def _emit(self, name: str, *args: Any) -> None:
        if self._destroyed:
            return
        callback = getattr(self.callbacks, name)
        if callback is None:
            return
        try:
            callback(*args)
        except Exception:
            logger.exception("Host callback %s failed", name)

    # -------------------------------------------------------------------------
    # Teardown
    # -------------------------------------------------------------------------

    def destroy(self) -> None:
        """
        Tear down.

        Requests and timers are cancelled first, then the position stream and
        the listeners, and the map surface is released last. Idempotent.
        """
        if self._destroyed:
            return
        self._destroyed = True

        self.requests.close()
        if self.tracker is not None:
            self.tracker.stop()
        if self.auto_center is not None:
            self.auto_center.stop()
        if self.nearby is not None:
            self.nearby.stop()
        if self._drag is not None:
            self._drag.cancel()
            self._drag = None
        self._intersection_check.cancel()
        self._overlap_check.cancel()

        if self.map_view is not None:
            self.map_view.release()
        logger.info("Component destroyed")

    async def aclose(self) -> None:
        """Destroy and close the network sessions this controller created."""
        self.destroy()
        if self._owned_client:
            await self.client.close()
        if self._owned_geocoder is not None:
            await self._owned_geocoder.close()


# =============================================================================
# Entry point
# =============================================================================


def init(
    container_id: str,
    host: HostPage,
    options: Optional[Dict[str, Any]] = None,
    map_view: Optional[MapView] = None,
    position_source: Optional[PositionSource] = None,
    callbacks: Optional[CaptureCallbacks] = None,
    **kwargs: Any,
) -> Optional[CaptureController]:
    """
    Create and start a capture component.

    Args:
        container_id: Id of the element hosting the component
        host: Hosting form page
        options: Host option mapping, camelCase or snake_case keys
        map_view: Map surface
        position_source: Position stream for walk mode
        callbacks: Host callbacks
        **kwargs: Passed on to CaptureController

    Returns:
        The started controller, or None if the container does not exist.
    """
    if host.get_container(container_id) is None:
        logger.error("Container not found: %s", container_id)
        return None

    settings = CaptureSettings.from_options(options)
    logging.getLogger("gis_capture").setLevel(settings.log_level.value)
    controller = CaptureController(
        settings,
        host=host,
        map_view=map_view,
        position_source=position_source,
        callbacks=callbacks,
        **kwargs,
    )
    controller.start()
    return controller
