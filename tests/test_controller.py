"""
Tests for the capture controller.

Tests cover:
- Mode selection and phase transitions
- Vertex operations and their refusals
- Derived state: metrics, warnings, crossings, persistence
- Vertex drag sessions
- Overlap checks: results, failures, stale responses, confirmation
- Walk mode marking and the close prompt
- Location search, record id binding, init() and teardown
"""

import asyncio
import json
import logging
from unittest.mock import AsyncMock, MagicMock

import pytest

from gis_capture.capture.controller import (
    INTERSECTION_WARNING,
    CaptureController,
    init,
)
from gis_capture.capture.state import CaptureMethod, EditOutcome, Phase
from gis_capture.config import CaptureSettings
from gis_capture.exceptions import ApiRequestError, GeocodingError
from gis_capture.geometry.ring import Vertex
from gis_capture.overlap.checker import FAILURE_WARNING
from gis_capture.overlap.models import GeocodeResult, OverlapCheckResponse, OverlapRecord
from gis_capture.positioning.sources import PositionFix, StreamPositionSource

from tests.conftest import (
    FakeHostPage,
    polygon_geojson,
    square,
)

MOBILE_UA = "Mozilla/5.0 (Linux; Android 13; SM-A135F) AppleWebKit/537.36 Mobile Safari/537.36"
DESKTOP_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) Chrome/126.0"


def make_settings(**options):
    base = {
        "hiddenFieldId": "boundary",
        "outputFields": {
            "areaFieldId": "area",
            "perimeterFieldId": "perimeter",
            "centroidFieldId": "centroid",
            "vertexCountFieldId": "vertices",
        },
        "captureMode": "DRAW",
    }
    base.update(options)
    return CaptureSettings.from_options(base)


def overlap_options():
    return {
        "apiBase": "https://gis.example.org/api",
        "overlap": {"enabled": True, "formId": "parcels"},
    }


def overlap_client(response=None, error=None, delay=0.0):
    async def respond(request):
        await asyncio.sleep(delay)
        if error is not None:
            raise error
        return response

    client = MagicMock()
    client.endpoint_url = MagicMock(return_value="https://gis.example.org/api/checkOverlap")
    client.check_overlap = AsyncMock(side_effect=respond)
    client.close = AsyncMock()
    return client


def draw(controller, vertices):
    for v in vertices:
        assert controller.add_vertex(v.lat, v.lng) is EditOutcome.APPLIED


async def settle(delay=0.0):
    await asyncio.sleep(delay)
    for _ in range(3):
        await asyncio.sleep(0)


@pytest.fixture
def controller(settings, host, map_view, callbacks):
    controller = CaptureController(settings, host=host, map_view=map_view, callbacks=callbacks)
    controller.start()
    return controller


# =============================================================================
# Mode selection
# =============================================================================


class TestModeSelection:
    """Tests for begin() and choose_mode()."""

    def test_draw_mode(self, controller, callbacks):
        assert controller.phase == Phase.EMPTY
        assert controller.begin() is EditOutcome.APPLIED

        assert controller.phase == Phase.DRAWING
        assert controller.mode == CaptureMethod.DRAW
        assert "Click on the map to add corners" in callbacks.messages()

    def test_begin_only_from_empty(self, controller):
        controller.begin()
        assert controller.begin() is EditOutcome.INVALID_PHASE

    def test_both_modes_on_mobile_prompts(self, host, map_view, callbacks):
        controller = CaptureController(
            make_settings(captureMode="BOTH"), host=host, map_view=map_view,
            callbacks=callbacks, user_agent=MOBILE_UA,
        )
        controller.begin()

        assert controller.phase == Phase.SELECT
        assert callbacks.calls["on_mode_prompt"] == [()]

        assert controller.choose_mode("DRAW") is EditOutcome.APPLIED
        assert controller.mode == CaptureMethod.DRAW

    def test_both_modes_on_desktop_draws(self, host, map_view):
        controller = CaptureController(
            make_settings(captureMode="BOTH"), host=host, map_view=map_view, user_agent=DESKTOP_UA
        )
        controller.begin()
        assert controller.mode == CaptureMethod.DRAW

    def test_user_agent_read_from_host(self, map_view):
        host = FakeHostPage(user_agent=MOBILE_UA)
        controller = CaptureController(make_settings(captureMode="BOTH"), host=host, map_view=map_view)
        controller.begin()
        assert controller.phase == Phase.SELECT

    def test_default_walk(self, host, map_view, position_source):
        controller = CaptureController(
            make_settings(captureMode="BOTH", defaultMode="WALK"),
            host=host, map_view=map_view, position_source=position_source,
        )
        controller.begin()

        assert controller.mode == CaptureMethod.WALK
        assert position_source.watching

    def test_walk_without_position_source(self, host, callbacks):
        controller = CaptureController(make_settings(captureMode="WALK"), host=host, callbacks=callbacks)
        controller.begin()

        assert controller.mode == CaptureMethod.WALK
        assert "GPS not available on this device" in callbacks.messages("error")

    def test_view_only_refuses_edits(self, host, map_view):
        controller = CaptureController(make_settings(captureMode="VIEW_ONLY"), host=host, map_view=map_view)
        controller.start()

        assert controller.phase == Phase.VIEW
        assert controller.add_vertex(0.0, 0.0) is EditOutcome.INVALID_PHASE
        assert controller.clear() is EditOutcome.INVALID_PHASE

    def test_choose_mode_outside_select(self, controller):
        assert controller.choose_mode(CaptureMethod.WALK) is EditOutcome.INVALID_PHASE


# =============================================================================
# Vertex operations
# =============================================================================


class TestVertexOperations:
    """Tests for adding, removing and moving corners."""

    def test_add_vertex_updates_metrics(self, controller, callbacks, equator_square):
        controller.begin()
        draw(controller, equator_square[:2])
        assert controller.metrics is None

        controller.add_vertex(equator_square[2].lat, equator_square[2].lng)

        assert controller.metrics.vertex_count == 3
        assert "Corner 3 marked" in callbacks.messages("success")
        geojson, metrics = callbacks.calls["on_geometry_change"][-1]
        assert geojson["type"] == "Polygon"
        assert metrics is controller.metrics

    def test_add_vertex_outside_drawing(self, controller):
        assert controller.add_vertex(0.0, 0.0) is EditOutcome.INVALID_PHASE

    def test_vertex_limit(self, host, callbacks, equator_square):
        controller = CaptureController(
            make_settings(validation={"maxVertices": 3}), host=host, callbacks=callbacks
        )
        controller.begin()
        draw(controller, equator_square[:3])

        assert controller.add_vertex(0.5, 0.5) is EditOutcome.VERTEX_LIMIT
        assert len(controller.vertices) == 3
        assert "Maximum corners reached (3)" in callbacks.messages("error")
        assert "vertexLimit" in controller.warnings

    def test_undo(self, controller, callbacks, equator_square):
        controller.begin()
        assert controller.undo_last_vertex() is EditOutcome.NOTHING_TO_UNDO

        draw(controller, equator_square[:3])
        assert controller.undo_last_vertex() is EditOutcome.APPLIED

        assert controller.vertices == tuple(equator_square[:2])
        assert controller.metrics is None
        assert "Corner removed" in callbacks.messages()

    def test_delete_refused_at_three(self, controller, callbacks, equator_square):
        controller.begin()
        draw(controller, equator_square[:3])

        assert controller.delete_vertex(0) is EditOutcome.MIN_VERTICES
        assert len(controller.vertices) == 3
        assert "Need at least 3 corners" in callbacks.messages()

    def test_delete_vertex(self, controller, host, equator_square):
        controller.begin()
        draw(controller, equator_square)

        assert controller.delete_vertex(4) is EditOutcome.INVALID_INDEX
        assert controller.delete_vertex(1) is EditOutcome.APPLIED

        assert controller.vertices == (equator_square[0], equator_square[2], equator_square[3])
        assert host.fields["vertices"] == "3"

    def test_select_and_delete_selected(self, controller, equator_square):
        controller.begin()
        draw(controller, equator_square)

        assert controller.delete_selected_vertex() is EditOutcome.INVALID_INDEX
        assert controller.select_vertex(2) is EditOutcome.APPLIED
        assert controller.state.selected_vertex_index == 2

        assert controller.delete_selected_vertex() is EditOutcome.APPLIED
        assert controller.state.selected_vertex_index is None
        assert equator_square[2] not in controller.vertices

    def test_deselect(self, controller, equator_square):
        controller.begin()
        draw(controller, equator_square)
        controller.select_vertex(1)
        controller.deselect_vertex()

        assert controller.state.selected_vertex_index is None

    def test_insert_on_edge(self, controller, callbacks, equator_square):
        controller.begin()
        draw(controller, equator_square)
        edge, midpoint = controller.edge_midpoints()[0]

        assert controller.insert_vertex_on_edge(edge, midpoint.lat, midpoint.lng) is EditOutcome.APPLIED

        assert controller.vertices[1] == Vertex(lat=0.0, lng=0.0005)
        assert len(controller.vertices) == 5
        assert "Corner 2 added" in callbacks.messages()
        assert controller.insert_vertex_on_edge(9, 0.0, 0.0) is EditOutcome.INVALID_INDEX

    def test_move_vertex(self, controller, host, equator_square):
        controller.begin()
        draw(controller, equator_square)
        before = controller.metrics.area_hectares

        assert controller.move_vertex(2, 0.002, 0.002) is EditOutcome.APPLIED

        assert controller.vertices[2] == Vertex(lat=0.002, lng=0.002)
        assert controller.metrics.area_hectares > before
        assert json.loads(host.fields["boundary"])["coordinates"][0][2] == [0.002, 0.002]

    def test_crossing_edges_warn(self, controller):
        controller.begin()
        for lat, lng in [(0.0, 0.0), (0.001, 0.001), (0.0, 0.001), (0.001, 0.0)]:
            controller.add_vertex(lat, lng)

        assert controller.warnings["intersection"] == INTERSECTION_WARNING
        assert len(controller.state.intersection_points) == 1

        controller.move_vertex(1, 0.0, 0.001)
        controller.move_vertex(2, 0.001, 0.001)
        assert "intersection" not in controller.warnings
        assert controller.state.intersection_points == []

    def test_close_hint(self, controller, equator_square):
        controller.begin()
        draw(controller, equator_square[:2])
        assert not controller.is_near_first_vertex(0.0, 0.0)

        controller.add_vertex(equator_square[2].lat, equator_square[2].lng)
        assert controller.is_near_first_vertex(0.0001, 0.0)
        assert not controller.is_near_first_vertex(0.0005, 0.0)


# =============================================================================
# Phase transitions and persistence
# =============================================================================


class TestCompletion:
    """Tests for completing, saving and clearing."""

    def test_complete_needs_three_corners(self, controller, callbacks, equator_square):
        controller.begin()
        draw(controller, equator_square[:2])

        assert controller.complete_polygon() is EditOutcome.MIN_VERTICES
        assert controller.phase == Phase.DRAWING
        assert "Need at least 3 corners" in callbacks.messages("error")

    def test_complete_persists(self, controller, host, equator_square):
        controller.begin()
        draw(controller, equator_square)

        assert controller.complete_polygon() is EditOutcome.APPLIED

        assert controller.phase == Phase.PREVIEW
        geometry = json.loads(host.fields["boundary"])
        assert geometry == polygon_geojson(equator_square)
        assert float(host.fields["area"]) == pytest.approx(1.23, abs=0.01)
        assert len(host.fields["area"].split(".")[1]) == 4
        assert len(host.fields["perimeter"].split(".")[1]) == 2
        centroid = json.loads(host.fields["centroid"])
        assert centroid["type"] == "Point"
        assert centroid["coordinates"] == pytest.approx([0.0005, 0.0005])
        assert host.fields["vertices"] == "4"

    def test_complete_reports_validation_errors(self, controller, callbacks):
        controller.begin()
        for lat, lng in [(0.0, 0.0), (0.001, 0.001), (0.0, 0.001), (0.001, 0.0)]:
            controller.add_vertex(lat, lng)
        controller.complete_polygon()

        errors, = callbacks.calls["on_validation_error"][-1]
        assert "Boundary lines are crossing" in errors
        assert not controller.last_report.is_valid

    def test_edit_and_save(self, controller, equator_square):
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()

        assert controller.enter_edit_mode() is EditOutcome.APPLIED
        assert controller.phase == Phase.DRAWING
        assert controller.complete_polygon() is EditOutcome.APPLIED

        assert controller.save() is EditOutcome.APPLIED
        assert controller.phase == Phase.SAVED
        assert controller.enter_edit_mode() is EditOutcome.APPLIED

    def test_save_outside_preview(self, controller):
        assert controller.save() is EditOutcome.INVALID_PHASE

    def test_clear(self, controller, host, callbacks, equator_square):
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()

        assert controller.clear() is EditOutcome.APPLIED

        assert controller.phase == Phase.EMPTY
        assert controller.vertices == ()
        assert controller.metrics is None
        assert controller.warnings == {}
        assert host.fields["boundary"] == ""
        assert "Drawing cleared" in callbacks.messages()

    def test_redraw_starts_over(self, controller, equator_square):
        controller.begin()
        draw(controller, equator_square)
        controller.redraw()
        assert controller.begin() is EditOutcome.APPLIED


class TestExistingValue:
    """Tests for loading a persisted boundary."""

    def test_loads_into_preview(self, settings, map_view, equator_square):
        host = FakeHostPage({"boundary": json.dumps(polygon_geojson(equator_square))})
        controller = CaptureController(settings, host=host, map_view=map_view)
        controller.start()

        assert controller.phase == Phase.PREVIEW
        assert controller.vertices == tuple(equator_square)
        assert controller.state.initial_area_hectares == pytest.approx(1.23, abs=0.01)
        assert controller.state.has_baseline

    def test_baseline_set_once(self, settings, equator_square):
        host = FakeHostPage({"boundary": json.dumps(polygon_geojson(equator_square))})
        controller = CaptureController(settings, host=host)
        controller.start()
        baseline = controller.state.initial_geometry

        assert controller.load_geometry(polygon_geojson(square(size=0.002)))
        assert controller.state.initial_geometry is baseline
        assert len(controller.vertices) == 4

    def test_feature_value(self, settings, equator_square):
        feature = {"type": "Feature", "geometry": polygon_geojson(equator_square), "properties": {}}
        host = FakeHostPage({"boundary": json.dumps(feature)})
        controller = CaptureController(settings, host=host)
        controller.start()

        assert controller.vertices == tuple(equator_square)

    def test_corrupt_value_starts_empty(self, settings, caplog):
        host = FakeHostPage({"boundary": "{broken"})
        controller = CaptureController(settings, host=host)
        controller.start()

        assert controller.phase == Phase.EMPTY
        assert "Failed to load existing value" in caplog.text

    def test_record_id_from_url(self, settings):
        host = FakeHostPage(url="https://forms.example.org/form?id=3f2b8c1e-7a4d-4e2f-9b6a-1c2d3e4f5a6b")
        controller = CaptureController(settings, host=host)

        assert controller.record_id == "3f2b8c1e-7a4d-4e2f-9b6a-1c2d3e4f5a6b"
        assert controller.overlap_checker.record_id == controller.record_id

    def test_configured_record_id_wins(self):
        host = FakeHostPage(url="https://forms.example.org/form?id=3f2b8c1e-7a4d-4e2f-9b6a-1c2d3e4f5a6b")
        controller = CaptureController(make_settings(recordId="rec-1"), host=host)
        assert controller.record_id == "rec-1"


# =============================================================================
# Drag
# =============================================================================


class TestVertexDrag:
    """Tests for drag sessions."""

    @pytest.mark.asyncio
    async def test_drag_updates_and_commits(self, host, map_view, equator_square):
        settings = make_settings(timing={"dragThrottle": 0.01, "dragMetricsDebounce": 0.02})
        controller = CaptureController(settings, host=host, map_view=map_view)
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        writes = len(host.writes)
        before = controller.metrics.area_hectares

        drag = controller.begin_vertex_drag(2)
        drag.move_to(0.0015, 0.0015)
        assert map_view.drag_positions == [(2, 0.0015, 0.0015)]
        drag.move_to(0.002, 0.002)
        assert len(map_view.drag_positions) == 1

        await asyncio.sleep(0.05)
        assert map_view.drag_positions[-1] == (2, 0.002, 0.002)
        assert controller.metrics.area_hectares > before
        assert len(host.writes) == writes

        assert drag.end() is EditOutcome.APPLIED
        assert controller.vertices[2] == Vertex(lat=0.002, lng=0.002)
        assert len(host.writes) > writes
        assert not drag.pending
        assert drag.end() is EditOutcome.INVALID_PHASE

    @pytest.mark.asyncio
    async def test_end_applies_last_position_immediately(self, host, map_view, equator_square):
        controller = CaptureController(make_settings(), host=host, map_view=map_view)
        controller.begin()
        draw(controller, equator_square)

        drag = controller.begin_vertex_drag(0)
        drag.move_to(-0.0001, -0.0001)
        drag.move_to(-0.0002, -0.0002)
        drag.end()

        assert controller.vertices[0] == Vertex(lat=-0.0002, lng=-0.0002)

    def test_drag_outside_editing(self, controller):
        assert controller.begin_vertex_drag(0) is None


# =============================================================================
# Overlap checks
# =============================================================================


OVERLAP = OverlapRecord(id="rec-2", overlap_area=0.3, overlap_percentage=25.0)


class TestOverlapFlow:
    """Tests for overlap checks driven by the controller."""

    def test_complete_without_event_loop(self, host, callbacks, equator_square, caplog):
        client = overlap_client(OverlapCheckResponse())
        controller = CaptureController(
            make_settings(**overlap_options()), host=host, callbacks=callbacks, client=client
        )
        controller.begin()
        draw(controller, equator_square)

        assert controller.complete_polygon() is EditOutcome.APPLIED
        assert controller.phase == Phase.PREVIEW
        assert not controller.state.overlap_check_pending
        assert "request not started" in caplog.text

    @pytest.mark.asyncio
    async def test_overlaps_block_save_until_confirmed(self, host, map_view, callbacks, equator_square):
        client = overlap_client(OverlapCheckResponse(has_overlaps=True, overlaps=[OVERLAP]))
        controller = CaptureController(
            make_settings(**overlap_options()), host=host, map_view=map_view,
            callbacks=callbacks, client=client,
        )
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()

        assert controller.state.overlap_check_pending
        await settle(0.01)

        assert not controller.state.overlap_check_pending
        assert controller.state.overlap_checked
        assert controller.state.overlaps == [OVERLAP]
        assert map_view.overlaps == [OVERLAP]
        assert callbacks.calls["on_overlaps"][-1] == ([OVERLAP],)

        assert controller.save() is EditOutcome.OVERLAP_UNCONFIRMED
        assert controller.confirm_overlaps() is EditOutcome.APPLIED
        assert "Saving boundary with overlaps" in callbacks.messages("warning")
        assert controller.save() is EditOutcome.APPLIED
        assert controller.state.overlap_confirmed

    @pytest.mark.asyncio
    async def test_adjust_returns_to_editing(self, host, map_view, callbacks, equator_square):
        client = overlap_client(OverlapCheckResponse(has_overlaps=True, overlaps=[OVERLAP]))
        controller = CaptureController(
            make_settings(**overlap_options()), host=host, map_view=map_view,
            callbacks=callbacks, client=client,
        )
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        await settle(0.01)

        assert controller.adjust_for_overlaps() is EditOutcome.APPLIED
        assert controller.phase == Phase.DRAWING
        assert controller.state.overlaps == []
        assert map_view.overlaps == []
        assert "Adjust the boundary to avoid overlaps" in callbacks.messages()

    @pytest.mark.asyncio
    async def test_failure_is_non_blocking(self, host, callbacks, equator_square):
        client = overlap_client(error=ApiRequestError("HTTP 500: Server Error", status=500))
        controller = CaptureController(
            make_settings(**overlap_options()), host=host, callbacks=callbacks, client=client
        )
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        await settle(0.01)

        assert FAILURE_WARNING in callbacks.messages("warning")
        assert callbacks.calls["on_error"] == [("Overlap check failed: HTTP 500: Server Error",)]
        assert not controller.state.overlap_check_pending
        assert controller.save() is EditOutcome.APPLIED

    @pytest.mark.asyncio
    async def test_stale_response_ignored_after_edit(self, host, callbacks, equator_square):
        client = overlap_client(OverlapCheckResponse(has_overlaps=True, overlaps=[OVERLAP]), delay=0.02)
        controller = CaptureController(
            make_settings(**overlap_options()), host=host, callbacks=callbacks, client=client
        )
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        controller.enter_edit_mode()
        await settle(0.05)

        assert controller.phase == Phase.DRAWING
        assert controller.state.overlaps == []
        assert "on_error" not in callbacks.calls

    @pytest.mark.asyncio
    async def test_edit_in_preview_rechecks(self, host, equator_square):
        client = overlap_client(OverlapCheckResponse(), delay=0.02)
        controller = CaptureController(make_settings(**overlap_options()), host=host, client=client)
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        controller.move_vertex(2, 0.002, 0.002)
        await settle(0.05)

        assert client.check_overlap.call_count == 2
        last_request = client.check_overlap.call_args.args[0]
        assert last_request.geometry["coordinates"][0][2] == [0.002, 0.002]
        assert controller.state.overlap_checked

    @pytest.mark.asyncio
    async def test_debounced_check(self, host, equator_square):
        client = overlap_client(OverlapCheckResponse())
        settings = make_settings(timing={"overlapDebounce": 0.01}, **overlap_options())
        controller = CaptureController(settings, host=host, client=client)
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        await settle(0.01)

        controller.check_overlaps_debounced()
        controller.check_overlaps_debounced()
        await settle(0.03)

        assert client.check_overlap.call_count == 2

    @pytest.mark.asyncio
    async def test_destroy_drops_inflight_response(self, host, map_view, callbacks, equator_square):
        client = overlap_client(OverlapCheckResponse(has_overlaps=True, overlaps=[OVERLAP]), delay=0.02)
        controller = CaptureController(
            make_settings(**overlap_options()), host=host, map_view=map_view,
            callbacks=callbacks, client=client,
        )
        controller.begin()
        draw(controller, equator_square)
        controller.complete_polygon()
        emitted = len(callbacks.calls["on_overlaps"])
        controller.destroy()
        await settle(0.05)

        assert len(callbacks.calls["on_overlaps"]) == emitted
        assert map_view.overlaps == []
        assert controller.state.overlaps == []


# =============================================================================
# Walk mode
# =============================================================================


class TestWalkMode:
    """Tests for marking corners from position fixes."""

    @pytest.mark.asyncio
    async def test_walk_boundary(self, host, map_view, callbacks, position_source):
        controller = CaptureController(
            make_settings(captureMode="WALK"), host=host, map_view=map_view,
            position_source=position_source, callbacks=callbacks,
        )
        controller.begin()
        assert not controller.can_mark_corner

        for lat, lng in [(0.0, 0.0), (0.0, 0.001), (0.001, 0.001)]:
            position_source.push(lat, lng, accuracy=4.0)
            assert controller.mark_corner() is EditOutcome.APPLIED

        assert map_view.views == [(0.0, 0.0, 17)]
        assert controller.average_gps_accuracy == 4
        assert controller.state.gps_accuracy == 4.0

        position_source.push(0.00005, 0.0)
        assert len(callbacks.calls["on_close_prompt"]) == 1
        assert "Close to start point." in callbacks.messages("warning")

        assert controller.complete_polygon() is EditOutcome.APPLIED
        assert not position_source.watching

    def test_mark_without_fix(self, host, callbacks, position_source):
        controller = CaptureController(
            make_settings(captureMode="WALK"), host=host,
            position_source=position_source, callbacks=callbacks,
        )
        controller.begin()

        assert controller.mark_corner() is EditOutcome.INVALID_PHASE
        assert "Waiting for a usable GPS position" in callbacks.messages("warning")

    def test_gps_error_notifies(self, host, callbacks, position_source):
        controller = CaptureController(
            make_settings(captureMode="WALK"), host=host,
            position_source=position_source, callbacks=callbacks,
        )
        controller.begin()
        position_source.fail("User denied Geolocation")

        assert "GPS error: User denied Geolocation" in callbacks.messages("error")

    @pytest.mark.asyncio
    async def test_render_failure_does_not_stop_tracking(self, host, map_view, callbacks):
        async def fixes(high_accuracy):
            for lat in (0.0001, 0.00015, 0.0002):
                yield PositionFix(lat=lat, lng=0.0, accuracy=4.0)
                await asyncio.sleep(0)

        controller = CaptureController(
            make_settings(captureMode="WALK"), host=host, map_view=map_view,
            position_source=StreamPositionSource(fixes), callbacks=callbacks,
        )
        controller.begin()

        renders = []

        def flaky_render(state):
            renders.append(state.current_position)
            if len(renders) == 2:
                raise RuntimeError("map redraw glitch")

        map_view.render = flaky_render
        await settle(0.01)

        assert controller.state.current_position == Vertex(lat=0.0002, lng=0.0)
        assert len(renders) == 3
        assert callbacks.messages("error") == []

    def test_undo_drops_sample(self, host, position_source):
        controller = CaptureController(
            make_settings(captureMode="WALK"), host=host, position_source=position_source
        )
        controller.begin()
        position_source.push(0.0, 0.0, accuracy=2.0)
        controller.mark_corner()
        position_source.push(0.0, 0.001, accuracy=8.0)
        controller.mark_corner()

        controller.undo_last_vertex()

        assert controller.state.accuracy_samples == [2.0]
        assert controller.average_gps_accuracy == 2


# =============================================================================
# Location search
# =============================================================================


class TestLocationSearch:
    """Tests for search_location() and select_search_result()."""

    @pytest.mark.asyncio
    async def test_search_and_select(self, host, map_view, callbacks):
        geocoder = MagicMock()
        result = GeocodeResult(lat=-29.31, lon=27.48, display_name="Maseru")
        geocoder.geocode = AsyncMock(return_value=[result])
        controller = CaptureController(
            make_settings(), host=host, map_view=map_view, callbacks=callbacks, search_geocoder=geocoder
        )

        assert await controller.search_location("  Maseru ") == [result]
        geocoder.geocode.assert_awaited_once_with("Maseru", limit=5)

        assert controller.select_search_result(result)
        assert map_view.views[-1] == (-29.31, 27.48, 16)
        assert "Navigated to location" in callbacks.messages("success")

    @pytest.mark.asyncio
    async def test_search_failure(self, host, callbacks):
        geocoder = MagicMock()
        geocoder.geocode = AsyncMock(side_effect=GeocodingError("HTTP 500", query="Maseru"))
        controller = CaptureController(make_settings(), host=host, callbacks=callbacks, search_geocoder=geocoder)

        assert await controller.search_location("Maseru") == []
        assert "Search failed. Please try again." in callbacks.messages("error")

    @pytest.mark.asyncio
    async def test_blank_query(self, host):
        geocoder = MagicMock()
        geocoder.geocode = AsyncMock()
        controller = CaptureController(make_settings(), host=host, search_geocoder=geocoder)

        assert await controller.search_location("   ") == []
        geocoder.geocode.assert_not_called()


# =============================================================================
# Lifecycle
# =============================================================================


class TestLifecycle:
    """Tests for init() and teardown."""

    def test_init_missing_container(self, host, caplog):
        assert init("missing", host, {}) is None
        assert "Container not found: missing" in caplog.text

    def test_init_starts(self, host, map_view):
        controller = init("gis-capture", host, {"captureMode": "DRAW"}, map_view=map_view)

        assert controller is not None
        assert map_view.views[0] == (-29.5, 28.5, 10)

    def test_init_applies_log_level(self, host):
        package_logger = logging.getLogger("gis_capture")
        previous = package_logger.level
        try:
            init("gis-capture", host, {"captureMode": "DRAW", "logLevel": "ERROR"})
            assert package_logger.level == logging.ERROR
            assert not logging.getLogger("gis_capture.capture.controller").isEnabledFor(logging.WARNING)
        finally:
            package_logger.setLevel(previous)

    def test_destroy_is_idempotent(self, controller, map_view, callbacks, equator_square):
        controller.begin()
        draw(controller, equator_square)
        notices = len(callbacks.calls["on_notify"])

        controller.destroy()
        controller.destroy()

        assert controller.destroyed
        assert map_view.released
        assert controller.add_vertex(0.5, 0.5) is EditOutcome.INVALID_PHASE
        assert controller.complete_polygon() is EditOutcome.INVALID_PHASE
        assert len(callbacks.calls["on_notify"]) == notices

    @pytest.mark.asyncio
    async def test_aclose_closes_owned_client(self, host):
        client = overlap_client()
        controller = CaptureController(make_settings(), host=host, client=client)
        await controller.aclose()

        # clients passed in belong to the caller
        client.close.assert_not_awaited()
        assert controller.destroyed

    def test_callback_failure_is_contained(self, host, caplog):
        def broken(message, level):
            raise RuntimeError("host bug")

        controller = CaptureController(make_settings(), host=host)
        controller.callbacks.on_notify = broken
        assert controller.begin() is EditOutcome.APPLIED
        assert "Host callback on_notify failed" in caplog.text
