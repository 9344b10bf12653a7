"""
Shared fixtures for the capture tests.

Provides in-memory stand-ins for the host collaborators:
- FakeHostPage: form fields with change listeners
- FakeMapView: records view changes and rendered state
- FakePositionSource: fixes pushed by the test
- RecordingCallbacks: CaptureCallbacks capturing every invocation
"""

from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest

from gis_capture.capture.controller import CaptureCallbacks
from gis_capture.config import CaptureSettings
from gis_capture.exceptions import PositioningError
from gis_capture.geometry.ring import Vertex
from gis_capture.host import Bounds, HostPage, MapView
from gis_capture.positioning.sources import PositionFix, PositionSource, Subscription


# =============================================================================
# Fakes
# =============================================================================


class FakeHostPage(HostPage):
    def __init__(self, fields: Optional[Dict[str, str]] = None, url: str = "", user_agent: str = ""):
        self.fields: Dict[str, str] = dict(fields or {})
        self.containers = {"gis-capture"}
        self.url = url
        self.agent = user_agent
        self.listeners: Dict[str, List[Callable[[], None]]] = {}
        self.writes: List[Tuple[str, str]] = []

    def get_container(self, container_id: str) -> Optional[Any]:
        return container_id if container_id in self.containers else None

    def get_field_value(self, field_id: str) -> Optional[str]:
        return self.fields.get(field_id)

    def set_field_value(self, field_id: str, value: str) -> None:
        self.fields[field_id] = value
        self.writes.append((field_id, value))

    def add_field_listener(self, field_id: str, callback: Callable[[], None]):
        self.listeners.setdefault(field_id, []).append(callback)

        def remove() -> None:
            self.listeners[field_id].remove(callback)

        return remove

    def change_field(self, field_id: str, value: str) -> None:
        self.fields[field_id] = value
        for callback in list(self.listeners.get(field_id, [])):
            callback()

    def page_url(self) -> str:
        return self.url

    def user_agent(self) -> str:
        return self.agent


class FakeMapView(MapView):
    def __init__(self, bounds: Bounds = (27.4, -29.4, 27.6, -29.2)):
        self.bounds = bounds
        self.views: List[Tuple[float, float, int]] = []
        self.renders = 0
        self.drag_positions: List[Tuple[int, float, float]] = []
        self.overlaps: List[Any] = []
        self.nearby: List[Tuple[List[Any], bool]] = []
        self.move_listeners: List[Callable[[], None]] = []
        self.released = False

    def set_view(self, lat: float, lng: float, zoom: int) -> None:
        self.views.append((lat, lng, zoom))

    def get_bounds(self) -> Bounds:
        return self.bounds

    def release(self) -> None:
        self.released = True

    def add_move_listener(self, callback: Callable[[], None]):
        self.move_listeners.append(callback)
        return lambda: self.move_listeners.remove(callback)

    def render(self, state: Any) -> None:
        self.renders += 1

    def show_drag_position(self, index: int, lat: float, lng: float) -> None:
        self.drag_positions.append((index, lat, lng))

    def show_overlaps(self, overlaps: Any) -> None:
        self.overlaps = list(overlaps)

    def show_nearby_parcels(self, parcels: Any, truncated: bool = False) -> None:
        self.nearby.append((list(parcels), truncated))

    def move(self) -> None:
        for callback in list(self.move_listeners):
            callback()


class FakePositionSource(PositionSource):
    def __init__(self):
        self.on_position = None
        self.on_error = None
        self.high_accuracy = None
        self.watches = 0
        self.subscription: Optional[Subscription] = None

    def watch(self, on_position, on_error, high_accuracy: bool = True) -> Subscription:
        self.on_position = on_position
        self.on_error = on_error
        self.high_accuracy = high_accuracy
        self.watches += 1
        self.subscription = Subscription(self._stop)
        return self.subscription

    def _stop(self) -> None:
        self.on_position = None
        self.on_error = None

    @property
    def watching(self) -> bool:
        return self.on_position is not None

    def push(self, lat: float, lng: float, accuracy: float = 4.0) -> None:
        self.on_position(PositionFix(lat=lat, lng=lng, accuracy=accuracy))

    def fail(self, message: str) -> None:
        self.on_error(PositioningError(message))


class RecordingCallbacks(CaptureCallbacks):
    def __init__(self):
        self.calls: Dict[str, List[Tuple[Any, ...]]] = {}
        super().__init__(
            on_geometry_change=self._recorder("on_geometry_change"),
            on_validation_error=self._recorder("on_validation_error"),
            on_error=self._recorder("on_error"),
            on_notify=self._recorder("on_notify"),
            on_mode_prompt=self._recorder("on_mode_prompt"),
            on_close_prompt=self._recorder("on_close_prompt"),
            on_overlaps=self._recorder("on_overlaps"),
            on_nearby_parcels=self._recorder("on_nearby_parcels"),
        )

    def _recorder(self, name: str) -> Callable[..., None]:
        def record(*args: Any) -> None:
            self.calls.setdefault(name, []).append(args)

        return record

    def messages(self, level: Optional[str] = None) -> List[str]:
        return [
            message for message, lvl in self.calls.get("on_notify", [])
            if level is None or lvl == level
        ]


# =============================================================================
# Geometry fixtures
# =============================================================================


def square(lat: float = 0.0, lng: float = 0.0, size: float = 0.001) -> List[Vertex]:
    """Counter-clockwise square with its south-west corner at (lat, lng)."""
    return [
        Vertex(lat=lat, lng=lng),
        Vertex(lat=lat, lng=lng + size),
        Vertex(lat=lat + size, lng=lng + size),
        Vertex(lat=lat + size, lng=lng),
    ]


def polygon_geojson(vertices: List[Vertex]) -> Dict[str, Any]:
    coords = [[v.lng, v.lat] for v in vertices]
    coords.append(coords[0])
    return {"type": "Polygon", "coordinates": [coords]}


@pytest.fixture
def settings():
    """Settings bound to a hidden field, with all network features off."""
    return CaptureSettings.from_options({
        "hiddenFieldId": "boundary",
        "outputFields": {
            "areaFieldId": "area",
            "perimeterFieldId": "perimeter",
            "centroidFieldId": "centroid",
            "vertexCountFieldId": "vertices",
        },
        "captureMode": "DRAW",
    })


@pytest.fixture
def host():
    return FakeHostPage()


@pytest.fixture
def map_view():
    return FakeMapView()


@pytest.fixture
def callbacks():
    return RecordingCallbacks()


@pytest.fixture
def position_source():
    return FakePositionSource()


@pytest.fixture
def equator_square():
    return square()
