"""
Vertex drag sessions.

A drag runs at two rates: marker repositioning is throttled to about 60
updates per second and metrics are recomputed once movement pauses. Ending
the drag cancels both and applies the last position exactly.
"""

import logging
from typing import TYPE_CHECKING, Optional

from gis_capture.capture.state import EditOutcome
from gis_capture.geometry.ring import Vertex
from gis_capture.scheduling import Debouncer, Throttler

if TYPE_CHECKING:
    from gis_capture.capture.controller import CaptureController

logger = logging.getLogger(__name__)


class VertexDrag:
    """
    A drag of one vertex.

    Example:
        drag = controller.begin_vertex_drag(2)
        drag.move_to(-29.31, 27.48)
        drag.move_to(-29.32, 27.49)
        drag.end()
    """

    def __init__(self, controller: "CaptureController", index: int):
        self.controller = controller
        self.index = index
        self.last_position: Optional[Vertex] = None
        self.active = True

        timing = controller.settings.timing
        self._visual_update = Throttler(
            self._apply_visual, timing.drag_throttle, name="drag_visual_update"
        )
        self._metrics_update = Debouncer(
            self._apply_metrics, timing.drag_metrics_debounce, name="drag_metrics_update"
        )

    def move_to(self, lat: float, lng: float) -> None:
        if not self.active:
            return
        self.last_position = Vertex(lat=lat, lng=lng)
        self._visual_update()
        self._metrics_update()

    def _apply_visual(self) -> None:
        if self.active and self.last_position is not None:
            self.controller._reposition_vertex(self.index, self.last_position)

    def _apply_metrics(self) -> None:
        if self.active:
            self.controller._refresh_during_drag()

    @property
    def pending(self) -> bool:
        return self._visual_update.pending or self._metrics_update.pending

    def end(self) -> EditOutcome:
        """Finish the drag at the last reported position."""
        if not self.active:
            return EditOutcome.INVALID_PHASE
        self.cancel()
        return self.controller._finish_drag(self, self.last_position)

    def cancel(self) -> None:
        """Stop the drag without a final update."""
        self.active = False
        self._visual_update.cancel()
        self._metrics_update.cancel()
