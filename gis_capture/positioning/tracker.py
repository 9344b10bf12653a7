"""
Walk-mode positioning.

Follows a position stream, classifies fix accuracy into five bands and
marks corners at the current position. Once three corners exist, a fix
within the auto-close distance of the first corner raises a close prompt;
the prompt is raised once and re-armed after a quiet period.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional, Sequence

from gis_capture.capture.state import EditOutcome
from gis_capture.config import GPSSettings
from gis_capture.exceptions import PositioningError
from gis_capture.geometry.ring import Vertex, haversine_distance
from gis_capture.positioning.sources import PositionFix, PositionSource, Subscription

logger = logging.getLogger(__name__)

FIRST_FIX_ZOOM = 17
AUTO_CLOSE_PROMPT_RESET = 5.0


class AccuracyLevel(str, Enum):
    """Fix quality bands."""

    EXCELLENT = "excellent"
    GOOD = "good"
    FAIR = "fair"
    POOR = "poor"
    VERY_POOR = "very-poor"


@dataclass(frozen=True)
class AccuracyBand:
    level: AccuracyLevel
    max_accuracy: Optional[float]
    bar_percent: int
    status_text: str


ACCURACY_BANDS = (
    AccuracyBand(AccuracyLevel.EXCELLENT, 3.0, 100, "Excellent - Ready to mark"),
    AccuracyBand(AccuracyLevel.GOOD, 5.0, 80, "Good - Ready to mark"),
    AccuracyBand(AccuracyLevel.FAIR, 10.0, 60, "Fair - Wait if possible"),
    AccuracyBand(AccuracyLevel.POOR, 20.0, 40, "Poor - Move to open area"),
    AccuracyBand(AccuracyLevel.VERY_POOR, None, 20, "Very poor - Check GPS settings"),
)


def classify_accuracy(accuracy: float) -> AccuracyBand:
    """Band for an accuracy radius in meters; bounds are inclusive."""
    for band in ACCURACY_BANDS:
        if band.max_accuracy is None or accuracy <= band.max_accuracy:
            return band
    return ACCURACY_BANDS[-1]


def average_accuracy(samples: Sequence[float]) -> int:
    """Rounded mean accuracy of marked corners, 0 when none were marked."""
    if not samples:
        return 0
    return round(sum(samples) / len(samples))


class PositioningTracker:
    """
    Position stream follower for walk mode.

    Example:
        tracker = PositioningTracker(source, settings.gps, add_vertex=controller.add_vertex)
        tracker.start()
        ...
        tracker.mark_corner()
    """

    def __init__(
        self,
        source: PositionSource,
        gps: GPSSettings,
        add_vertex: Callable[[float, float], EditOutcome],
        on_fix: Optional[Callable[[PositionFix, AccuracyBand, bool], None]] = None,
        on_error: Optional[Callable[[PositioningError], None]] = None,
        on_auto_close: Optional[Callable[[float], None]] = None,
        prompt_reset: float = AUTO_CLOSE_PROMPT_RESET,
    ):
        self.source = source
        self.gps = gps
        self.add_vertex = add_vertex
        self.on_fix = on_fix
        self.on_error = on_error
        self.on_auto_close = on_auto_close
        self.prompt_reset = prompt_reset

        self.current_fix: Optional[PositionFix] = None
        self.band: Optional[AccuracyBand] = None
        self.samples: List[float] = []

        self._subscription: Optional[Subscription] = None
        self._prompt_shown = False
        self._prompt_reset_handle: Optional[asyncio.TimerHandle] = None

    @property
    def active(self) -> bool:
        return self._subscription is not None and self._subscription.active

    @property
    def can_mark(self) -> bool:
        return self.band is not None and self.band.level != AccuracyLevel.VERY_POOR

    @property
    def average_accuracy(self) -> int:
        return average_accuracy(self.samples)

    @property
    def prompt_shown(self) -> bool:
        return self._prompt_shown

    def start(self) -> None:
        """Subscribe to the position source and reset the corner samples."""
        if self.active:
            return
        self.samples = []
        self._subscription = self.source.watch(
            self._on_position, self._on_error, high_accuracy=self.gps.high_accuracy
        )
        logger.info("Position tracking started")

    def stop(self) -> None:
        if self._subscription is not None:
            self._subscription.cancel()
            self._subscription = None
            logger.info("Position tracking stopped")
        if self._prompt_reset_handle is not None:
            self._prompt_reset_handle.cancel()
            self._prompt_reset_handle = None
        self._prompt_shown = False

    def _on_position(self, fix: PositionFix) -> None:
        first = self.current_fix is None
        self.current_fix = fix
        self.band = classify_accuracy(fix.accuracy)
        logger.debug("Fix %.6f, %.6f +/- %.1fm (%s)", fix.lat, fix.lng, fix.accuracy, self.band.level.value)
        if self.on_fix is not None:
            self.on_fix(fix, self.band, first)

    def _on_error(self, error: PositioningError) -> None:
        logger.error("GPS error: %s", error)
        if self.on_error is not None:
            self.on_error(error)

    def mark_corner(self) -> Optional[EditOutcome]:
        """
        Add the current position as a corner.

        Returns:
            The outcome of the vertex addition, or None when there is no usable fix.
        """
        fix = self.current_fix
        if fix is None or not self.can_mark:
            return None
        if fix.accuracy > self.gps.min_accuracy:
            logger.warning(
                "Marking corner with accuracy %.1fm (recommended <= %.1fm)",
                fix.accuracy,
                self.gps.min_accuracy,
            )
        outcome = self.add_vertex(fix.lat, fix.lng)
        if outcome is EditOutcome.APPLIED:
            self.samples.append(fix.accuracy)
        return outcome

    def distance_to(self, vertex: Vertex) -> Optional[float]:
        """Great-circle distance in meters from the current fix, None without a fix."""
        if self.current_fix is None:
            return None
        return haversine_distance(vertex.lat, vertex.lng, self.current_fix.lat, self.current_fix.lng)

    def check_auto_close(self, vertices: Sequence[Vertex]) -> bool:
        """
        Raise the close prompt when the walker is back at the first corner.

        Returns:
            True if the prompt was raised by this call.
        """
        if len(vertices) < 3:
            return False
        distance = self.distance_to(vertices[0])
        if distance is None or distance > self.gps.auto_close_distance:
            return False
        if self._prompt_shown:
            return False

        self._prompt_shown = True
        loop = asyncio.get_running_loop()
        self._prompt_reset_handle = loop.call_later(self.prompt_reset, self._rearm_prompt)
        logger.info("Close to start point (%.1fm)", distance)
        if self.on_auto_close is not None:
            self.on_auto_close(distance)
        return True

    def _rearm_prompt(self) -> None:
        self._prompt_reset_handle = None
        self._prompt_shown = False
