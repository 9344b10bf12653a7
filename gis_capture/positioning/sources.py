"""
Position sources.

A ``PositionSource`` pushes fixes to a callback until its subscription is
cancelled. ``StreamPositionSource`` adapts any async iterator of fixes
(a GNSS receiver reader, a replayed track) to that interface.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional

from gis_capture.exceptions import PositioningError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PositionFix:
    """
    A position report.

    Attributes:
        lat: Latitude in degrees
        lng: Longitude in degrees
        accuracy: Horizontal accuracy radius in meters
        timestamp: Source timestamp in seconds, if known
    """
    lat: float
    lng: float
    accuracy: float
    timestamp: Optional[float] = None


PositionCallback = Callable[[PositionFix], None]
PositionErrorCallback = Callable[[PositioningError], None]


class Subscription:
    """Handle of a running position watch."""

    def __init__(self, cancel: Callable[[], None]):
        self._cancel = cancel
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def cancel(self) -> None:
        if self._active:
            self._active = False
            self._cancel()

    def finish(self) -> None:
        """Mark the watch as ended by the source itself."""
        self._active = False


class PositionSource(ABC):
    """Continuous position stream."""

    @abstractmethod
    def watch(
        self,
        on_position: PositionCallback,
        on_error: PositionErrorCallback,
        high_accuracy: bool = True,
    ) -> Subscription:
        """
        Start pushing fixes.

        Args:
            on_position: Called with every fix
            on_error: Called when the source fails
            high_accuracy: Request the most accurate fixes available

        Returns:
            Subscription whose ``cancel()`` stops the stream.
        """
        pass


class StreamPositionSource(PositionSource):
    """
    Position source reading an async iterator.

    Example:
        source = StreamPositionSource(lambda high_accuracy: receiver.fixes())
        subscription = source.watch(print, print)
    """

    def __init__(self, stream_factory: Callable[[bool], AsyncIterator[PositionFix]]):
        self.stream_factory = stream_factory

    def watch(
        self,
        on_position: PositionCallback,
        on_error: PositionErrorCallback,
        high_accuracy: bool = True,
    ) -> Subscription:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self._pump(on_position, on_error, high_accuracy))
        subscription = Subscription(task.cancel)
        task.add_done_callback(lambda _: subscription.finish())
        return subscription

    async def _pump(
        self,
        on_position: PositionCallback,
        on_error: PositionErrorCallback,
        high_accuracy: bool,
    ) -> None:
        fixes = self.stream_factory(high_accuracy).__aiter__()
        while True:
            try:
                fix = await fixes.__anext__()
            except StopAsyncIteration:
                return
            except asyncio.CancelledError:
                raise
            except PositioningError as e:
                on_error(e)
                return
            except Exception as e:
                logger.error("Position stream failed: %s", e)
                on_error(PositioningError(str(e)))
                return

            # A failing consumer must not end the stream
            try:
                on_position(fix)
            except Exception:
                logger.exception("Position handler failed")
