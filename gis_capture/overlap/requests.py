"""
Race-safe asynchronous requests.

Each request purpose keeps at most one live request. Issuing a new request,
or cancelling the purpose, bumps a per-purpose generation counter; a
completion is delivered only when the generation it captured is still the
current one, so a result that resolves past its own cancellation is dropped.

Every request carries a timeout handle that cancels its task when it
expires. A timed-out request is reported through ``on_cancelled``, never as
an error.
"""

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT = 30.0


class RequestPurpose(str, Enum):
    """Independent request channels."""

    OVERLAP = "overlap"
    NEARBY_PARCELS = "nearbyParcels"


@dataclass
class PendingRequest:
    """
    A live request.

    Attributes:
        request_id: Tracker-wide sequence number
        purpose: Channel the request belongs to
        generation: Purpose generation captured at launch
        task: Task running the request coroutine
        timeout_handle: Timer that cancels the task on expiry
        timed_out: Whether the timeout fired
    """
    request_id: int
    purpose: RequestPurpose
    generation: int
    task: "asyncio.Task[Any]"
    timeout_handle: Optional[asyncio.TimerHandle] = None
    timed_out: bool = False

    def cancel(self) -> None:
        if self.timeout_handle is not None:
            self.timeout_handle.cancel()
            self.timeout_handle = None
        if not self.task.done():
            self.task.cancel()


ResultCallback = Callable[[Any], None]
ErrorCallback = Callable[[BaseException], None]
CancelCallback = Callable[[PendingRequest], None]


class RequestTracker:
    """
    Supersede-latest-wins request coordinator.

    Example:
        tracker = RequestTracker(timeout=30.0)
        tracker.launch(RequestPurpose.OVERLAP, client.check_overlap(req), on_result=apply)
        tracker.launch(RequestPurpose.OVERLAP, client.check_overlap(req2), on_result=apply)
        # only the second result reaches ``apply``
    """

    def __init__(self, timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.timeout = timeout
        self._generations: Dict[RequestPurpose, int] = {p: 0 for p in RequestPurpose}
        self._pending: Dict[RequestPurpose, PendingRequest] = {}
        self._sequence = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def generation(self, purpose: RequestPurpose) -> int:
        return self._generations[purpose]

    def pending(self, purpose: RequestPurpose) -> Optional[PendingRequest]:
        return self._pending.get(purpose)

    def has_pending(self, purpose: RequestPurpose) -> bool:
        return purpose in self._pending

    def is_current(self, request: PendingRequest) -> bool:
        return not self._closed and request.generation == self._generations[request.purpose]

    def launch(
        self,
        purpose: RequestPurpose,
        coro: Awaitable[Any],
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback] = None,
        on_cancelled: Optional[CancelCallback] = None,
    ) -> Optional[PendingRequest]:
        """
        Start a request, superseding any live request of the same purpose.

        Args:
            purpose: Request channel
            coro: Coroutine performing the request
            on_result: Called with the result of a current request
            on_error: Called with the exception of a failed current request
            on_cancelled: Called when a current request times out

        Returns:
            The PendingRequest, or None when the tracker is closed or no event
            loop is running.
        """
        if self._closed:
            if asyncio.iscoroutine(coro):
                coro.close()
            return None

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("No running event loop, %s request not started", purpose.value)
            if asyncio.iscoroutine(coro):
                coro.close()
            return None

        self.cancel(purpose)
        self._generations[purpose] += 1
        self._sequence += 1

        task = loop.create_task(coro)
        request = PendingRequest(
            request_id=self._sequence,
            purpose=purpose,
            generation=self._generations[purpose],
            task=task,
        )
        request.timeout_handle = loop.call_later(self.timeout, self._expire, request)
        self._pending[purpose] = request

        task.add_done_callback(
            lambda t: self._complete(request, t, on_result, on_error, on_cancelled)
        )
        logger.debug("Started %s request %d", purpose.value, request.request_id)
        return request

    def cancel(self, purpose: RequestPurpose) -> None:
        """Cancel the live request of a purpose and invalidate its completion."""
        request = self._pending.pop(purpose, None)
        self._generations[purpose] += 1
        if request is not None:
            logger.debug("Cancelled %s request %d", purpose.value, request.request_id)
            request.cancel()

    def cancel_all(self) -> None:
        for purpose in list(self._pending):
            self.cancel(purpose)

    def close(self) -> None:
        """Cancel everything; no callback runs afterwards."""
        self._closed = True
        self.cancel_all()

    def _expire(self, request: PendingRequest) -> None:
        request.timeout_handle = None
        if request.task.done():
            return
        request.timed_out = True
        logger.warning(
            "%s request %d timed out after %.0f seconds",
            request.purpose.value,
            request.request_id,
            self.timeout,
        )
        request.task.cancel()

    def _complete(
        self,
        request: PendingRequest,
        task: "asyncio.Task[Any]",
        on_result: ResultCallback,
        on_error: Optional[ErrorCallback],
        on_cancelled: Optional[CancelCallback],
    ) -> None:
        if request.timeout_handle is not None:
            request.timeout_handle.cancel()
            request.timeout_handle = None
        if self._pending.get(request.purpose) is request:
            del self._pending[request.purpose]

        error = None if task.cancelled() else task.exception()

        if not self.is_current(request):
            logger.debug(
                "Ignoring stale %s response (request %d)",
                request.purpose.value,
                request.request_id,
            )
            return

        try:
            if task.cancelled():
                if on_cancelled is not None:
                    on_cancelled(request)
            elif error is not None:
                if on_error is not None:
                    on_error(error)
                else:
                    logger.warning("%s request failed: %s", request.purpose.value, error)
            else:
                on_result(task.result())
        except Exception:
            logger.exception("%s completion handler failed", request.purpose.value)
