"""
Cancellable timers on the running event loop.

Provides the rate-limiting primitives the capture component relies on:
- Debouncer: run once a quiet period has elapsed since the last trigger
- Throttler: run at most once per interval regardless of trigger rate
- PeriodicTask: run on a fixed interval until stopped

Each object owns at most one ``asyncio.TimerHandle`` and exposes ``cancel()``
so that callers can drop pending work deterministically (drag end, teardown).
Callbacks run on the loop thread; exceptions raised by a callback are logged
and do not kill the timer.
"""

import asyncio
import logging
from typing import Any, Callable, Optional, Tuple

logger = logging.getLogger(__name__)


def _invoke(func: Callable[..., Any], args: Tuple[Any, ...], name: str) -> None:
    try:
        func(*args)
    except Exception:
        logger.exception("Scheduled callback %s failed", name)


class Debouncer:
    """
    Defer a call until ``wait`` seconds pass without another trigger.

    Example:
        check = Debouncer(validator_run, 0.15)
        check()   # during drag
        check()   # restarts the quiet period
        check.cancel()
    """

    def __init__(self, func: Callable[..., Any], wait: float, name: Optional[str] = None):
        self.func = func
        self.wait = wait
        self.name = name or getattr(func, "__name__", "debounced")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._args: Tuple[Any, ...] = ()

    def __call__(self, *args: Any) -> None:
        loop = asyncio.get_running_loop()
        if self._handle is not None:
            self._handle.cancel()
        self._args = args
        self._handle = loop.call_later(self.wait, self._fire)

    def _fire(self) -> None:
        self._handle = None
        _invoke(self.func, self._args, self.name)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def flush(self) -> None:
        """Run a pending call now."""
        if self._handle is not None:
            self._handle.cancel()
            self._fire()

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None


class Throttler:
    """
    Cap calls to one per ``wait`` seconds.

    With ``leading`` the first trigger of a window runs immediately; with
    ``trailing`` the last trigger suppressed inside a window runs when the
    window closes, using the most recent arguments.
    """

    def __init__(
        self,
        func: Callable[..., Any],
        wait: float,
        leading: bool = True,
        trailing: bool = True,
        name: Optional[str] = None,
    ):
        self.func = func
        self.wait = wait
        self.leading = leading
        self.trailing = trailing
        self.name = name or getattr(func, "__name__", "throttled")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._last_run: Optional[float] = None
        self._args: Tuple[Any, ...] = ()

    def __call__(self, *args: Any) -> None:
        loop = asyncio.get_running_loop()
        now = loop.time()
        self._args = args

        if self._last_run is None and not self.leading:
            self._last_run = now

        remaining = self.wait - (now - self._last_run) if self._last_run is not None else 0.0

        if remaining <= 0:
            if self._handle is not None:
                self._handle.cancel()
                self._handle = None
            self._last_run = now
            _invoke(self.func, args, self.name)
        elif self.trailing and self._handle is None:
            self._handle = loop.call_later(remaining, self._fire_trailing)

    def _fire_trailing(self) -> None:
        self._handle = None
        self._last_run = asyncio.get_running_loop().time() if self.leading else None
        _invoke(self.func, self._args, self.name)

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._last_run = None


class PeriodicTask:
    """Run ``func`` every ``interval`` seconds until stopped."""

    def __init__(self, func: Callable[[], Any], interval: float, name: Optional[str] = None):
        self.func = func
        self.interval = interval
        self.name = name or getattr(func, "__name__", "periodic")
        self._handle: Optional[asyncio.TimerHandle] = None
        self._running = False

    def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._schedule()

    def _schedule(self) -> None:
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self.interval, self._tick)

    def _tick(self) -> None:
        if not self._running:
            return
        _invoke(self.func, (), self.name)
        if self._running:
            self._schedule()

    @property
    def running(self) -> bool:
        return self._running

    def stop(self) -> None:
        self._running = False
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    cancel = stop
