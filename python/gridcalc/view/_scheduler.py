"""Frame schedulers: coalesce render requests into one callback per frame."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from typing import Protocol, runtime_checkable

logger = logging.getLogger(__name__)

FrameCallback = Callable[[], None]


@runtime_checkable
class FrameScheduler(Protocol):
    """Runs the most recently requested callback on the next frame.

    Requesting again before the frame fires replaces the pending callback,
    so a burst of scroll events renders once, with the latest state.
    """

    def request(self, callback: FrameCallback) -> None: ...

    def cancel(self) -> None: ...

    @property
    def pending(self) -> bool: ...


class ManualFrameScheduler:
    """Frames fire only when :meth:`pump` is called. For tests and headless hosts."""

    def __init__(self) -> None:
        self._callback: FrameCallback | None = None
        self.requests = 0
        self.frames = 0

    def request(self, callback: FrameCallback) -> None:
        self.requests += 1
        self._callback = callback

    def cancel(self) -> None:
        self._callback = None

    @property
    def pending(self) -> bool:
        return self._callback is not None

    def pump(self) -> bool:
        """Run the pending frame, if any. Returns whether a frame ran."""
        callback, self._callback = self._callback, None
        if callback is None:
            return False
        self.frames += 1
        callback()
        return True

    def pump_all(self, limit: int = 100) -> int:
        """Pump until idle (a frame may request another); returns frames run."""
        ran = 0
        while ran < limit and self.pump():
            ran += 1
        return ran


class AsyncioFrameScheduler:
    """Fires frames on an asyncio loop every *interval_ms* at most."""

    def __init__(
        self, interval_ms: int = 16, loop: asyncio.AbstractEventLoop | None = None
    ) -> None:
        self.interval = interval_ms / 1000.0
        self._loop = loop
        self._callback: FrameCallback | None = None
        self._handle: asyncio.TimerHandle | None = None

    def request(self, callback: FrameCallback) -> None:
        self._callback = callback
        if self._handle is None:
            loop = self._loop or asyncio.get_running_loop()
            self._handle = loop.call_later(self.interval, self._fire)

    def cancel(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
        self._handle = None
        self._callback = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def _fire(self) -> None:
        callback, self._callback = self._callback, None
        self._handle = None
        if callback is None:
            return
        try:
            callback()
        except Exception:
            logger.exception("Frame callback failed")
