from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Protocol, runtime_checkable


@runtime_checkable
class FlushScheduler(Protocol):
    def schedule_flush(self, callback: Callable[[], None]) -> None: ...
    def cancel_flush(self) -> None: ...


class AsyncioFlushScheduler:
    """Runs one callback per interval on the running event loop.

    Each ``schedule_flush`` arms a single callback, replacing any pending one.
    Callers that want a continuous loop reschedule from inside the callback.
    """

    def __init__(self, interval_seconds: float = 0.016):
        self._interval_seconds = max(0.001, interval_seconds)
        self._handle: asyncio.TimerHandle | None = None

    @property
    def pending(self) -> bool:
        return self._handle is not None

    def schedule_flush(self, callback: Callable[[], None]) -> None:
        self.cancel_flush()
        loop = asyncio.get_running_loop()
        self._handle = loop.call_later(self._interval_seconds, self._fire, callback)

    def cancel_flush(self) -> None:
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None

    def _fire(self, callback: Callable[[], None]) -> None:
        self._handle = None
        callback()
