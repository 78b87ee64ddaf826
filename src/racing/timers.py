"""Per-session scheduled callbacks with a single cancellation point.

Every timer a session owns (countdown, AI tick, post-race cleanup) goes
through ``SessionTimers``.  Tearing a session down calls ``cancel_all()``
and nothing scheduled for it can fire afterwards.

The scheduler is injected so the same code runs on an asyncio loop in the
server and on a manual clock in tests.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from loguru import logger


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Minimal event-loop surface: delayed callbacks plus a monotonic clock."""

    def call_later(self, delay: float, callback: Callable[[], None]) -> TimerHandle: ...

    def time(self) -> float: ...


class AsyncioScheduler:
    """Scheduler backed by an asyncio event loop."""

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None) -> None:
        self._loop = loop or asyncio.get_running_loop()

    def call_later(self, delay: float, callback: Callable[[], None]) -> asyncio.TimerHandle:
        return self._loop.call_later(delay, callback)

    def time(self) -> float:
        return self._loop.time()


class SessionTimers:
    """Named, cancellable timers belonging to one session."""

    def __init__(self, scheduler: Scheduler, owner: str = "") -> None:
        self._scheduler = scheduler
        self._owner = owner
        self._handles: dict[str, TimerHandle] = {}
        self._closed = False

    def schedule(self, name: str, delay: float, callback: Callable[[], None]) -> None:
        """Run ``callback`` once after ``delay``.  Replaces a timer of the same name."""
        if self._closed:
            return
        self.cancel(name)

        def _fire() -> None:
            self._handles.pop(name, None)
            callback()

        self._handles[name] = self._scheduler.call_later(delay, _fire)

    def schedule_repeating(
        self, name: str, interval: float, callback: Callable[[], None]
    ) -> None:
        """Run ``callback`` every ``interval`` until cancelled."""
        if self._closed:
            return
        self.cancel(name)

        def _fire() -> None:
            # Re-arm first so the callback may cancel the timer itself.
            self._handles[name] = self._scheduler.call_later(interval, _fire)
            callback()

        self._handles[name] = self._scheduler.call_later(interval, _fire)

    def cancel(self, name: str) -> bool:
        handle = self._handles.pop(name, None)
        if handle is None:
            return False
        handle.cancel()
        return True

    def cancel_all(self) -> None:
        """Cancel everything outstanding and refuse new timers."""
        self._closed = True
        if self._handles:
            logger.debug(f"Session {self._owner}: cancelling timers {sorted(self._handles)}")
        for handle in self._handles.values():
            handle.cancel()
        self._handles.clear()

    def pending(self) -> list[str]:
        return sorted(self._handles)

    def is_pending(self, name: str) -> bool:
        return name in self._handles

    @property
    def closed(self) -> bool:
        return self._closed
