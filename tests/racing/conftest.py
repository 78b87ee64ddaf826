"""Shared fixtures for race relay core tests.

ManualScheduler stands in for the asyncio loop: time only moves when a
test calls ``advance()``, and due callbacks run in deadline order.
RecordingTransport captures every outbound frame per connection.
"""

from __future__ import annotations

import random

import pytest

from racing.broadcast import BroadcastProtocol
from racing.lifecycle import SessionLifecycleManager, SessionRegistry


class _Handle:
    def __init__(self) -> None:
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True


class ManualScheduler:
    """Deterministic Scheduler: callbacks fire only inside ``advance()``."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start
        self._queue: list[tuple[float, int, object, _Handle]] = []
        self._seq = 0

    def call_later(self, delay, callback):
        handle = _Handle()
        self._seq += 1
        self._queue.append((self.now + delay, self._seq, callback, handle))
        return handle

    def time(self) -> float:
        return self.now

    def live(self) -> int:
        return sum(1 for _, _, _, h in self._queue if not h.cancelled)

    def advance(self, seconds: float) -> None:
        target = self.now + seconds
        while True:
            due = [e for e in self._queue if e[0] <= target + 1e-9]
            if not due:
                break
            entry = min(due, key=lambda e: (e[0], e[1]))
            self._queue.remove(entry)
            when, _, callback, handle = entry
            self.now = max(self.now, when)
            if not handle.cancelled:
                callback()
        self.now = target


class RecordingTransport:
    def __init__(self) -> None:
        self.sent: list[tuple[str, dict]] = []

    def send(self, connection_id: str, payload: dict) -> None:
        self.sent.append((connection_id, payload))

    def to(self, connection_id: str, msg_type: str | None = None) -> list[dict]:
        return [
            p for c, p in self.sent
            if c == connection_id and (msg_type is None or p["type"] == msg_type)
        ]

    def of_type(self, msg_type: str) -> list[tuple[str, dict]]:
        return [(c, p) for c, p in self.sent if p["type"] == msg_type]

    def clear(self) -> None:
        self.sent.clear()


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def transport() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def broadcast(transport) -> BroadcastProtocol:
    return BroadcastProtocol(transport)


@pytest.fixture
def registry() -> SessionRegistry:
    return SessionRegistry()


@pytest.fixture
def make_lifecycle(registry, broadcast, scheduler):
    """Factory so tests can pick the entity cap."""

    def _make(entity_cap: int = 5) -> SessionLifecycleManager:
        return SessionLifecycleManager(
            registry,
            broadcast,
            scheduler,
            entity_cap=entity_cap,
            rng=random.Random(7),
        )

    return _make


@pytest.fixture
def lifecycle(make_lifecycle) -> SessionLifecycleManager:
    return make_lifecycle()
