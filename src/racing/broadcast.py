"""BroadcastProtocol — fan-out of session state to connected members.

Two classes of traffic:

  1. State-change events (join/leave/ready/countdown/start/finish/removal)
     go out once, to every member, at the moment they happen.
  2. Continuous position updates (human echoes and AI tick results) are
     rate-limited per entity to one per ``POSITION_BROADCAST_INTERVAL``.
     An update whose finish flags differ from the last one sent for that
     entity always goes out, so a finish is never swallowed by the limiter.

Each position update is stamped with a per-entity sequence number.  The
transport may drop or reorder frames; receivers use ``seq`` to discard
anything older than what they already applied.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Iterable, Protocol

from loguru import logger

from .constants import POSITION_BROADCAST_INTERVAL
from .messages import PositionUpdate, Message

if TYPE_CHECKING:
    from .models import Session


class Transport(Protocol):
    """Best-effort, fire-and-forget delivery to one connection."""

    def send(self, connection_id: str, payload: dict) -> None: ...


class BroadcastProtocol:
    """Serializes session messages onto a Transport."""

    def __init__(
        self,
        transport: Transport,
        position_interval: float = POSITION_BROADCAST_INTERVAL,
    ) -> None:
        self._transport = transport
        self._interval = position_interval
        self._last_sent: dict[str, float] = {}
        self._last_flags: dict[str, tuple[bool, bool]] = {}
        self._seq: dict[str, int] = {}
        self.dropped = 0

    # -- State-change events ------------------------------------------------

    def send_to(self, connection_id: str, message: Message) -> None:
        self._transport.send(connection_id, message.to_wire())

    def event(
        self,
        session: Session,
        message: Message,
        exclude: str | None = None,
    ) -> None:
        """Send a state-change event to every member of the session."""
        self._fan_out(session.member_ids(), message.to_wire(), exclude)

    # -- Continuous updates -------------------------------------------------

    def position(
        self,
        session: Session,
        update: PositionUpdate,
        now: float,
        exclude: str | None = None,
    ) -> bool:
        """Send a position update unless the entity is over its rate limit.

        Returns True when the update was sent.
        """
        flags = (update.finish_crossed, update.finished)
        last = self._last_sent.get(update.id)
        flags_changed = self._last_flags.get(update.id, (False, False)) != flags
        if last is not None and now - last < self._interval and not flags_changed:
            self.dropped += 1
            return False

        seq = self._seq.get(update.id, 0) + 1
        self._seq[update.id] = seq
        self._last_sent[update.id] = now
        self._last_flags[update.id] = flags
        update.seq = seq
        self._fan_out(session.member_ids(), update.to_wire(), exclude)
        return True

    def forget(self, entity_id: str) -> None:
        """Drop rate-limit state for an entity that left the session."""
        self._last_sent.pop(entity_id, None)
        self._last_flags.pop(entity_id, None)
        self._seq.pop(entity_id, None)

    def _fan_out(self, members: Iterable[str], payload: dict, exclude: str | None) -> None:
        count = 0
        for member in members:
            if member == exclude:
                continue
            self._transport.send(member, payload)
            count += 1
        if payload.get("type") != "position_update":
            logger.debug(f"Broadcast {payload.get('type')} to {count} member(s)")
