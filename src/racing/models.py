"""Session data model: the state a race relay keeps in memory.

Architecture
------------
Everything here is a *plain dataclass*.  The lifecycle manager is the only
component that mutates ``Session.status`` and ``Session.finish_order``; the
AI simulation engine is the only writer of ``AIState`` motion fields.  The
model itself enforces nothing beyond the finish-order membership helpers;
the rules live in ``racing.lifecycle``.

Roster order matters: ``participants`` is an insertion-ordered dict and the
host is always the earliest surviving human.  ``is_host`` is therefore a
derived value, never a stored flag that could drift after a disconnect.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

from .constants import GRID_OFFSETS, TOTAL_ENTITY_CAP
from .timers import SessionTimers

Vec3 = tuple[float, float, float]

ORIGIN: Vec3 = (0.0, 0.0, 0.0)


class SessionStatus(str, Enum):
    """Race lifecycle.  Transitions only ever move forward."""

    WAITING = "waiting"
    COUNTDOWN = "countdown"
    RACING = "racing"
    FINISHED = "finished"

    @property
    def rank(self) -> int:
        return _STATUS_ORDER.index(self)

    def can_advance_to(self, other: SessionStatus) -> bool:
        return other.rank == self.rank + 1


_STATUS_ORDER = [
    SessionStatus.WAITING,
    SessionStatus.COUNTDOWN,
    SessionStatus.RACING,
    SessionStatus.FINISHED,
]


def vec_to_dict(v: Vec3) -> dict:
    return {"x": v[0], "y": v[1], "z": v[2]}


def slot_position(slot: int) -> Vec3:
    """Starting-grid position of a slot index."""
    return GRID_OFFSETS[slot]


@dataclass
class ParticipantState:
    """A human-controlled car."""

    participant_id: str
    name: str
    slot: int
    position: Vec3 = ORIGIN
    rotation: Vec3 = ORIGIN
    speed: float = 0.0
    distance: float = 0.0
    ready: bool = False
    finish_crossed: bool = False
    finished: bool = False

    def to_dict(self, host_id: str | None = None) -> dict:
        return {
            "id": self.participant_id,
            "name": self.name,
            "slot": self.slot,
            "position": vec_to_dict(self.position),
            "rotation": vec_to_dict(self.rotation),
            "speed": self.speed,
            "distance": self.distance,
            "ready": self.ready,
            "finish_crossed": self.finish_crossed,
            "finished": self.finished,
            "is_host": self.participant_id == host_id,
        }


@dataclass
class AIState:
    """A server-simulated car filling an otherwise empty slot."""

    ai_id: str
    name: str
    slot: int
    position: Vec3 = ORIGIN
    speed: float = 0.0
    distance: float = 0.0
    base_speed: float = 0.0
    target_speed: float = 0.0
    finish_crossed: bool = False
    finished: bool = False

    def to_dict(self) -> dict:
        return {
            "id": self.ai_id,
            "name": self.name,
            "slot": self.slot,
            "position": vec_to_dict(self.position),
            "speed": self.speed,
            "distance": self.distance,
            "finish_crossed": self.finish_crossed,
            "finished": self.finished,
        }


@dataclass(frozen=True)
class FinishRecord:
    entity_id: str
    name: str
    elapsed_time: float  # seconds since race_start_epoch
    is_ai: bool

    def to_dict(self) -> dict:
        return {
            "id": self.entity_id,
            "name": self.name,
            "elapsed_time": self.elapsed_time,
            "is_ai": self.is_ai,
        }


@dataclass
class Session:
    """One race instance: roster, AI cars, lifecycle and finish bookkeeping."""

    session_id: str
    timers: SessionTimers
    entity_cap: int = TOTAL_ENTITY_CAP
    status: SessionStatus = SessionStatus.WAITING
    participants: dict[str, ParticipantState] = field(default_factory=dict)
    ai_entities: list[AIState] = field(default_factory=list)
    finish_order: list[FinishRecord] = field(default_factory=list)
    race_start_epoch: float | None = None

    # -- Roster ------------------------------------------------------------

    def host_id(self) -> str | None:
        """Earliest surviving human in join order."""
        return next(iter(self.participants), None)

    def human_count(self) -> int:
        return len(self.participants)

    def member_ids(self) -> list[str]:
        return list(self.participants)

    def get_ai(self, ai_id: str) -> AIState | None:
        for ai in self.ai_entities:
            if ai.ai_id == ai_id:
                return ai
        return None

    def all_entity_ids(self) -> list[str]:
        return list(self.participants) + [ai.ai_id for ai in self.ai_entities]

    def occupied_slots(self) -> set[int]:
        slots = {p.slot for p in self.participants.values()}
        slots.update(ai.slot for ai in self.ai_entities)
        return slots

    def free_slots(self) -> list[int]:
        taken = self.occupied_slots()
        return [s for s in range(self.entity_cap) if s not in taken]

    def all_ready(self) -> bool:
        return bool(self.participants) and all(
            p.ready for p in self.participants.values()
        )

    # -- Finish bookkeeping ------------------------------------------------

    def has_finished(self, entity_id: str) -> bool:
        return any(r.entity_id == entity_id for r in self.finish_order)

    def finish_covers_all(self) -> bool:
        """True when every current human and AI has a finish record."""
        recorded = {r.entity_id for r in self.finish_order}
        return all(eid in recorded for eid in self.all_entity_ids())

    def standings(self) -> list[dict]:
        return [
            {"rank": i + 1, **record.to_dict()}
            for i, record in enumerate(self.finish_order)
        ]

    def to_dict(self) -> dict:
        host = self.host_id()
        return {
            "id": self.session_id,
            "status": self.status.value,
            "host_id": host,
            "participants": [p.to_dict(host) for p in self.participants.values()],
            "ai_entities": [ai.to_dict() for ai in self.ai_entities],
            "finish_order": self.standings(),
            "pending_timers": self.timers.pending(),
        }
