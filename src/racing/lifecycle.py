"""SessionLifecycleManager — the only writer of session state transitions.

Lifecycle
---------
    waiting --(all humans ready / host force-start)--> countdown
    countdown --(COUNTDOWN_DELAY elapses)--> racing
    racing --(finish_order covers every human and AI)--> finished
    finished --(CLEANUP_DELAY grace period)--> destroyed

Transitions only move forward.  Any session is destroyed immediately when
its last human leaves, whatever its status; all of its timers are cancelled
in the same step (``SessionTimers.cancel_all``).

Failure semantics
-----------------
Messages routinely arrive for sessions or participants that no longer
exist: a position update racing a disconnect, a countdown firing after the
last player left.  These are not errors.  Every entry point looks its
target up first and returns quietly when it is gone.

Errors that *are* reported go back to the offending connection only, as an
``error`` message: a non-host trying a host-only action, a join into a
full or already-running session.

Finish bookkeeping
------------------
``_record_finish`` is the single append path to ``finish_order`` and it
refuses a second record for the same entity.  Clients repeat their
"crossed" state in every update and the transport may duplicate frames.
"""

from __future__ import annotations

import random
from typing import TYPE_CHECKING

from loguru import logger

from .ai import AISimulationEngine
from .constants import (
    CLEANUP_DELAY,
    COUNTDOWN_DELAY,
    FINISH_DISTANCE,
    TOTAL_ENTITY_CAP,
)
from .messages import (
    AIAdded,
    AIRemoved,
    CountdownStarted,
    EntityFinished,
    ErrorMessage,
    HostChanged,
    Joined,
    ParticipantJoined,
    ParticipantLeft,
    ParticipantReady,
    PositionUpdate,
    RaceFinished,
    RacingStarted,
    RequestPosition,
    Vector3,
)
from .models import (
    AIState,
    FinishRecord,
    ParticipantState,
    Session,
    SessionStatus,
    Vec3,
    slot_position,
)
from .timers import SessionTimers

if TYPE_CHECKING:
    from .broadcast import BroadcastProtocol
    from .timers import Scheduler

COUNTDOWN_TIMER = "countdown"
CLEANUP_TIMER = "cleanup"


class SessionRegistry:
    """All live sessions plus the connection -> session index."""

    def __init__(self) -> None:
        self.sessions: dict[str, Session] = {}
        self.members: dict[str, str] = {}

    def get(self, session_id: str) -> Session | None:
        return self.sessions.get(session_id)

    def session_of(self, participant_id: str) -> Session | None:
        session_id = self.members.get(participant_id)
        if session_id is None:
            return None
        return self.sessions.get(session_id)

    def add(self, session: Session) -> None:
        self.sessions[session.session_id] = session

    def remove(self, session_id: str) -> Session | None:
        session = self.sessions.pop(session_id, None)
        if session is not None:
            for pid in [p for p, s in self.members.items() if s == session_id]:
                del self.members[pid]
        return session

    def bind(self, participant_id: str, session_id: str) -> None:
        self.members[participant_id] = session_id

    def unbind(self, participant_id: str) -> None:
        self.members.pop(participant_id, None)

    def __len__(self) -> int:
        return len(self.sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self.sessions

    @property
    def player_count(self) -> int:
        return len(self.members)


class SessionLifecycleManager:
    """Owns session state, roster, readiness, race clock and finish order."""

    def __init__(
        self,
        registry: SessionRegistry,
        broadcast: BroadcastProtocol,
        scheduler: Scheduler,
        entity_cap: int = TOTAL_ENTITY_CAP,
        countdown_delay: float = COUNTDOWN_DELAY,
        cleanup_delay: float = CLEANUP_DELAY,
        rng: random.Random | None = None,
    ) -> None:
        self.registry = registry
        self._broadcast = broadcast
        self._scheduler = scheduler
        self.entity_cap = entity_cap
        self.countdown_delay = countdown_delay
        self.cleanup_delay = cleanup_delay
        self.ai = AISimulationEngine(
            scheduler,
            broadcast,
            on_finish=self._record_ai_finish,
            lookup=registry.get,
            rng=rng,
        )

    # -- Join / leave -------------------------------------------------------

    def join(self, session_id: str, participant_id: str, name: str) -> ParticipantState | None:
        """Add a human to a session, creating the session if needed.

        The newcomer takes the slot of the AI holding the best (lowest)
        slot when there is one, otherwise the lowest free slot.
        """
        existing = self.registry.session_of(participant_id)
        if existing is not None:
            if existing.session_id != session_id:
                self._reject(participant_id, "Already in a session")
                return None
            logger.debug(f"{participant_id} already in session {existing.session_id}")
            return existing.participants.get(participant_id)

        session = self.registry.get(session_id)
        created = session is None
        if session is None:
            session = Session(
                session_id=session_id,
                timers=SessionTimers(self._scheduler, owner=session_id),
                entity_cap=self.entity_cap,
            )

        if session.status != SessionStatus.WAITING:
            self._reject(participant_id, "Race already in progress")
            return None

        replaced: AIState | None = None
        if session.ai_entities:
            replaced = min(session.ai_entities, key=lambda ai: ai.slot)
            slot = replaced.slot
        elif session.free_slots():
            slot = session.free_slots()[0]
        else:
            self._reject(participant_id, "Session is full")
            return None

        if created:
            self.registry.add(session)
            logger.info(f"Session {session_id} created")
        if replaced is not None:
            session.ai_entities.remove(replaced)
            self._broadcast.forget(replaced.ai_id)

        participant = ParticipantState(
            participant_id=participant_id,
            name=name,
            slot=slot,
            position=slot_position(slot),
        )
        session.participants[participant_id] = participant
        self.registry.bind(participant_id, session_id)

        if created:
            self._fill_ai(session, announce=False)

        host_id = session.host_id()
        self._broadcast.send_to(participant_id, Joined(
            session_id=session_id,
            participant_id=participant_id,
            status=session.status.value,
            is_host=participant_id == host_id,
            assigned_slot=slot,
            start_position=Vector3.of(participant.position),
            participants=[p.to_dict(host_id) for p in session.participants.values()],
            ai_entities=[ai.to_dict() for ai in session.ai_entities],
            finish_order=session.standings(),
        ))
        if replaced is not None:
            self._broadcast.event(
                session,
                AIRemoved(id=replaced.ai_id, replaced_by=participant_id),
                exclude=participant_id,
            )
        self._broadcast.event(
            session,
            ParticipantJoined(participant=participant.to_dict(host_id)),
            exclude=participant_id,
        )
        self.request_positions(session_id, exclude=participant_id)

        logger.info(
            f"Session {session_id}: {name} ({participant_id}) joined at slot {slot}"
            + (f", replacing {replaced.name}" if replaced else "")
            + f" [{session.human_count()} human, {len(session.ai_entities)} AI]"
        )
        return participant

    def leave(self, participant_id: str) -> None:
        """Remove a human.  Destroys the session when no humans remain."""
        session = self.registry.session_of(participant_id)
        self.registry.unbind(participant_id)
        if session is None:
            return
        was_host = session.host_id() == participant_id
        participant = session.participants.pop(participant_id, None)
        if participant is None:
            return
        self._broadcast.forget(participant_id)
        logger.info(f"Session {session.session_id}: {participant.name} ({participant_id}) left")

        if session.human_count() == 0:
            self._destroy(session.session_id, reason="no humans left")
            return

        self._broadcast.event(session, ParticipantLeft(id=participant_id))
        if was_host:
            self._broadcast.event(session, HostChanged(host_id=session.host_id()))

        if session.status == SessionStatus.WAITING:
            self._fill_ai(session, announce=True)
            if session.all_ready():
                self._begin_countdown(session)
        elif session.status == SessionStatus.RACING:
            self._check_complete(session)

    def _fill_ai(self, session: Session, announce: bool) -> None:
        free = session.free_slots()
        if not free:
            return
        added = self.ai.create_entities(session, free)
        session.ai_entities.extend(added)
        session.ai_entities.sort(key=lambda ai: ai.slot)
        if announce:
            for ai in added:
                self._broadcast.event(session, AIAdded(ai=ai.to_dict()))
        logger.info(f"Session {session.session_id}: {len(added)} AI car(s) added")

    # -- Readiness / countdown ----------------------------------------------

    def set_ready(self, participant_id: str) -> None:
        session = self.registry.session_of(participant_id)
        if session is None or session.status == SessionStatus.FINISHED:
            return
        participant = session.participants.get(participant_id)
        if participant is None or participant.ready:
            return
        participant.ready = True
        self._broadcast.event(session, ParticipantReady(id=participant_id))
        logger.info(f"Session {session.session_id}: {participant.name} is ready")

        if session.status == SessionStatus.WAITING and session.all_ready():
            self._begin_countdown(session)

    def force_start(self, participant_id: str) -> None:
        """Host-only: start the countdown even if not everyone is ready."""
        session = self.registry.session_of(participant_id)
        if session is None or participant_id not in session.participants:
            return
        if session.host_id() != participant_id:
            self._reject(participant_id, "Only the host can start the race")
            return
        if session.status != SessionStatus.WAITING:
            self._reject(participant_id, f"Cannot start race in state: {session.status.value}")
            return
        self._begin_countdown(session)

    def _begin_countdown(self, session: Session) -> None:
        self._transition(session, SessionStatus.COUNTDOWN)
        self._broadcast.event(session, CountdownStarted(delay=self.countdown_delay))
        session_id = session.session_id
        session.timers.schedule(
            COUNTDOWN_TIMER, self.countdown_delay, lambda: self._start_race(session_id)
        )

    def _start_race(self, session_id: str) -> None:
        session = self.registry.get(session_id)
        if session is None or session.status != SessionStatus.COUNTDOWN:
            logger.debug(f"Countdown fired for stale session {session_id}")
            return
        self._transition(session, SessionStatus.RACING)
        session.race_start_epoch = self._scheduler.time()
        self._broadcast.event(session, RacingStarted())
        if session.ai_entities:
            self.ai.start(session)

    # -- Position / finish --------------------------------------------------

    def update_position(
        self,
        participant_id: str,
        position: Vec3,
        rotation: Vec3,
        speed: float,
        distance: float,
        finished: bool = False,
        finish_crossed: bool = False,
    ) -> None:
        """Apply a human car's reported state and echo it to the others.

        A reported ``finished`` or ``finish_crossed`` flag counts as crossing
        the line even when ``distance`` is short of it.
        """
        session = self.registry.session_of(participant_id)
        if session is None:
            logger.debug(f"Position from {participant_id} for a vanished session dropped")
            return
        participant = session.participants.get(participant_id)
        if participant is None or session.status == SessionStatus.FINISHED:
            return

        racing = session.status == SessionStatus.RACING
        # Out-of-order while racing: never move a car backwards.
        stale = racing and distance < participant.distance
        if not stale:
            participant.position = position
            participant.rotation = rotation
            participant.speed = speed
            participant.distance = distance

        if racing:
            if not participant.finish_crossed and (
                participant.distance >= FINISH_DISTANCE or finished or finish_crossed
            ):
                participant.finish_crossed = True
                self._record_finish(session, participant_id, participant.name, is_ai=False)
            if finished and not participant.finished:
                participant.finished = True
                logger.info(f"Session {session.session_id}: {participant.name} stopped")
                self._check_complete(session)

        if not stale:
            self._broadcast.position(
                session,
                PositionUpdate(
                    id=participant_id,
                    position=Vector3.of(participant.position),
                    rotation=Vector3.of(participant.rotation),
                    speed=participant.speed,
                    distance=participant.distance,
                    finish_crossed=participant.finish_crossed,
                    finished=participant.finished,
                ),
                self._scheduler.time(),
                exclude=participant_id,
            )

    def _record_ai_finish(self, session: Session, ai: AIState) -> None:
        if session.status != SessionStatus.RACING:
            return
        self._record_finish(session, ai.ai_id, ai.name, is_ai=True)

    def _record_finish(
        self, session: Session, entity_id: str, name: str, is_ai: bool
    ) -> FinishRecord | None:
        """Append a finish record unless the entity already has one."""
        if session.has_finished(entity_id):
            logger.debug(f"Duplicate finish for {entity_id} suppressed")
            return None
        start = session.race_start_epoch
        elapsed = self._scheduler.time() - start if start is not None else 0.0
        record = FinishRecord(entity_id=entity_id, name=name, elapsed_time=elapsed, is_ai=is_ai)
        session.finish_order.append(record)
        rank = len(session.finish_order)
        self._broadcast.event(session, EntityFinished(
            id=entity_id, name=name, rank=rank, elapsed_time=elapsed, is_ai=is_ai,
        ))
        logger.info(
            f"Session {session.session_id}: {name} finished P{rank} in {elapsed:.2f}s"
        )
        self._check_complete(session)
        return record

    def _check_complete(self, session: Session) -> None:
        if session.status != SessionStatus.RACING or not session.finish_covers_all():
            return
        self._transition(session, SessionStatus.FINISHED)
        self.ai.stop(session)
        self._broadcast.event(session, RaceFinished(finish_order=session.standings()))
        session_id = session.session_id
        session.timers.schedule(
            CLEANUP_TIMER,
            self.cleanup_delay,
            lambda: self._destroy(session_id, reason="grace period elapsed"),
        )

    # -- Queries / helpers --------------------------------------------------

    def request_positions(self, session_id: str, exclude: str | None = None) -> None:
        """Ask members to send their position now, bypassing their rate limit."""
        session = self.registry.get(session_id)
        if session is None:
            return
        self._broadcast.event(session, RequestPosition(), exclude=exclude)

    def standings(self, session_id: str) -> list[dict] | None:
        session = self.registry.get(session_id)
        if session is None:
            return None
        return session.standings()

    def snapshot(self) -> list[dict]:
        return [s.to_dict() for s in self.registry.sessions.values()]

    def _transition(self, session: Session, new: SessionStatus) -> None:
        if not session.status.can_advance_to(new):
            raise RuntimeError(
                f"Illegal transition {session.status.value} -> {new.value} "
                f"in session {session.session_id}"
            )
        logger.info(f"Session {session.session_id}: {session.status.value} -> {new.value}")
        session.status = new

    def _reject(self, participant_id: str, message: str) -> None:
        logger.warning(f"Rejected {participant_id}: {message}")
        self._broadcast.send_to(participant_id, ErrorMessage(message=message))

    def _destroy(self, session_id: str, reason: str) -> None:
        session = self.registry.remove(session_id)
        if session is None:
            return
        session.timers.cancel_all()
        for entity_id in session.all_entity_ids():
            self._broadcast.forget(entity_id)
        logger.info(f"Session {session_id} destroyed ({reason})")
