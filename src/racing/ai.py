"""AISimulationEngine — server-authoritative motion for AI cars.

Architecture
------------
One repeating ``ai_tick`` timer per racing session, registered on the
session's own ``SessionTimers``; destroying the session stops it.
The tick callback looks the session up in the registry again on every
firing; a tick that outlives its session is a no-op instead of a write to
freed state.

Motion model (per AI, per tick of ``dt`` seconds):

    target = base_speed * uniform(AI_PERTURBATION_RANGE)
    speed  = speed * a + target * (1 - a)          a = AI_SMOOTHING
    distance += speed * dt ; position.z += speed * dt

Past the finish line the target ramps linearly to zero over
DECELERATION_DISTANCE.  A car is *finished* once its speed drops under
STOP_SPEED_EPSILON or it has overrun the line by STOP_DISTANCE, whichever
comes first.  The finish *record* is written at the moment of crossing
through ``on_finish`` (the lifecycle manager owns ``finish_order``); the
engine never appends to it directly.

Finished cars are skipped entirely, so a second tick over the same state
does no duplicate work.
"""

from __future__ import annotations

import random
import uuid
from typing import TYPE_CHECKING, Callable

from loguru import logger

from .constants import (
    AI_BASE_SPEED_RANGE,
    AI_MAX_SPEED,
    AI_NAMES,
    AI_PERTURBATION_RANGE,
    AI_SMOOTHING,
    AI_TICK_INTERVAL,
    DECELERATION_DISTANCE,
    FINISH_DISTANCE,
    STOP_DISTANCE,
    STOP_SPEED_EPSILON,
)
from .messages import PositionUpdate, Vector3
from .models import AIState, SessionStatus, slot_position

if TYPE_CHECKING:
    from .broadcast import BroadcastProtocol
    from .models import Session
    from .timers import Scheduler

TICK_TIMER = "ai_tick"


class AISimulationEngine:
    """Advances AI cars of racing sessions on a fixed tick."""

    def __init__(
        self,
        scheduler: Scheduler,
        broadcast: BroadcastProtocol,
        on_finish: Callable[[Session, AIState], None],
        lookup: Callable[[str], Session | None],
        rng: random.Random | None = None,
        tick_interval: float = AI_TICK_INTERVAL,
    ) -> None:
        self._scheduler = scheduler
        self._broadcast = broadcast
        self._on_finish = on_finish
        self._lookup = lookup
        self._rng = rng or random.Random()
        self.tick_interval = tick_interval

    # -- Entity management --------------------------------------------------

    def create_entities(self, session: Session, slots: list[int]) -> list[AIState]:
        """Build AI cars for the given free slots (not yet added to the session)."""
        used = {ai.name for ai in session.ai_entities}
        created: list[AIState] = []
        for slot in slots:
            name = self._pick_name(used)
            used.add(name)
            lo, hi = AI_BASE_SPEED_RANGE
            base = AI_MAX_SPEED * self._rng.uniform(lo, hi)
            created.append(AIState(
                ai_id=f"ai-{uuid.uuid4().hex[:8]}",
                name=name,
                slot=slot,
                position=slot_position(slot),
                base_speed=base,
                target_speed=base,
            ))
        return created

    def _pick_name(self, used: set[str]) -> str:
        for name in AI_NAMES:
            if name not in used:
                return name
        suffix = 2
        while f"{AI_NAMES[0]}-{suffix}" in used:
            suffix += 1
        return f"{AI_NAMES[0]}-{suffix}"

    # -- Lifecycle ----------------------------------------------------------

    def start(self, session: Session) -> None:
        session_id = session.session_id

        def _on_tick() -> None:
            current = self._lookup(session_id)
            if current is None or current.status != SessionStatus.RACING:
                if current is not None:
                    current.timers.cancel(TICK_TIMER)
                return
            self.tick(current, self.tick_interval)

        session.timers.schedule_repeating(TICK_TIMER, self.tick_interval, _on_tick)
        logger.info(
            f"Session {session_id}: AI tick started "
            f"({len(session.ai_entities)} cars, {1 / self.tick_interval:.0f} Hz)"
        )

    def stop(self, session: Session) -> None:
        if session.timers.cancel(TICK_TIMER):
            logger.info(f"Session {session.session_id}: AI tick stopped")

    # -- Tick ---------------------------------------------------------------

    def tick(self, session: Session, dt: float) -> None:
        now = self._scheduler.time()
        # Snapshot: on_finish may end the race and mutate session state.
        for ai in list(session.ai_entities):
            if ai.finished:
                continue
            self._advance(ai, dt)

            if ai.distance >= FINISH_DISTANCE and not ai.finish_crossed:
                ai.finish_crossed = True
                self._on_finish(session, ai)

            overrun = ai.distance - FINISH_DISTANCE
            if ai.finish_crossed and (
                ai.speed < STOP_SPEED_EPSILON or overrun >= STOP_DISTANCE
            ):
                ai.finished = True
                ai.speed = 0.0
                ai.target_speed = 0.0
                logger.debug(f"{ai.name} stopped {overrun:.1f} past the line")

            self._broadcast.position(session, self.position_update(ai), now)

    def _advance(self, ai: AIState, dt: float) -> None:
        if ai.finish_crossed:
            overrun = ai.distance - FINISH_DISTANCE
            ramp = max(0.0, 1.0 - overrun / DECELERATION_DISTANCE)
            ai.target_speed = ai.base_speed * ramp
        else:
            lo, hi = AI_PERTURBATION_RANGE
            ai.target_speed = ai.base_speed * self._rng.uniform(lo, hi)

        ai.speed = ai.speed * AI_SMOOTHING + ai.target_speed * (1.0 - AI_SMOOTHING)
        step = ai.speed * dt
        ai.distance += step
        x, y, z = ai.position
        ai.position = (x, y, z + step)

    @staticmethod
    def position_update(ai: AIState) -> PositionUpdate:
        return PositionUpdate(
            id=ai.ai_id,
            position=Vector3.of(ai.position),
            speed=ai.speed,
            distance=ai.distance,
            finish_crossed=ai.finish_crossed,
            finished=ai.finished,
            is_ai=True,
        )
