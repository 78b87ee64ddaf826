"""LocalRaceTracker — the player's own progress and finish detection.

The client decides on its own when its car has crossed the line and when
it has come to rest; it shows the finish screen immediately and reports
both flags with every position update.  The server still owns the final
standings, and they replace whatever the client assumed locally.
"""

from __future__ import annotations

from typing import Callable

from loguru import logger

from ..constants import (
    DECELERATION_DISTANCE,
    FINISH_DISTANCE,
    STOP_DISTANCE,
    STOP_SPEED_EPSILON,
)


class LocalRaceTracker:
    def __init__(
        self,
        on_finish: Callable[[float], None] | None = None,
        finish_distance: float = FINISH_DISTANCE,
    ) -> None:
        self._on_finish = on_finish
        self.finish_distance = finish_distance
        self.distance = 0.0
        self.speed = 0.0
        self.racing = False
        self.race_started_at: float | None = None
        self.finish_crossed = False
        self.finished = False
        self.finish_time: float | None = None

    def start(self, now: float) -> None:
        self.racing = True
        self.race_started_at = now

    def update(self, distance: float, speed: float, now: float) -> None:
        """Feed the locally simulated distance and speed for this frame."""
        if not self.racing:
            self.distance = distance
            self.speed = speed
            return

        # Physics may jitter backwards a little; progress never does.
        self.distance = max(self.distance, distance)
        self.speed = speed

        if not self.finish_crossed and self.distance >= self.finish_distance:
            self.finish_crossed = True
            started = self.race_started_at if self.race_started_at is not None else now
            self.finish_time = now - started
            logger.info(f"Crossed the line after {self.finish_time:.2f}s")
            if self._on_finish is not None:
                self._on_finish(self.finish_time)

        if self.finish_crossed and not self.finished:
            overrun = self.distance - self.finish_distance
            if abs(self.speed) < STOP_SPEED_EPSILON or overrun >= STOP_DISTANCE:
                self.finished = True

    def speed_limit_factor(self) -> float:
        """Throttle multiplier the physics should apply past the finish line.

        1.0 before the line, ramping to 0.0 across the deceleration zone.
        """
        if not self.finish_crossed:
            return 1.0
        overrun = self.distance - self.finish_distance
        return max(0.0, 1.0 - overrun / DECELERATION_DISTANCE)

    def flags(self) -> tuple[bool, bool]:
        return self.finish_crossed, self.finished
