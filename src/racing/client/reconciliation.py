"""ClientReconciliationLayer — smooth remote cars between server updates.

Architecture
------------
Each remote entity (other humans and AI cars) has a ``RemoteEntityShadow``
holding the interpolation start, the interpolation target and the time the
target was received.  A new authoritative position never snaps the car;
it restarts a linear blend from *where the car is currently drawn* to the
new target over ``INTERPOLATION_WINDOW`` seconds:

    factor = clamp((now - start_time) / window, 0, 1)
    drawn  = start + (target - start) * factor

Once ``factor`` reaches 1 the car holds at the target until the next
update arrives.  Under packet loss this shows as a brief pause rather than
a jump.

Exceptions to the blend: the first update for an entity and any update
more than ``SNAP_DISTANCE`` away from the drawn position snap directly
(initial grid placement, rejoins).

Heading comes from the displacement between interpolation start and target
(``atan2(dx, dz)``, radians about +y with 0 facing +z); a zero displacement
keeps the previous heading.

The local player's own car is never tracked here; it always shows
locally simulated state.

Shadows are visual only.  Nothing read from them is sent back upstream.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Protocol

from loguru import logger

from ..constants import INTERPOLATION_WINDOW, SNAP_DISTANCE
from ..models import Vec3


class EntityView(Protocol):
    """Rendering collaborator: places and removes car meshes."""

    def set_pose(self, entity_id: str, position: Vec3, heading: float) -> None: ...

    def remove(self, entity_id: str) -> None: ...


def lerp(a: Vec3, b: Vec3, t: float) -> Vec3:
    return (
        a[0] + (b[0] - a[0]) * t,
        a[1] + (b[1] - a[1]) * t,
        a[2] + (b[2] - a[2]) * t,
    )


def distance(a: Vec3, b: Vec3) -> float:
    return math.sqrt(
        (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2 + (a[2] - b[2]) ** 2
    )


@dataclass
class RemoteEntityShadow:
    entity_id: str
    start: Vec3
    target: Vec3
    start_time: float
    target_time: float
    heading: float = 0.0
    rendered: Vec3 = (0.0, 0.0, 0.0)
    last_seq: int = 0
    speed: float = 0.0
    distance: float = 0.0
    finish_crossed: bool = False
    finished: bool = False
    is_ai: bool = False

    def factor(self, now: float, window: float) -> float:
        if window <= 0:
            return 1.0
        return min(max((now - self.start_time) / window, 0.0), 1.0)


class ClientReconciliationLayer:
    """Tracks remote shadows and produces per-frame poses."""

    def __init__(
        self,
        local_id: str | None = None,
        view: EntityView | None = None,
        window: float = INTERPOLATION_WINDOW,
        snap_distance: float = SNAP_DISTANCE,
    ) -> None:
        self.local_id = local_id
        self.view = view
        self.window = window
        self.snap_distance = snap_distance
        self.shadows: dict[str, RemoteEntityShadow] = {}

    def apply_update(
        self,
        entity_id: str,
        position: Vec3,
        now: float,
        seq: int | None = None,
        **state,
    ) -> bool:
        """Feed one authoritative position.  Returns False if it was ignored.

        ``seq`` values not newer than the last applied one are dropped
        (duplicates and out-of-order delivery).  Extra keyword state
        (speed, distance, finish flags, is_ai) is copied onto the shadow.
        """
        if entity_id == self.local_id:
            return False

        shadow = self.shadows.get(entity_id)
        if shadow is None:
            shadow = RemoteEntityShadow(
                entity_id=entity_id,
                start=position,
                target=position,
                start_time=now,
                target_time=now,
                rendered=position,
                last_seq=seq or 0,
            )
            self.shadows[entity_id] = shadow
            self._apply_state(shadow, state)
            self._push(shadow)
            return True

        if seq is not None:
            if seq <= shadow.last_seq:
                logger.debug(f"Stale update for {entity_id} (seq {seq} <= {shadow.last_seq})")
                return False
            shadow.last_seq = seq

        current = self._rendered(shadow, now)
        if distance(current, position) > self.snap_distance:
            shadow.start = position
        else:
            shadow.start = current
        shadow.target = position
        shadow.start_time = now
        shadow.target_time = now
        shadow.rendered = shadow.start

        dx = shadow.target[0] - shadow.start[0]
        dz = shadow.target[2] - shadow.start[2]
        if dx != 0.0 or dz != 0.0:
            shadow.heading = math.atan2(dx, dz)

        self._apply_state(shadow, state)
        return True

    def remove(self, entity_id: str) -> None:
        if self.shadows.pop(entity_id, None) is not None and self.view is not None:
            self.view.remove(entity_id)

    def clear(self) -> None:
        for entity_id in list(self.shadows):
            self.remove(entity_id)

    def frame(self, now: float) -> dict[str, tuple[Vec3, float]]:
        """Advance every shadow to ``now``; returns ``{id: (position, heading)}``."""
        poses: dict[str, tuple[Vec3, float]] = {}
        for shadow in self.shadows.values():
            shadow.rendered = self._rendered(shadow, now)
            poses[shadow.entity_id] = (shadow.rendered, shadow.heading)
            self._push(shadow)
        return poses

    def _rendered(self, shadow: RemoteEntityShadow, now: float) -> Vec3:
        return lerp(shadow.start, shadow.target, shadow.factor(now, self.window))

    def _push(self, shadow: RemoteEntityShadow) -> None:
        if self.view is not None:
            self.view.set_pose(shadow.entity_id, shadow.rendered, shadow.heading)

    @staticmethod
    def _apply_state(shadow: RemoteEntityShadow, state: dict) -> None:
        for key in ("speed", "distance", "is_ai"):
            if key in state:
                setattr(shadow, key, state[key])
        # Finish flags only ever latch on.
        if state.get("finish_crossed"):
            shadow.finish_crossed = True
        if state.get("finished"):
            shadow.finished = True
