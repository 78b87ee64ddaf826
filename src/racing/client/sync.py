"""Client-side protocol handling: outbound rate limiting and inbound dispatch.

``RaceClient`` is transport-agnostic.  It is handed a ``send`` callable for
outbound frames and fed inbound frames through ``handle()``; the headless
bot in ``racing.client.bot`` wires it to a websocket, a browser port would
wire it to its own socket.
"""

from __future__ import annotations

import time
from typing import Callable

from loguru import logger

from ..constants import CLIENT_SEND_INTERVAL
from ..messages import (
    AIAdded,
    AIRemoved,
    Connected,
    CountdownStarted,
    EntityFinished,
    ErrorMessage,
    HostChanged,
    JoinMessage,
    Joined,
    LeaveMessage,
    MessageError,
    ParticipantJoined,
    ParticipantLeft,
    ParticipantReady,
    PositionUpdate,
    RaceFinished,
    RacingStarted,
    ReadyMessage,
    RequestPosition,
    StartRaceMessage,
    UpdatePositionMessage,
    Vector3,
    parse_server_message,
)
from ..models import ORIGIN, Vec3
from .reconciliation import ClientReconciliationLayer, EntityView
from .tracker import LocalRaceTracker


class RaceHud:
    """UI collaborator.  Every hook is optional; override what you display."""

    def set_connection_status(self, status: str) -> None:
        pass

    def show_countdown(self, delay: float) -> None:
        pass

    def show_race_start(self) -> None:
        pass

    def show_local_finish(self, elapsed: float) -> None:
        pass

    def show_entity_finished(self, name: str, rank: int, elapsed: float) -> None:
        pass

    def show_standings(self, standings: list[dict]) -> None:
        pass

    def show_error(self, message: str) -> None:
        pass


class PositionSender:
    """Sends the local car's state no more than once per ``interval``."""

    def __init__(
        self,
        send: Callable[[dict], None],
        clock: Callable[[], float] = time.monotonic,
        interval: float = CLIENT_SEND_INTERVAL,
    ) -> None:
        self._send = send
        self._clock = clock
        self.interval = interval
        self.last_sent: float | None = None
        self.sent = 0

    def send(self, message: UpdatePositionMessage, force: bool = False) -> bool:
        """Send unless rate-limited.  ``force`` bypasses the limit once."""
        now = self._clock()
        if not force and self.last_sent is not None and now - self.last_sent < self.interval:
            return False
        self.last_sent = now
        self.sent += 1
        self._send(message.to_wire())
        return True


class RaceClient:
    """Consumes server messages and keeps the client's view of the race."""

    def __init__(
        self,
        send: Callable[[dict], None],
        view: EntityView | None = None,
        hud: RaceHud | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._send = send
        self._clock = clock
        self.hud = hud or RaceHud()
        self.reconciliation = ClientReconciliationLayer(view=view)
        self.tracker = LocalRaceTracker(on_finish=self.hud.show_local_finish)
        self.sender = PositionSender(send, clock=clock)

        self.connection_id: str | None = None
        self.participant_id: str | None = None
        self.session_id: str | None = None
        self.is_host = False
        self.status = "disconnected"
        self.race_status = "waiting"
        self.roster: dict[str, str] = {}
        self.ai_ids: set[str] = set()
        self.standings: list[dict] = []
        self.final = False

        self.position: Vec3 = ORIGIN
        self.rotation: Vec3 = ORIGIN

        self._handlers: dict[type, Callable] = {
            Connected: self._on_connected,
            Joined: self._on_joined,
            ParticipantJoined: self._on_participant_joined,
            ParticipantLeft: self._on_participant_left,
            ParticipantReady: lambda msg: None,
            HostChanged: self._on_host_changed,
            AIAdded: self._on_ai_added,
            AIRemoved: self._on_ai_removed,
            CountdownStarted: self._on_countdown,
            RacingStarted: self._on_racing_started,
            PositionUpdate: self._on_position,
            EntityFinished: self._on_entity_finished,
            RaceFinished: self._on_race_finished,
            RequestPosition: lambda msg: self.send_position(force=True),
            ErrorMessage: self._on_error,
        }

    # -- Outbound -----------------------------------------------------------

    def join(self, session_id: str, name: str) -> None:
        self._send(JoinMessage(session_id=session_id, name=name).to_wire())

    def ready(self) -> None:
        self._send(ReadyMessage().to_wire())

    def start_race(self) -> None:
        self._send(StartRaceMessage().to_wire())

    def leave(self) -> None:
        self._send(LeaveMessage().to_wire())
        self.reconciliation.clear()
        self.set_status("disconnected")

    def set_local_state(
        self, position: Vec3, rotation: Vec3, speed: float, distance: float
    ) -> None:
        """Called by the external physics once per frame."""
        self.position = position
        self.rotation = rotation
        self.tracker.update(distance, speed, self._clock())
        self.send_position()

    def send_position(self, force: bool = False) -> bool:
        if self.participant_id is None:
            return False
        return self.sender.send(
            UpdatePositionMessage(
                position=Vector3.of(self.position),
                rotation=Vector3.of(self.rotation),
                speed=self.tracker.speed,
                distance=self.tracker.distance,
                finish_crossed=self.tracker.finish_crossed,
                finished=self.tracker.finished,
            ),
            force=force,
        )

    def frame(self, now: float | None = None) -> dict:
        """Per-render-frame reconciliation of remote cars."""
        return self.reconciliation.frame(self._clock() if now is None else now)

    def set_status(self, status: str) -> None:
        if status != self.status:
            self.status = status
            self.hud.set_connection_status(status)

    # -- Inbound ------------------------------------------------------------

    def handle(self, raw: str | bytes | dict) -> None:
        try:
            message = parse_server_message(raw)
        except MessageError as e:
            logger.warning(f"Ignoring malformed server message: {e}")
            return
        handler = self._handlers.get(type(message))
        if handler is not None:
            handler(message)

    def _on_connected(self, msg: Connected) -> None:
        self.connection_id = msg.connection_id
        self.set_status("connected")

    def _on_joined(self, msg: Joined) -> None:
        self.participant_id = msg.participant_id
        self.session_id = msg.session_id
        self.is_host = msg.is_host
        self.race_status = msg.status
        self.reconciliation.local_id = msg.participant_id
        self.position = msg.start_position.as_tuple()
        self.standings = list(msg.finish_order)
        now = self._clock()
        for p in msg.participants:
            self.roster[p["id"]] = p["name"]
            self._place(p, now)
        for ai in msg.ai_entities:
            self.ai_ids.add(ai["id"])
            self.roster[ai["id"]] = ai["name"]
            self._place(ai, now, is_ai=True)
        self.set_status("joined")
        logger.info(
            f"Joined {msg.session_id} at slot {msg.assigned_slot}"
            + (" as host" if msg.is_host else "")
        )
        self.send_position(force=True)

    def _place(self, entity: dict, now: float, is_ai: bool = False) -> None:
        pos = entity.get("position") or {}
        self.reconciliation.apply_update(
            entity["id"],
            (pos.get("x", 0.0), pos.get("y", 0.0), pos.get("z", 0.0)),
            now,
            is_ai=is_ai,
        )

    def _on_participant_joined(self, msg: ParticipantJoined) -> None:
        p = msg.participant
        self.roster[p["id"]] = p["name"]
        self._place(p, self._clock())

    def _on_participant_left(self, msg: ParticipantLeft) -> None:
        self.roster.pop(msg.id, None)
        self.reconciliation.remove(msg.id)

    def _on_host_changed(self, msg: HostChanged) -> None:
        self.is_host = msg.host_id == self.participant_id
        if self.is_host:
            logger.info("This client is now the host")

    def _on_ai_added(self, msg: AIAdded) -> None:
        self.ai_ids.add(msg.ai["id"])
        self.roster[msg.ai["id"]] = msg.ai["name"]
        self._place(msg.ai, self._clock(), is_ai=True)

    def _on_ai_removed(self, msg: AIRemoved) -> None:
        self.ai_ids.discard(msg.id)
        self.roster.pop(msg.id, None)
        self.reconciliation.remove(msg.id)

    def _on_countdown(self, msg: CountdownStarted) -> None:
        self.race_status = "countdown"
        self.hud.show_countdown(msg.delay)

    def _on_racing_started(self, msg: RacingStarted) -> None:
        self.race_status = "racing"
        self.tracker.start(self._clock())
        self.hud.show_race_start()

    def _on_position(self, msg: PositionUpdate) -> None:
        self.reconciliation.apply_update(
            msg.id,
            msg.position.as_tuple(),
            self._clock(),
            seq=msg.seq,
            speed=msg.speed,
            distance=msg.distance,
            finish_crossed=msg.finish_crossed,
            finished=msg.finished,
            is_ai=msg.is_ai,
        )

    def _on_entity_finished(self, msg: EntityFinished) -> None:
        if any(r.get("id") == msg.id for r in self.standings):
            return
        self.standings.append({
            "rank": msg.rank,
            "id": msg.id,
            "name": msg.name,
            "elapsed_time": msg.elapsed_time,
            "is_ai": msg.is_ai,
        })
        self.standings.sort(key=lambda r: r["rank"])
        self.hud.show_entity_finished(msg.name, msg.rank, msg.elapsed_time)

    def _on_race_finished(self, msg: RaceFinished) -> None:
        # Server order replaces anything assembled locally.
        self.standings = list(msg.finish_order)
        self.final = True
        self.race_status = "finished"
        self.hud.show_standings(self.standings)

    def _on_error(self, msg: ErrorMessage) -> None:
        logger.warning(f"Server error: {msg.message}")
        self.hud.show_error(msg.message)
