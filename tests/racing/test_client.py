"""Unit tests for RaceClient message handling and PositionSender."""

from __future__ import annotations

import pytest

from racing.client.sync import PositionSender, RaceClient, RaceHud
from racing.messages import UpdatePositionMessage, Vector3

pytestmark = pytest.mark.unit


class Clock:
    def __init__(self, t: float = 0.0):
        self.t = t

    def __call__(self) -> float:
        return self.t


class RecordingHud(RaceHud):
    def __init__(self):
        self.events: list[tuple] = []

    def set_connection_status(self, status):
        self.events.append(("status", status))

    def show_countdown(self, delay):
        self.events.append(("countdown", delay))

    def show_local_finish(self, elapsed):
        self.events.append(("local_finish", elapsed))

    def show_standings(self, standings):
        self.events.append(("standings", standings))

    def show_error(self, message):
        self.events.append(("error", message))


def _joined(participant_id="p1", is_host=True):
    return {
        "type": "joined",
        "session_id": "s1",
        "participant_id": participant_id,
        "status": "waiting",
        "is_host": is_host,
        "assigned_slot": 0,
        "start_position": {"x": -6.0, "y": 0.0, "z": 0.0},
        "participants": [
            {"id": participant_id, "name": "Me", "position": {"x": -6.0, "y": 0.0, "z": 0.0}},
        ],
        "ai_entities": [
            {"id": "ai-1", "name": "Blaze", "position": {"x": 0.0, "y": 0.0, "z": 0.0}},
        ],
        "finish_order": [],
    }


def _position(entity_id, seq, z, **extra):
    return {
        "type": "position_update",
        "id": entity_id,
        "seq": seq,
        "position": {"x": 0.0, "y": 0.0, "z": z},
        "speed": 50.0,
        "distance": z,
        **extra,
    }


@pytest.fixture
def clock():
    return Clock(10.0)


@pytest.fixture
def outbox():
    return []


@pytest.fixture
def hud():
    return RecordingHud()


@pytest.fixture
def client(outbox, hud, clock):
    return RaceClient(outbox.append, hud=hud, clock=clock)


class TestPositionSender:
    def test_rate_limited(self, clock):
        sent = []
        sender = PositionSender(sent.append, clock=clock, interval=0.05)
        msg = UpdatePositionMessage(position=Vector3())
        assert sender.send(msg)
        clock.t += 0.01
        assert not sender.send(msg)
        assert sender.send(msg, force=True)
        clock.t += 0.05
        assert sender.send(msg)
        assert len(sent) == 3


class TestRaceClient:
    def test_outbound_commands(self, client, outbox):
        client.join("s1", "Alice")
        client.ready()
        client.start_race()
        assert [m["type"] for m in outbox] == ["join", "ready", "start_race"]
        assert outbox[0]["session_id"] == "s1"

    def test_connected_then_joined(self, client, hud, outbox):
        client.handle({"type": "connected", "connection_id": "c1", "timestamp": "t"})
        client.handle(_joined())
        assert client.connection_id == "c1"
        assert client.participant_id == "p1"
        assert client.is_host
        assert client.status == "joined"
        assert ("status", "connected") in hud.events
        # Own car is not shadowed, AI car is.
        assert set(client.reconciliation.shadows) == {"ai-1"}
        assert outbox[-1]["type"] == "update_position"
        assert outbox[-1]["position"] == {"x": -6.0, "y": 0.0, "z": 0.0}

    def test_no_position_before_join(self, client, outbox):
        client.set_local_state((0.0, 0.0, 1.0), (0.0, 0.0, 0.0), 5.0, 1.0)
        assert outbox == []

    def test_request_position_forces_send(self, client, outbox, clock):
        client.handle(_joined())
        outbox.clear()
        client.send_position()
        assert outbox == []
        client.handle({"type": "request_position"})
        assert len(outbox) == 1

    def test_position_updates_feed_reconciliation(self, client):
        client.handle(_joined())
        client.handle(_position("ai-1", 1, 3.0, is_ai=True))
        client.handle(_position("ai-1", 1, 9.0, is_ai=True))
        shadow = client.reconciliation.shadows["ai-1"]
        assert shadow.target == (0.0, 0.0, 3.0)
        assert shadow.is_ai

    def test_race_flow_and_local_finish(self, client, hud, clock, outbox):
        client.handle(_joined())
        client.handle({"type": "countdown_started", "delay": 3.0})
        assert client.race_status == "countdown"
        clock.t = 13.0
        client.handle({"type": "racing_started"})
        assert client.race_status == "racing"

        clock.t = 33.0
        client.set_local_state((0.0, 0.0, 1001.0), (0.0, 0.0, 0.0), 40.0, 1001.0)
        assert ("local_finish", pytest.approx(20.0)) in hud.events
        assert outbox[-1]["distance"] == 1001.0
        assert outbox[-1]["finish_crossed"] is True
        assert outbox[-1]["finished"] is False

        clock.t = 36.0
        client.set_local_state((0.0, 0.0, 1030.0), (0.0, 0.0, 0.0), 0.0, 1030.0)
        assert outbox[-1]["finished"] is True

    def test_server_standings_replace_local(self, client):
        client.handle(_joined())
        client.handle({
            "type": "entity_finished", "id": "ai-1", "name": "Blaze",
            "rank": 1, "elapsed_time": 17.5, "is_ai": True,
        })
        client.handle({
            "type": "entity_finished", "id": "ai-1", "name": "Blaze",
            "rank": 1, "elapsed_time": 17.5, "is_ai": True,
        })
        assert len(client.standings) == 1
        assert not client.final

        final = [
            {"rank": 1, "id": "p1", "name": "Me", "elapsed_time": 17.0, "is_ai": False},
            {"rank": 2, "id": "ai-1", "name": "Blaze", "elapsed_time": 17.5, "is_ai": True},
        ]
        client.handle({"type": "race_finished", "finish_order": final})
        assert client.standings == final
        assert client.final
        assert client.race_status == "finished"

    def test_roster_changes(self, client):
        client.handle(_joined())
        client.handle({
            "type": "participant_joined",
            "participant": {"id": "p2", "name": "Bob", "position": {"x": 0, "y": 0, "z": 0}},
        })
        client.handle({"type": "ai_removed", "id": "ai-1", "replaced_by": "p2"})
        assert "ai-1" not in client.reconciliation.shadows
        assert client.ai_ids == set()
        client.handle({"type": "participant_left", "id": "p2"})
        assert client.roster == {"p1": "Me"}

    def test_host_changed(self, client):
        client.handle(_joined(is_host=False))
        client.handle({"type": "host_changed", "host_id": "p1"})
        assert client.is_host

    def test_error_shown(self, client, hud):
        client.handle({"type": "error", "message": "Session is full"})
        assert ("error", "Session is full") in hud.events

    def test_malformed_frame_ignored(self, client):
        client.handle("{broken")
        client.handle(b'\xff\xfe{"type": "pong"}')
        client.handle({"type": "mystery"})
        assert client.status == "disconnected"

    def test_leave_clears_remote_cars(self, client, outbox):
        client.handle(_joined())
        client.leave()
        assert outbox[-1] == {"type": "leave"}
        assert client.reconciliation.shadows == {}
        assert client.status == "disconnected"
