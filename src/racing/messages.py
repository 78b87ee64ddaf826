"""Wire messages, a closed set of tagged variants per direction.

Every frame is a JSON object with a ``type`` field.  Inbound frames are
validated here, at the transport boundary, before anything reaches the
lifecycle manager; a frame that does not match one of the client variants
raises ``MessageError`` and never touches session state.

Outbound messages are built as models too and flattened with
``to_wire()`` right before they are queued on a connection.
"""

from __future__ import annotations

import json
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from .models import Vec3


class MessageError(ValueError):
    """An inbound frame was not valid JSON or not a known message variant."""


class Vector3(BaseModel):
    model_config = ConfigDict(allow_inf_nan=False)

    x: float = 0.0
    y: float = 0.0
    z: float = 0.0

    @classmethod
    def of(cls, v: Vec3) -> Vector3:
        return cls(x=v[0], y=v[1], z=v[2])

    def as_tuple(self) -> Vec3:
        return (self.x, self.y, self.z)


class Message(BaseModel):
    model_config = ConfigDict(extra="ignore", allow_inf_nan=False)

    def to_wire(self) -> dict:
        return self.model_dump(mode="json")


# ---------------------------------------------------------------------------
# Client -> server
# ---------------------------------------------------------------------------


class JoinMessage(Message):
    type: Literal["join"] = "join"
    session_id: str = Field(min_length=1, max_length=64)
    name: str = Field(min_length=1, max_length=32)


class ReadyMessage(Message):
    type: Literal["ready"] = "ready"


class StartRaceMessage(Message):
    """Host-only: start the countdown without waiting for everyone."""

    type: Literal["start_race"] = "start_race"


class UpdatePositionMessage(Message):
    type: Literal["update_position"] = "update_position"
    position: Vector3
    rotation: Vector3 = Field(default_factory=Vector3)
    speed: float = 0.0
    distance: float = Field(default=0.0, ge=0.0)
    finish_crossed: bool = False
    finished: bool = False


class LeaveMessage(Message):
    type: Literal["leave"] = "leave"


class PingMessage(Message):
    type: Literal["ping"] = "ping"


ClientMessage = Annotated[
    Union[
        JoinMessage,
        ReadyMessage,
        StartRaceMessage,
        UpdatePositionMessage,
        LeaveMessage,
        PingMessage,
    ],
    Field(discriminator="type"),
]

_client_adapter: TypeAdapter[ClientMessage] = TypeAdapter(ClientMessage)


def parse_client_message(raw: str | bytes | dict) -> ClientMessage:
    """Validate one inbound frame.

    Raises:
        MessageError: if the frame is not JSON or not a known variant.
    """
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MessageError("Invalid JSON") from e
    if not isinstance(raw, dict):
        raise MessageError("Message must be a JSON object")
    try:
        return _client_adapter.validate_python(raw)
    except ValidationError as e:
        msg_type = raw.get("type")
        raise MessageError(f"Invalid '{msg_type}' message: {e.error_count()} error(s)") from e


# ---------------------------------------------------------------------------
# Server -> client
# ---------------------------------------------------------------------------


class Connected(Message):
    type: Literal["connected"] = "connected"
    connection_id: str
    timestamp: str


class Joined(Message):
    type: Literal["joined"] = "joined"
    session_id: str
    participant_id: str
    status: str
    is_host: bool
    assigned_slot: int
    start_position: Vector3
    participants: list[dict]
    ai_entities: list[dict]
    finish_order: list[dict] = Field(default_factory=list)


class ParticipantJoined(Message):
    type: Literal["participant_joined"] = "participant_joined"
    participant: dict


class ParticipantLeft(Message):
    type: Literal["participant_left"] = "participant_left"
    id: str


class ParticipantReady(Message):
    type: Literal["participant_ready"] = "participant_ready"
    id: str


class HostChanged(Message):
    type: Literal["host_changed"] = "host_changed"
    host_id: str


class AIAdded(Message):
    type: Literal["ai_added"] = "ai_added"
    ai: dict


class AIRemoved(Message):
    type: Literal["ai_removed"] = "ai_removed"
    id: str
    replaced_by: str | None = None


class CountdownStarted(Message):
    type: Literal["countdown_started"] = "countdown_started"
    delay: float


class RacingStarted(Message):
    type: Literal["racing_started"] = "racing_started"


class PositionUpdate(Message):
    """Continuous state for one entity; humans and AI share the shape.

    ``rotation`` is ``None`` for AI cars: their heading is implied by the
    direction of motion.
    """

    type: Literal["position_update"] = "position_update"
    id: str
    seq: int = 0
    position: Vector3
    rotation: Vector3 | None = None
    speed: float
    distance: float
    finish_crossed: bool = False
    finished: bool = False
    is_ai: bool = False


class EntityFinished(Message):
    type: Literal["entity_finished"] = "entity_finished"
    id: str
    name: str
    rank: int
    elapsed_time: float
    is_ai: bool


class RaceFinished(Message):
    type: Literal["race_finished"] = "race_finished"
    finish_order: list[dict]


class RequestPosition(Message):
    type: Literal["request_position"] = "request_position"


class ErrorMessage(Message):
    type: Literal["error"] = "error"
    message: str


class Pong(Message):
    type: Literal["pong"] = "pong"
    timestamp: str


ServerMessage = Annotated[
    Union[
        Connected,
        Joined,
        ParticipantJoined,
        ParticipantLeft,
        ParticipantReady,
        HostChanged,
        AIAdded,
        AIRemoved,
        CountdownStarted,
        RacingStarted,
        PositionUpdate,
        EntityFinished,
        RaceFinished,
        RequestPosition,
        ErrorMessage,
        Pong,
    ],
    Field(discriminator="type"),
]

_server_adapter: TypeAdapter[ServerMessage] = TypeAdapter(ServerMessage)


def parse_server_message(raw: str | bytes | dict) -> ServerMessage:
    """Client-side counterpart of ``parse_client_message``."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MessageError("Invalid JSON") from e
    if not isinstance(raw, dict):
        raise MessageError("Message must be a JSON object")
    try:
        return _server_adapter.validate_python(raw)
    except ValidationError as e:
        raise MessageError(f"Invalid '{raw.get('type')}' message: {e.error_count()} error(s)") from e
