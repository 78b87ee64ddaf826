"""WebSocket transport for the race relay.

One connection is one participant.  Inbound frames are validated into
message variants and routed to the lifecycle manager; outbound frames are
queued per connection and written by a dedicated task, so callers never
wait on a slow client.  When a client's queue is full the oldest queued
frame is dropped.
"""

import asyncio
import json
import uuid
from datetime import datetime, timezone

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from loguru import logger

from racing.lifecycle import SessionLifecycleManager
from racing.messages import (
    Connected,
    ErrorMessage,
    JoinMessage,
    LeaveMessage,
    MessageError,
    PingMessage,
    Pong,
    ReadyMessage,
    StartRaceMessage,
    UpdatePositionMessage,
    parse_client_message,
)

router = APIRouter(prefix="/ws", tags=["websocket"])


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ConnectionManager:
    """Manages race WebSocket connections.  Implements ``Transport``."""

    def __init__(self, outbox_size: int = 256):
        self.active_connections: dict[str, WebSocket] = {}
        self._outboxes: dict[str, asyncio.Queue] = {}
        self._writers: dict[str, asyncio.Task] = {}
        self._outbox_size = outbox_size
        self.dropped = 0

    async def connect(self, websocket: WebSocket) -> str:
        """Accept a connection, start its writer and return its id."""
        await websocket.accept()
        connection_id = uuid.uuid4().hex[:12]
        self.active_connections[connection_id] = websocket
        outbox: asyncio.Queue = asyncio.Queue(maxsize=self._outbox_size)
        self._outboxes[connection_id] = outbox
        self._writers[connection_id] = asyncio.create_task(
            self._write_loop(connection_id, websocket, outbox)
        )
        logger.info(f"WebSocket {connection_id} connected. Total connections: {len(self.active_connections)}")
        return connection_id

    async def disconnect(self, connection_id: str):
        """Remove a connection and stop its writer."""
        self.active_connections.pop(connection_id, None)
        self._outboxes.pop(connection_id, None)
        writer = self._writers.pop(connection_id, None)
        if writer is not None:
            writer.cancel()
        logger.info(f"WebSocket {connection_id} disconnected. Total connections: {len(self.active_connections)}")

    def send(self, connection_id: str, payload: dict) -> None:
        """Queue a frame for one connection (fire and forget)."""
        outbox = self._outboxes.get(connection_id)
        if outbox is None:
            return
        try:
            outbox.put_nowait(payload)
        except asyncio.QueueFull:
            # Drop oldest to make room.
            try:
                outbox.get_nowait()
            except asyncio.QueueEmpty:
                pass
            self.dropped += 1
            outbox.put_nowait(payload)

    async def _write_loop(self, connection_id: str, websocket: WebSocket, outbox: asyncio.Queue):
        while True:
            payload = await outbox.get()
            try:
                await websocket.send_text(json.dumps(payload))
            except Exception as e:
                logger.warning(f"Failed to send to websocket {connection_id}: {e}")
                self.active_connections.pop(connection_id, None)
                self._outboxes.pop(connection_id, None)
                self._writers.pop(connection_id, None)
                return


@router.websocket("/race")
async def websocket_race(websocket: WebSocket):
    """WebSocket endpoint for one race participant."""
    manager: ConnectionManager = websocket.app.state.connections
    lifecycle: SessionLifecycleManager = websocket.app.state.lifecycle

    connection_id = await manager.connect(websocket)
    manager.send(connection_id, Connected(connection_id=connection_id, timestamp=_now()).to_wire())

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = parse_client_message(data)
            except MessageError as e:
                manager.send(connection_id, ErrorMessage(message=str(e)).to_wire())
                continue
            if handle_client_message(lifecycle, manager, connection_id, message):
                await websocket.close()
                break
    except WebSocketDisconnect:
        pass
    finally:
        lifecycle.leave(connection_id)
        await manager.disconnect(connection_id)


def handle_client_message(
    lifecycle: SessionLifecycleManager,
    manager: ConnectionManager,
    connection_id: str,
    message,
) -> bool:
    """Route one validated client message.  Returns True when the client left."""
    if isinstance(message, UpdatePositionMessage):
        lifecycle.update_position(
            connection_id,
            message.position.as_tuple(),
            message.rotation.as_tuple(),
            message.speed,
            message.distance,
            message.finished,
            message.finish_crossed,
        )
    elif isinstance(message, JoinMessage):
        lifecycle.join(message.session_id, connection_id, message.name)
    elif isinstance(message, ReadyMessage):
        lifecycle.set_ready(connection_id)
    elif isinstance(message, StartRaceMessage):
        lifecycle.force_start(connection_id)
    elif isinstance(message, LeaveMessage):
        lifecycle.leave(connection_id)
        return True
    elif isinstance(message, PingMessage):
        manager.send(connection_id, Pong(timestamp=_now()).to_wire())
    return False
