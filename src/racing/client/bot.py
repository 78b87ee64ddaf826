"""Headless race client that joins a session over websocket and drives a car.

Useful for filling a lobby with scripted humans and for exercising the
relay end to end without a browser.  The "physics" is a toy throttle model;
rendering goes to the log.

Usage:
    racing-bot --url ws://localhost:8000/ws/race --session lobby-1 --name Bot
"""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import time

import websockets
from loguru import logger

from ..constants import FINISH_DISTANCE
from ..models import Vec3
from .sync import RaceClient, RaceHud

FRAME_INTERVAL = 1 / 60


class LogView:
    """EntityView that writes poses to the debug log."""

    def set_pose(self, entity_id: str, position: Vec3, heading: float) -> None:
        logger.trace(f"{entity_id} at z={position[2]:.1f} heading={heading:.2f}")

    def remove(self, entity_id: str) -> None:
        logger.debug(f"{entity_id} removed")


class LogHud(RaceHud):
    def set_connection_status(self, status: str) -> None:
        logger.info(f"[status] {status}")

    def show_countdown(self, delay: float) -> None:
        logger.info(f"[race] starting in {delay:.0f}s")

    def show_race_start(self) -> None:
        logger.info("[race] GO")

    def show_local_finish(self, elapsed: float) -> None:
        logger.info(f"[race] finished in {elapsed:.2f}s")

    def show_entity_finished(self, name: str, rank: int, elapsed: float) -> None:
        logger.info(f"[race] P{rank} {name} {elapsed:.2f}s")

    def show_standings(self, standings: list[dict]) -> None:
        for row in standings:
            tag = " (AI)" if row.get("is_ai") else ""
            logger.info(f"[final] P{row['rank']} {row['name']}{tag} {row['elapsed_time']:.2f}s")

    def show_error(self, message: str) -> None:
        logger.error(f"[server] {message}")


class ToyCar:
    """Throttle-only longitudinal model standing in for the real physics."""

    def __init__(self, max_speed: float = 55.0, acceleration: float = 12.0) -> None:
        self.max_speed = max_speed
        self.acceleration = acceleration
        self.speed = 0.0
        self.distance = 0.0

    def step(self, dt: float, throttle: float) -> None:
        target = self.max_speed * throttle
        if self.speed < target:
            self.speed = min(target, self.speed + self.acceleration * dt)
        else:
            self.speed = max(target, self.speed - self.acceleration * 2 * dt)
        self.distance += self.speed * dt


async def run_bot(url: str, session_id: str, name: str, auto_start: bool = False,
                  max_speed: float = 55.0) -> list[dict]:
    """Race once and return the final standings."""
    outbox: asyncio.Queue[dict] = asyncio.Queue()
    client = RaceClient(outbox.put_nowait, view=LogView(), hud=LogHud())
    car = ToyCar(max_speed=max_speed)

    async with websockets.connect(url) as ws:

        async def _writer() -> None:
            while True:
                message = await outbox.get()
                await ws.send(json.dumps(message))

        async def _reader() -> None:
            async for raw in ws:
                client.handle(raw)

        writer = asyncio.create_task(_writer())
        reader = asyncio.create_task(_reader())
        client.join(session_id, name)
        client.ready()
        if auto_start:
            client.start_race()

        grid: Vec3 | None = None
        try:
            while not client.final:
                if reader.done():
                    client.set_status("connection lost")
                    break
                await asyncio.sleep(FRAME_INTERVAL)
                if client.participant_id is None:
                    continue
                if grid is None:
                    grid = client.position
                if client.race_status == "racing":
                    car.step(FRAME_INTERVAL, client.tracker.speed_limit_factor())
                client.set_local_state(
                    (grid[0], grid[1], grid[2] + car.distance),
                    (0.0, 0.0, 0.0),
                    car.speed,
                    car.distance,
                )
                client.frame()
        finally:
            client.leave()
            await asyncio.sleep(0)
            writer.cancel()
            reader.cancel()

    return client.standings


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Headless race relay client")
    parser.add_argument("--url", default="ws://localhost:8000/ws/race")
    parser.add_argument("--session", default="lobby")
    parser.add_argument("--name", default=f"Bot-{int(time.time()) % 1000}")
    parser.add_argument("--auto-start", action="store_true",
                        help="force the countdown if this bot is host")
    parser.add_argument("--max-speed", type=float, default=55.0)
    parser.add_argument("--verbose", action="store_true")
    args = parser.parse_args(argv)

    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if args.verbose else "INFO")
    logger.info(f"Racing {FINISH_DISTANCE:.0f} units in session '{args.session}' as {args.name}")

    try:
        standings = asyncio.run(run_bot(
            args.url, args.session, args.name,
            auto_start=args.auto_start, max_speed=args.max_speed,
        ))
    except (OSError, websockets.exceptions.WebSocketException) as e:
        logger.error(f"Connection failed: {e}")
        return 1
    except KeyboardInterrupt:
        return 130
    return 0 if standings else 2


if __name__ == "__main__":
    sys.exit(main())
