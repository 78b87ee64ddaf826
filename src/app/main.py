"""RACE RELAY - multiplayer race session server.

Main FastAPI application.
"""

import sys
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger

from app.config import settings
from app.routers import race_router, sessions_router
from app.routers.race import ConnectionManager
from racing.broadcast import BroadcastProtocol
from racing.lifecycle import SessionLifecycleManager, SessionRegistry
from racing.timers import AsyncioScheduler

VERSION = "0.1.0"


def _configure_logging() -> None:
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if settings.debug else settings.log_level)


def _create_relay(app: FastAPI) -> SessionLifecycleManager:
    """Wire transport, broadcast protocol and lifecycle manager onto app.state."""
    connections = ConnectionManager(outbox_size=settings.outbox_size)
    registry = SessionRegistry()
    lifecycle = SessionLifecycleManager(
        registry,
        BroadcastProtocol(connections),
        AsyncioScheduler(),
    )
    app.state.connections = connections
    app.state.lifecycle = lifecycle
    return lifecycle


def _shutdown_relay(app: FastAPI) -> None:
    """Cancel every session's timers so nothing fires after shutdown."""
    lifecycle = getattr(app.state, "lifecycle", None)
    if lifecycle is None:
        return
    for session in list(lifecycle.registry.sessions.values()):
        session.timers.cancel_all()
    logger.info(f"Stopped {len(lifecycle.registry)} session(s)")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler."""
    logger.info("=" * 60)
    logger.info(f"  {settings.app_name} v{VERSION} - INITIALIZING")
    logger.info("=" * 60)

    _create_relay(app)
    logger.info("Race relay ready on /ws/race")

    yield

    _shutdown_relay(app)
    logger.info(f"{settings.app_name} shutting down...")


def create_app() -> FastAPI:
    app = FastAPI(
        title=settings.app_name,
        description="Session lifecycle and position relay for multiplayer races",
        version=VERSION,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(race_router)
    app.include_router(sessions_router)

    @app.get("/health")
    async def health():
        """Health check endpoint."""
        return {
            "status": "operational",
            "version": VERSION,
            "system": settings.app_name,
        }

    @app.get("/api/status")
    async def status():
        """Active sessions and players."""
        lifecycle = getattr(app.state, "lifecycle", None)
        return {
            "name": settings.app_name,
            "version": VERSION,
            "active_sessions": len(lifecycle.registry) if lifecycle else 0,
            "active_players": lifecycle.registry.player_count if lifecycle else 0,
            "connections": len(app.state.connections.active_connections) if lifecycle else 0,
        }

    return app


app = create_app()


def main() -> None:
    _configure_logging()
    uvicorn.run(app, host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
