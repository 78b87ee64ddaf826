"""API routers for the race relay."""

from app.routers.race import router as race_router
from app.routers.sessions import router as sessions_router

__all__ = ["race_router", "sessions_router"]
