"""Session inspection API: snapshots and final standings."""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


def _get_lifecycle(request: Request):
    """Retrieve the SessionLifecycleManager from app state."""
    lifecycle = getattr(request.app.state, "lifecycle", None)
    if lifecycle is None:
        raise HTTPException(503, "Race relay not available")
    return lifecycle


@router.get("")
async def list_sessions(request: Request):
    """All live sessions."""
    return _get_lifecycle(request).snapshot()


@router.get("/{session_id}")
async def get_session(session_id: str, request: Request):
    lifecycle = _get_lifecycle(request)
    session = lifecycle.registry.get(session_id)
    if session is None:
        raise HTTPException(404, f"Session not found: {session_id}")
    return session.to_dict()


@router.get("/{session_id}/standings")
async def get_standings(session_id: str, request: Request):
    """Finish order so far; final once status is ``finished``.

    Finished sessions stay available for the cleanup grace period.
    """
    lifecycle = _get_lifecycle(request)
    session = lifecycle.registry.get(session_id)
    if session is None:
        raise HTTPException(404, f"Session not found: {session_id}")
    return {
        "session_id": session_id,
        "status": session.status.value,
        "final": session.status.value == "finished",
        "finish_order": session.standings(),
    }
