"""Tests for app.main and the session inspection API."""

from __future__ import annotations

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from app.routers.sessions import router as sessions_router


@pytest.fixture
def client():
    from app.main import create_app
    with TestClient(create_app()) as c:
        yield c


@pytest.mark.unit
class TestAppCreation:
    def test_app_title(self):
        from app.main import app
        assert isinstance(app, FastAPI)
        assert app.title == "RACE RELAY"

    def test_routes_registered(self):
        from app.main import app
        paths = {r.path for r in app.routes}
        assert "/ws/race" in paths
        assert "/api/sessions/{session_id}/standings" in paths
        assert "/health" in paths


@pytest.mark.integration
class TestStatusEndpoints:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "operational"

    def test_status_empty(self, client):
        body = client.get("/api/status").json()
        assert body["active_sessions"] == 0
        assert body["active_players"] == 0

    def test_status_counts_players(self, client):
        with client.websocket_connect("/ws/race") as ws:
            ws.receive_json()
            ws.send_json({"type": "join", "session_id": "s1", "name": "Alice"})
            ws.receive_json()
            body = client.get("/api/status").json()
            assert body["active_sessions"] == 1
            assert body["active_players"] == 1
            assert body["connections"] == 1


@pytest.mark.integration
class TestSessionsApi:
    def test_list_empty(self, client):
        assert client.get("/api/sessions").json() == []

    def test_unknown_session_404(self, client):
        resp = client.get("/api/sessions/nope")
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Session not found: nope"

    def test_unknown_standings_404(self, client):
        assert client.get("/api/sessions/nope/standings").status_code == 404

    def test_standings_while_waiting(self, client):
        with client.websocket_connect("/ws/race") as ws:
            ws.receive_json()
            ws.send_json({"type": "join", "session_id": "s1", "name": "Alice"})
            ws.receive_json()
            body = client.get("/api/sessions/s1/standings").json()
            assert body == {
                "session_id": "s1",
                "status": "waiting",
                "final": False,
                "finish_order": [],
            }
            listed = client.get("/api/sessions").json()
            assert [s["id"] for s in listed] == ["s1"]

    def test_no_relay_returns_503(self):
        app = FastAPI()
        app.include_router(sessions_router)
        resp = TestClient(app).get("/api/sessions")
        assert resp.status_code == 503
