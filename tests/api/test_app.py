"""Tests for the FastAPI app: HTTP views and the /ws endpoint.

Uses FastAPI TestClient so the lifespan starts and stops the SyncServer.
"""

from __future__ import annotations

import time

import pytest
from conftest import make_settings
from fastapi.testclient import TestClient

from memsync import __version__
from memsync.api import create_app
from memsync.sync.server import SyncServer


@pytest.fixture()
def app():
    return create_app(make_settings())


@pytest.fixture()
def client(app):
    with TestClient(app) as client:
        yield client


def eventually(predicate, timeout=2.0):
    """The socket handler finishes on the server thread; poll until it has."""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


def subscribe(ws, *channels):
    ws.send_json({"type": "subscribe", "payload": {"channels": list(channels)}})
    assert ws.receive_json()["type"] == "subscribed"


# ── Factory ─────────────────────────────────────────────────────────


class TestFactory:
    def test_state(self, app):
        assert isinstance(app.state.sync_server, SyncServer)
        assert app.state.settings is app.state.sync_server.settings
        assert app.version == __version__

    def test_injected_server(self):
        server = SyncServer(make_settings(port=1))
        app = create_app(server=server)
        assert app.state.sync_server is server
        assert app.state.settings.port == 1

    def test_lifespan_starts_and_stops(self, app):
        server = app.state.sync_server
        with TestClient(app):
            assert server.running
        assert not server.running

    def test_independent_apps(self):
        assert create_app(make_settings()).state.sync_server is not create_app(make_settings()).state.sync_server


# ── HTTP ────────────────────────────────────────────────────────────


class TestHttp:
    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["service"] == "memsync"
        assert body["clients"] == 0
        assert body["files"] == 0

    def test_empty_collections(self, client):
        assert client.get("/api/files").json() == {"files": []}
        assert client.get("/api/tasks").json() == {"tasks": []}
        assert client.get("/api/memories").json() == {"memories": []}

    def test_missing_file_is_404(self, client):
        response = client.get("/api/files/2026-01-01")
        assert response.status_code == 404
        assert "2026-01-01" in response.json()["detail"]

    def test_status(self, client):
        body = client.get("/api/status").json()
        assert body["status"] == "healthy"
        assert body["connectedClients"] == 0
        assert body["version"] == __version__

    def test_cors(self, client):
        response = client.get("/health", headers={"Origin": "http://localhost:3000"})
        assert "access-control-allow-origin" in response.headers


# ── WebSocket ───────────────────────────────────────────────────────


class TestWebSocket:
    def test_connected_greeting(self, client):
        with client.websocket_connect("/ws") as ws:
            message = ws.receive_json()
            assert message["type"] == "connected"
            assert message["payload"]["clientId"].startswith("client-")
            assert client.get("/api/status").json()["connectedClients"] == 1

    def test_write_roundtrip_across_clients(self, client):
        with client.websocket_connect("/ws") as writer, client.websocket_connect("/ws") as watcher:
            writer.receive_json()
            watcher.receive_json()
            subscribe(watcher, "files")
            assert watcher.receive_json()["type"] == "files"

            writer.send_json(
                {"type": "write_file", "payload": {"date": "2026-02-21", "content": "## Note\n- [ ] ship"}}
            )
            ack = writer.receive_json()
            assert ack["type"] == "write_complete"
            assert ack["payload"]["success"] is True

            change = watcher.receive_json()
            assert change["type"] == "file_change"
            assert change["payload"]["file"]["memories"][0]["title"] == "Note"

        file = client.get("/api/files/2026-02-21").json()["file"]
        assert file["content"] == "## Note\n- [ ] ship"
        assert client.get("/api/tasks").json()["tasks"][0]["title"] == "ship"

    def test_protocol_errors_keep_socket_open(self, client):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            ws.send_text("garbage")
            assert ws.receive_json()["type"] == "error"
            ws.send_bytes(b'{"type": "ping"}')
            assert ws.receive_json()["type"] == "pong"

    def test_disconnect_cleans_up(self, client, app):
        with client.websocket_connect("/ws") as ws:
            ws.receive_json()
            subscribe(ws, "logs")
        server = app.state.sync_server
        assert eventually(lambda: len(server.manager) == 0)
        assert server.registry.subscribers("logs") == []
