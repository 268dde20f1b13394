"""End-to-end tests of SyncServer message handling with fake transports."""

import asyncio
import json

import pytest
from conftest import FakeTransport, frame, make_settings, settle

from memsync.core.errors import SourceUnavailableError
from memsync.core.logging import configure_logging
from memsync.core.models import Session
from memsync.sync.server import SyncServer, default_template
from memsync.sync.sources import DirectoryDocumentSource, StaticSessionSource


async def client(server, *channels):
    transport = FakeTransport()
    conn = await server.connect(transport)
    if channels:
        await server.handle_raw(conn, frame("subscribe", channels=list(channels)))
    await settle()
    transport.sent.clear()
    return conn, transport


class TestConnect:
    @pytest.mark.asyncio
    async def test_connected_frame(self, server):
        await server.store.put("2026-02-21", "x")
        transport = FakeTransport()
        conn = await server.connect(transport)
        await settle()
        (message,) = transport.frames
        assert message["type"] == "connected"
        assert message["payload"]["clientId"] == conn.id
        assert message["payload"]["fileCount"] == 1

    @pytest.mark.asyncio
    async def test_disconnect_removes(self, server):
        conn, _ = await client(server, "files")
        await server.disconnect(conn.id)
        assert len(server.manager) == 0
        assert server.registry.subscribers("files") == []


class TestSubscribe:
    @pytest.mark.asyncio
    async def test_ack_then_one_snapshot_per_new_channel(self, server):
        await server.store.put("2026-02-21", "## Note\n- [ ] t")
        conn, transport = await client(server)

        await server.handle_raw(conn, frame("subscribe", channels=["files", "tasks"]))
        await server.handle_raw(conn, frame("subscribe", channels=["tasks", "memories"]))
        await settle()

        assert transport.types == ["subscribed", "files", "tasks", "subscribed", "memories"]
        assert transport.frames[0]["payload"]["channels"] == ["files", "tasks"]
        assert transport.frames[3]["payload"]["channels"] == ["files", "tasks", "memories"]
        assert transport.frames[1]["payload"]["files"][0]["date"] == "2026-02-21"

    @pytest.mark.asyncio
    async def test_snapshot_precedes_later_changes(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("subscribe", channels=["files"]))
        await server.store.put("2026-02-21", "new")
        await settle()
        assert transport.types == ["subscribed", "files", "file_change"]

    @pytest.mark.asyncio
    async def test_unsubscribe(self, server):
        conn, transport = await client(server, "files", "tasks")
        await server.handle_raw(conn, frame("unsubscribe", channels=["files"]))
        await server.store.put("k", "x")
        await settle()
        assert transport.frames[0]["type"] == "unsubscribed"
        assert transport.frames[0]["payload"] == {"channels": ["tasks"]}
        assert "file_change" not in transport.types

    @pytest.mark.asyncio
    async def test_unknown_channel_is_accepted_without_snapshot(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("subscribe", channels=["custom"]))
        await settle()
        assert transport.types == ["subscribed"]


class TestWriteFile:
    @pytest.mark.asyncio
    async def test_write_ack_precedes_broadcast(self, server):
        writer, writer_t = await client(server, "files")
        _, watcher_t = await client(server, "files")

        await server.handle_raw(writer, frame("write_file", date="2026-02-21", content="## Note\nhello"))
        await settle()

        assert writer_t.types == ["write_complete", "file_change"]
        ack = writer_t.frames[0]["payload"]
        assert ack["date"] == "2026-02-21"
        assert ack["success"] is True
        assert ack["lastModified"] == server.store.get("2026-02-21").last_modified
        assert ack["persisted"] is None

        (change,) = watcher_t.frames
        assert change["type"] == "file_change"
        assert change["payload"]["file"]["memories"][0]["title"] == "Note"

    @pytest.mark.asyncio
    async def test_concurrent_writes_serialize(self, server):
        a, a_t = await client(server, "files")
        b, b_t = await client(server)
        await asyncio.gather(
            server.handle_raw(a, frame("write_file", date="k", content="from-a")),
            server.handle_raw(b, frame("write_file", date="k", content="from-b")),
        )
        await settle()
        changes = [f["payload"]["file"] for f in a_t.of_type("file_change")]
        assert len(changes) == 2
        assert changes[0]["lastModified"] < changes[1]["lastModified"]
        assert server.store.get("k").content == changes[-1]["content"]

    @pytest.mark.asyncio
    async def test_invalid_key(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("write_file", date="../etc/passwd", content="x"))
        await settle()
        assert transport.types == ["error"]
        assert len(server.store) == 0

    @pytest.mark.asyncio
    async def test_write_through_mirror(self, tmp_path):
        server = SyncServer(make_settings(memory_dir=tmp_path))
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("write_file", date="2026-02-21", content="disk"))
        await settle()
        assert transport.last("write_complete")["payload"]["persisted"] is True
        assert (tmp_path / "2026-02-21.md").read_text() == "disk"


class TestCreateDelete:
    @pytest.mark.asyncio
    async def test_create_default_template(self, server):
        conn, transport = await client(server, "files")
        await server.handle_raw(conn, frame("create_file", date="2026-02-22"))
        await settle()
        assert transport.types == ["create_complete", "file_add"]
        assert transport.frames[0]["payload"] == {"date": "2026-02-22", "success": True}
        assert server.store.get("2026-02-22").content == default_template("2026-02-22")

    @pytest.mark.asyncio
    async def test_create_existing(self, server):
        await server.store.put("k", "x")
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("create_file", date="k", template="y"))
        await settle()
        payload = transport.last("create_complete")["payload"]
        assert payload["success"] is False
        assert "already exists" in payload["error"]
        assert server.store.get("k").content == "x"

    @pytest.mark.asyncio
    async def test_delete(self, server):
        await server.store.put("k", "x")
        conn, transport = await client(server, "files")
        await server.handle_raw(conn, frame("delete_file", date="k"))
        await server.handle_raw(conn, frame("delete_file", date="k"))
        await settle()
        assert transport.types == ["delete_complete", "file_delete", "delete_complete"]
        assert transport.frames[2]["payload"]["success"] is False


class TestRequest:
    @pytest.mark.asyncio
    async def test_status(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="status"))
        await settle()
        status = transport.last("status")["payload"]
        assert status["status"] == "healthy"
        assert status["connectedClients"] >= 1
        assert status["fileCount"] == 0
        assert "uptime" in status and "version" in status

    @pytest.mark.asyncio
    async def test_file_by_date(self, server):
        await server.store.put("2026-02-21", "x")
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="file", date="2026-02-21"))
        await server.handle_raw(conn, frame("request", resource="file", date="missing"))
        await settle()
        found, missing = transport.of_type("file")
        assert found["payload"]["file"]["content"] == "x"
        assert missing["payload"]["file"] is None

    @pytest.mark.asyncio
    @pytest.mark.parametrize("resource", ["files", "tasks", "memories", "sessions", "logs"])
    async def test_snapshot_resources(self, server, resource):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource=resource))
        await settle()
        assert transport.types == [resource]

    @pytest.mark.asyncio
    async def test_request_does_not_subscribe(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="files"))
        await server.store.put("k", "x")
        await settle()
        assert transport.types == ["files"]

    @pytest.mark.asyncio
    async def test_unknown_resource(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="widgets"))
        await settle()
        assert transport.last("error")["payload"]["message"] == "Unknown resource: widgets"


class TestErrorsAndLiveness:
    @pytest.mark.asyncio
    async def test_malformed_frame_keeps_connection(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, "{not json")
        await server.handle_raw(conn, '{"type": "frobnicate"}')
        await server.handle_raw(conn, frame("ping"))
        await settle()
        assert transport.types == ["error", "error", "pong"]
        assert transport.frames[1]["payload"]["message"] == "Unknown message type: frobnicate"
        assert conn.id in server.manager

    @pytest.mark.asyncio
    async def test_pong_keeps_connection_alive(self, server):
        quiet, _ = await client(server)
        chatty, _ = await client(server)
        await server.manager.sweep()
        await server.handle_raw(chatty, frame("pong"))
        assert await server.manager.sweep() == [quiet.id]
        assert chatty.id in server.manager


class TestLifecycle:
    @pytest.mark.asyncio
    async def test_start_seeds_and_stop_closes(self, tmp_path):
        (tmp_path / "2026-02-20.md").write_text("## Seed")
        (tmp_path / "bad name.md").write_text("skipped")
        server = SyncServer(
            make_settings(memory_dir=tmp_path),
            sessions=StaticSessionSource([Session("s1", updated_at=1)]),
        )
        await server.start()
        assert server.running
        assert server.store.keys() == ["2026-02-20"]

        transport = FakeTransport()
        await server.connect(transport)
        await settle()
        assert server.detector.sessions_snapshot()["sessions"][0]["key"] == "s1"

        await server.stop()
        assert not server.running
        assert transport.closed
        assert len(server.manager) == 0

    @pytest.mark.asyncio
    async def test_stop_without_start(self, server):
        await server.stop()

    def test_mirror_disabled(self, tmp_path):
        server = SyncServer(make_settings(memory_dir=tmp_path, write_through=False))
        assert server.mirror is None
        assert isinstance(server.documents, DirectoryDocumentSource)


class BrokenHistory(StaticSessionSource):
    async def history(self, key, limit):
        raise SourceUnavailableError("upstream down")


class TestSessionHistory:
    @pytest.mark.asyncio
    async def test_returns_tail(self):
        history = [{"role": "user", "n": i} for i in range(60)]
        server = SyncServer(make_settings(), sessions=StaticSessionSource(histories={"s1": history}))
        conn, transport = await client(server)

        await server.handle_raw(conn, json.dumps({"type": "request", "resource": "session_history", "sessionKey": "s1"}))
        await server.handle_raw(conn, frame("request", resource="session_history", sessionKey="s1", limit=2))
        await settle()

        default, limited = transport.of_type("session_history")
        assert default["payload"]["sessionKey"] == "s1"
        assert len(default["payload"]["messages"]) == 50
        assert [m["n"] for m in limited["payload"]["messages"]] == [58, 59]
        await server.manager.close_all()

    @pytest.mark.asyncio
    async def test_source_failure_is_reported(self):
        server = SyncServer(make_settings(), sessions=BrokenHistory())
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="session_history", sessionKey="s1"))
        await settle()
        assert transport.types == ["error"]
        assert transport.frames[0]["payload"]["message"] == "Failed to get session history"
        assert conn.id in server.manager
        await server.manager.close_all()

    @pytest.mark.asyncio
    async def test_no_session_source(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="session_history", sessionKey="s1"))
        await settle()
        assert transport.last("error")["payload"]["message"] == "Failed to get session history"

    @pytest.mark.asyncio
    async def test_invalid_requests(self, server):
        conn, transport = await client(server)
        await server.handle_raw(conn, frame("request", resource="session_history"))
        await server.handle_raw(conn, frame("request", resource="session_history", sessionKey="s1", limit=0))
        await settle()
        missing, bad_limit = transport.of_type("error")
        assert "sessionKey is required" in missing["payload"]["message"]
        assert "limit" in bad_limit["payload"]["message"]


class TestListenerFailure:
    @pytest.mark.asyncio
    async def test_write_still_acknowledged(self, server):
        conn, transport = await client(server)

        def broken(event, document):
            raise RuntimeError("listener bug")

        server.store.set_listener(broken)
        await server.handle_raw(conn, frame("write_file", date="k", content="x"))
        await settle()
        assert transport.types == ["write_complete"]
        assert server.store.get("k").content == "x"
        assert conn.id in server.manager


class TestLogs:
    @pytest.mark.asyncio
    async def test_each_server_serves_its_own_logs(self, restore_logging):
        configure_logging(level="INFO", json_format=True)
        first = SyncServer(make_settings())
        second = SyncServer(make_settings())

        first_conn = await first.connect(FakeTransport())
        conn, transport = await client(second)
        await second.handle_raw(conn, frame("request", resource="logs"))
        await settle()

        served = transport.last("logs")["payload"]["logs"]
        assert {e.get("connection_id") for e in served if e["event"] == "client_connected"} == {conn.id}
        assert [e["connection_id"] for e in first.logs.snapshot()] == [first_conn.id]
        await first.manager.close_all()
        await second.manager.close_all()
