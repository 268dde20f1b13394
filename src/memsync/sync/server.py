"""
SyncServer - composition root and message router of the sync core.

Manifesto:
    One object owns one server's state: the document store, the
    subscription registry, the connection manager, the broadcast engine and
    the change detector.  Nothing lives in module globals, so two servers
    can run side by side in one test process.

Lifecycle:
    ::

        server = SyncServer(settings)
        await server.start()      # seed from memory_dir, start heartbeat, polls, watcher
        conn = await server.connect(transport)
        await server.handle_raw(conn, '{"type": "subscribe", ...}')
        await server.disconnect(conn.id)
        await server.stop()       # stop loops, flush + close connections

Message handling:
    ==============  =====================================================
    subscribe       add channels, ack ``subscribed``, snapshot per new channel
    unsubscribe     remove channels, ack ``unsubscribed``
    request         one-shot snapshot of a resource to the requester;
                    ``session_history`` returns a transcript tail
    write_file      store.put → ``write_complete`` to sender, then
                    ``file_change`` to ``files`` subscribers
    create_file     store.create → ``create_complete``, then ``file_add``
    delete_file     store.delete → ``delete_complete``, then ``file_delete``
    ping / pong     liveness acknowledgement (``ping`` is answered ``pong``)
    ==============  =====================================================

    Malformed frames, unknown types and unknown resources are answered
    with ``error``; the connection stays open.

Tags:
    server, composition-root, websocket, routing, memsync

Doc-Types:
    - API Reference
    - Protocol Reference
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import Any

from memsync import __version__
from memsync.core.errors import DocumentExistsError, InvalidKeyError, ProtocolError, SyncError, UnknownMessageError, UnknownResourceError
from memsync.core.logging import LogContext, RecentLogBuffer, get_logger
from memsync.core.models import Document, document_to_wire
from memsync.core.settings import SyncSettings
from memsync.core.store import DocumentStore, validate_key
from memsync.core.timestamps import now_ms
from memsync.sync import protocol
from memsync.sync.broadcast import BroadcastEngine
from memsync.sync.connection import Connection, Transport
from memsync.sync.detector import ChangeDetector
from memsync.sync.manager import ConnectionManager
from memsync.sync.protocol import (
    ClientMessage,
    CreateFilePayload,
    DeleteFilePayload,
    RequestPayload,
    SubscribePayload,
    WriteFilePayload,
    decode_message,
    parse_payload,
)
from memsync.sync.registry import SubscriptionRegistry
from memsync.sync.sources import (
    DirectoryDocumentSource,
    DirectorySessionSource,
    HttpSessionSource,
    SessionSource,
)
from memsync.sync.watcher import DocumentWatcher

__all__ = ["SyncServer", "default_template"]

logger = get_logger(__name__)

Handler = Callable[[Connection, ClientMessage], Awaitable[None]]


def default_template(key: str) -> str:
    """Content of a document created without a template."""
    return f"# {key}\n\n## Notes\n\n\n## Tasks\n\n- [ ] Task 1\n"


def build_session_source(settings: SyncSettings) -> SessionSource | None:
    """Upstream HTTP endpoint first, workspace transcripts second."""
    if settings.sessions_url:
        return HttpSessionSource(settings.sessions_url)
    if settings.workspace_dir is not None:
        return DirectorySessionSource(settings.workspace_dir)
    return None


class SyncServer:
    """One real-time sync server instance."""

    def __init__(
        self,
        settings: SyncSettings | None = None,
        *,
        store: DocumentStore | None = None,
        documents: DirectoryDocumentSource | None = None,
        sessions: SessionSource | None = None,
    ) -> None:
        self.settings = settings or SyncSettings()
        self.logs = RecentLogBuffer(self.settings.log_buffer_size)
        self.store = store or DocumentStore()
        self.registry = SubscriptionRegistry()
        self.manager = ConnectionManager(
            self.registry,
            heartbeat_interval=self.settings.heartbeat_interval,
            send_timeout=self.settings.send_timeout,
            queue_size=self.settings.outbound_queue_size,
        )
        self.engine = BroadcastEngine(self.manager, self.store)
        self.store.set_listener(self.engine.document_changed)

        if documents is None and self.settings.memory_dir is not None:
            documents = DirectoryDocumentSource(self.settings.memory_dir)
        if sessions is None:
            sessions = build_session_source(self.settings)
        self.documents = documents
        self.sessions = sessions
        self.mirror = documents if self.settings.write_through else None
        watcher = None
        if documents is not None and self.settings.watch_documents:
            watcher = DocumentWatcher(documents, self.store, debounce=self.settings.watch_debounce)

        self.detector = ChangeDetector(
            self.engine,
            self.store,
            sessions=sessions,
            documents=documents,
            watcher=watcher,
            fast_interval=self.settings.fast_poll_interval,
            slow_interval=self.settings.slow_poll_interval,
        )
        self.engine.register_snapshot(protocol.SESSIONS, self.detector.sessions_snapshot)
        self.engine.register_snapshot(protocol.LOGS, lambda: {"logs": self.logs.snapshot()})
        self.engine.register_snapshot(protocol.STATUS, self.status)

        self._handlers: dict[str, Handler] = {
            protocol.SUBSCRIBE: self._on_subscribe,
            protocol.UNSUBSCRIBE: self._on_unsubscribe,
            protocol.REQUEST: self._on_request,
            protocol.WRITE_FILE: self._on_write_file,
            protocol.CREATE_FILE: self._on_create_file,
            protocol.DELETE_FILE: self._on_delete_file,
            protocol.PING: self._on_ping,
            protocol.PONG: self._on_pong,
        }
        self._stop: asyncio.Event | None = None
        self._tasks: list[asyncio.Task[None]] = []
        self._started_monotonic = time.monotonic()

    # ── Lifecycle ────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._stop is not None and not self._stop.is_set()

    async def start(self) -> None:
        """Seed the store and start the heartbeat, poll loops and watcher."""
        if self.running:
            return
        self._stop = asyncio.Event()
        self._started_monotonic = time.monotonic()

        # Background tasks inherit this server's log buffer
        with self.logs.capture():
            if self.documents is not None:
                await self._seed(self.documents)

            self._tasks = [
                asyncio.create_task(self.manager.run_heartbeat(self._stop), name="memsync-heartbeat"),
                *self.detector.start(self._stop),
            ]
            logger.info(
                "server_started",
                files=len(self.store),
                memory_dir=str(self.documents.directory) if self.documents else None,
                heartbeat_interval=self.settings.heartbeat_interval,
            )

    async def _seed(self, documents: DirectoryDocumentSource) -> None:
        try:
            found = await documents.load_all()
        except SyncError as e:
            logger.warning("seed_failed", **e.to_dict())
            return
        valid = []
        for document in found:
            try:
                valid.append(Document(validate_key(document.key), document.content, document.last_modified))
            except InvalidKeyError:
                logger.debug("seed_key_skipped", key=document.key)
        self.store.load(valid)
        logger.info("store_seeded", files=len(valid))

    async def stop(self) -> None:
        """Stop background loops, then flush and close every connection."""
        if self._stop is None:
            return
        self._stop.set()
        with self.logs.capture():
            if self._tasks:
                done, pending = await asyncio.wait(self._tasks, timeout=self.settings.send_timeout)
                for task in pending:
                    task.cancel()
                await asyncio.gather(*pending, return_exceptions=True)
            self._tasks = []
            await self.manager.close_all()
            if self.sessions is not None:
                await self.sessions.close()
            logger.info("server_stopped")

    # ── Connections ──────────────────────────────────────────────────

    async def connect(self, transport: Transport) -> Connection:
        """Register a transport and greet it with ``connected``."""
        with self.logs.capture():
            connection = await self.manager.register(transport)
        self.engine.send(
            connection,
            protocol.CONNECTED,
            {
                "clientId": connection.id,
                "message": "Connected to memsync",
                "fileCount": len(self.store),
                "timestamp": now_ms(),
            },
        )
        return connection

    async def disconnect(self, connection_id: str, *, reason: str = "closed") -> None:
        with self.logs.capture():
            await self.manager.remove(connection_id, reason=reason)

    async def handle_raw(self, connection: Connection, raw: str | bytes) -> None:
        """Decode and dispatch one inbound frame.

        Protocol-level problems are answered with ``error``; the
        connection stays open.
        """
        with self.logs.capture(), LogContext(connection_id=connection.id):
            try:
                await self.dispatch(connection, decode_message(raw))
            except ProtocolError as e:
                logger.info("protocol_error", error=e.message)
                self.engine.send(connection, protocol.ERROR, {"message": e.message})

    async def dispatch(self, connection: Connection, message: ClientMessage) -> None:
        handler = self._handlers.get(message.type)
        if handler is None:
            raise UnknownMessageError(message.type)
        logger.debug("message_received", type=message.type)
        await handler(connection, message)

    def status(self) -> dict[str, Any]:
        return {
            "status": "healthy",
            "uptime": round(time.monotonic() - self._started_monotonic, 3),
            "connectedClients": len(self.manager),
            "fileCount": len(self.store),
            "version": __version__,
            "polling": self.detector.stats(),
            "timestamp": now_ms(),
        }

    # ── Handlers ─────────────────────────────────────────────────────

    async def _on_subscribe(self, connection: Connection, message: ClientMessage) -> None:
        payload = parse_payload(SubscribePayload, message)
        added = self.registry.subscribe_ordered(connection.id, payload.channels)
        self.engine.send(
            connection,
            protocol.SUBSCRIBED,
            {"channels": self.registry.ordered_channels_of(connection.id)},
        )
        for channel in added:
            self.engine.push_snapshot(connection, channel)

    async def _on_unsubscribe(self, connection: Connection, message: ClientMessage) -> None:
        payload = parse_payload(SubscribePayload, message)
        self.registry.unsubscribe(connection.id, payload.channels)
        self.engine.send(
            connection,
            protocol.UNSUBSCRIBED,
            {"channels": self.registry.ordered_channels_of(connection.id)},
        )

    async def _on_request(self, connection: Connection, message: ClientMessage) -> None:
        payload = parse_payload(RequestPayload, message)
        if payload.resource == protocol.FILE:
            if not payload.date:
                raise ProtocolError("Invalid request payload: date is required for file")
            document = self.store.get(payload.date)
            self.engine.send(
                connection,
                protocol.FILE,
                {"date": payload.date, "file": document_to_wire(document) if document else None},
            )
            return
        if payload.resource == protocol.SESSION_HISTORY:
            await self._send_session_history(connection, payload)
            return
        if not self.engine.push_snapshot(connection, payload.resource):
            raise UnknownResourceError(payload.resource)

    async def _send_session_history(self, connection: Connection, payload: RequestPayload) -> None:
        if not payload.session_key:
            raise ProtocolError("Invalid request payload: sessionKey is required for session_history")
        if self.sessions is None:
            logger.info("session_history_unavailable", session_key=payload.session_key)
            self.engine.send(connection, protocol.ERROR, {"message": "Failed to get session history"})
            return
        try:
            messages = await self.sessions.history(payload.session_key, payload.limit)
        except SyncError as e:
            logger.warning("session_history_failed", session_key=payload.session_key, **e.to_dict())
            self.engine.send(connection, protocol.ERROR, {"message": "Failed to get session history"})
            return
        self.engine.send(
            connection,
            protocol.SESSION_HISTORY,
            {"sessionKey": payload.session_key, "messages": messages},
        )

    async def _on_write_file(self, connection: Connection, message: ClientMessage) -> None:
        payload = parse_payload(WriteFilePayload, message)
        persisted: bool | None = None

        async def persist(key: str, content: str) -> None:
            nonlocal persisted
            persisted = await self.mirror.write(key, content)

        def acknowledge(document: Document) -> None:
            self.engine.send(
                connection,
                protocol.WRITE_COMPLETE,
                {
                    "date": document.key,
                    "success": True,
                    "lastModified": document.last_modified,
                    "persisted": persisted,
                },
            )

        document = await self.store.put(
            payload.date,
            payload.content,
            persist=persist if self.mirror is not None else None,
            on_commit=acknowledge,
        )
        logger.info("document_written", key=document.key, size=len(document.content), persisted=persisted)

    async def _on_create_file(self, connection: Connection, message: ClientMessage) -> None:
        payload = parse_payload(CreateFilePayload, message)
        content = payload.template or default_template(payload.date)

        def acknowledge(document: Document) -> None:
            self.engine.send(connection, protocol.CREATE_COMPLETE, {"date": document.key, "success": True})

        try:
            await self.store.create(
                payload.date,
                content,
                persist=self.mirror.write if self.mirror is not None else None,
                on_commit=acknowledge,
            )
        except DocumentExistsError as e:
            self.engine.send(
                connection,
                protocol.CREATE_COMPLETE,
                {"date": payload.date, "success": False, "error": e.message},
            )
            return
        logger.info("document_created", key=payload.date)

    async def _on_delete_file(self, connection: Connection, message: ClientMessage) -> None:
        payload = parse_payload(DeleteFilePayload, message)

        def acknowledge(document: Document) -> None:
            self.engine.send(connection, protocol.DELETE_COMPLETE, {"date": document.key, "success": True})

        deleted = await self.store.delete(
            payload.date,
            persist=self.mirror.remove if self.mirror is not None else None,
            on_commit=acknowledge,
        )
        if not deleted:
            self.engine.send(
                connection,
                protocol.DELETE_COMPLETE,
                {"date": payload.date, "success": False, "error": f"Document not found: {payload.date}"},
            )
            return
        logger.info("document_deleted", key=payload.date)

    async def _on_ping(self, connection: Connection, message: ClientMessage) -> None:
        self.manager.mark_alive(connection.id)
        self.engine.send(connection, protocol.PONG, {"timestamp": now_ms()})

    async def _on_pong(self, connection: Connection, message: ClientMessage) -> None:
        self.manager.mark_alive(connection.id)
