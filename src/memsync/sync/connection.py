"""
One client connection: identity, liveness flag and an outbound queue.

Manifesto:
    A slow or dead client must never slow down anyone else.  Nothing in
    the server writes to a socket directly; frames are put on the
    connection's own bounded queue and a dedicated writer task drains it
    with a per-send timeout.

    - **Non-blocking enqueue:** broadcast cost is O(subscribers), never O(network)
    - **Bounded:** a full queue or a send timeout is a transport failure
    - **FIFO:** frames reach the peer in the order they were enqueued
    - **Escalation:** failures are reported to the owner (the
      ``ConnectionManager``) which removes the connection

Architecture:
    ::

        enqueue(text) ──► asyncio.Queue(maxsize) ──► writer task
                               │ full                   │ wait_for(send, timeout)
                               ▼                        ▼ error / timeout
                          on_failure(conn, err)  ◄──────┘

    State machine::

        CONNECTED ──(error | close | heartbeat timeout)──► CLOSING ──► CLOSED

Tags:
    connection, websocket, backpressure, asyncio, memsync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Protocol, runtime_checkable

from starlette.websockets import WebSocket, WebSocketState

from memsync.core.errors import BackpressureError, SyncError, TransportError
from memsync.core.logging import get_logger
from memsync.core.timestamps import now_ms

__all__ = [
    "Connection",
    "ConnectionState",
    "Transport",
    "WebSocketTransport",
    "FailureCallback",
]

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    CONNECTED = "connected"
    CLOSING = "closing"
    CLOSED = "closed"


@runtime_checkable
class Transport(Protocol):
    """The two operations the sync core needs from a socket."""

    async def send_text(self, data: str) -> None:
        ...

    async def close(self, code: int = 1000) -> None:
        ...


class WebSocketTransport:
    """Adapts a Starlette/FastAPI ``WebSocket`` to :class:`Transport`."""

    def __init__(self, websocket: WebSocket) -> None:
        self._websocket = websocket

    @property
    def peer(self) -> str:
        client = self._websocket.client
        return f"{client.host}:{client.port}" if client else "unknown"

    async def send_text(self, data: str) -> None:
        await self._websocket.send_text(data)

    async def close(self, code: int = 1000) -> None:
        if self._websocket.application_state == WebSocketState.DISCONNECTED:
            return
        if self._websocket.client_state == WebSocketState.DISCONNECTED:
            return
        await self._websocket.close(code)


FailureCallback = Callable[["Connection", SyncError], Awaitable[None]]


class Connection:
    """A registered client.

    Created and owned by :class:`~memsync.sync.manager.ConnectionManager`;
    other components only call :meth:`enqueue`.
    """

    def __init__(
        self,
        connection_id: str,
        transport: Transport,
        *,
        send_timeout: float = 10.0,
        queue_size: int = 256,
        on_failure: FailureCallback | None = None,
    ) -> None:
        self.id = connection_id
        self.transport = transport
        self.state = ConnectionState.CONNECTED
        self.alive = True
        self.connected_at = now_ms()
        self.sent = 0
        self._send_timeout = send_timeout
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._on_failure = on_failure
        self._writer: asyncio.Task[None] | None = None
        self._escalation: asyncio.Task[None] | None = None
        self._close_started = False

    def __repr__(self) -> str:
        return f"Connection({self.id!r}, state={self.state.value})"

    @property
    def is_open(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def start(self) -> None:
        """Start the writer task (requires a running event loop)."""
        if self._writer is None:
            self._writer = asyncio.create_task(
                self._write_loop(), name=f"memsync-writer-{self.id}"
            )

    def enqueue(self, text: str) -> bool:
        """Queue one frame for sending; never blocks.

        Returns:
            False when the connection is not open or its queue is full
            (the latter also escalates the connection for removal)
        """
        if self.state is not ConnectionState.CONNECTED:
            return False
        try:
            self._queue.put_nowait(text)
        except asyncio.QueueFull:
            self._fail(BackpressureError("Outbound queue full").with_context(connection_id=self.id))
            return False
        return True

    async def close(self, *, flush: bool = False, code: int = 1000) -> None:
        """Enter CLOSING, optionally drain the queue, then close the transport.

        Idempotent.  ``flush`` waits at most one send timeout for queued
        frames to go out.
        """
        if self._close_started:
            return
        self._close_started = True
        self.state = ConnectionState.CLOSING

        writer = self._writer
        if flush and writer is not None and not writer.done():
            try:
                await asyncio.wait_for(self._queue.join(), timeout=self._send_timeout)
            except TimeoutError:
                logger.debug("flush_timed_out", connection_id=self.id, pending=self.pending)

        if writer is not None and writer is not asyncio.current_task():
            writer.cancel()
            await asyncio.gather(writer, return_exceptions=True)

        try:
            await asyncio.wait_for(self.transport.close(code), timeout=self._send_timeout)
        except Exception as e:
            logger.debug("transport_close_failed", connection_id=self.id, error=str(e))

        self.state = ConnectionState.CLOSED

    # ── Internals ────────────────────────────────────────────────────

    async def _write_loop(self) -> None:
        while True:
            text = await self._queue.get()
            try:
                await asyncio.wait_for(self.transport.send_text(text), timeout=self._send_timeout)
            except TimeoutError as e:
                self._fail(BackpressureError("Send timed out", cause=e).with_context(connection_id=self.id))
                return
            except Exception as e:
                self._fail(TransportError(f"Send failed: {e}", cause=e).with_context(connection_id=self.id))
                return
            finally:
                self._queue.task_done()
            self.sent += 1

    def _fail(self, error: SyncError) -> None:
        if self.state is not ConnectionState.CONNECTED:
            return
        self.state = ConnectionState.CLOSING
        logger.info("connection_failed", connection_id=self.id, **error.to_dict())
        if self._on_failure is not None:
            # Runs in its own task: the failure may be raised inside the writer,
            # and removal cancels the writer.
            self._escalation = asyncio.get_running_loop().create_task(
                self._on_failure(self, error), name=f"memsync-evict-{self.id}"
            )
