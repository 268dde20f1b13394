"""
WebSocket endpoint - one coroutine per client.

    GET /ws    upgrade; then JSON frames in both directions

The coroutine only reads.  Outbound frames are written by the
connection's own writer task (see ``memsync.sync.connection``), so a slow
reader on this side never delays broadcasts to other clients.
"""

from __future__ import annotations

from fastapi import APIRouter, WebSocket

from memsync.core.logging import LogContext, get_logger
from memsync.sync.connection import WebSocketTransport
from memsync.sync.server import SyncServer

router = APIRouter()

logger = get_logger(__name__)


@router.websocket("/ws")
async def sync_socket(websocket: WebSocket) -> None:
    server: SyncServer = websocket.app.state.sync_server
    await websocket.accept()
    transport = WebSocketTransport(websocket)
    connection = await server.connect(transport)

    async with LogContext(connection_id=connection.id):
        logger.debug("socket_opened", peer=transport.peer)
        reason = "closed"
        try:
            while connection.id in server.manager:
                message = await websocket.receive()
                if message["type"] == "websocket.disconnect":
                    break
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes") or b""
                await server.handle_raw(connection, raw)
        except Exception:
            reason = "error"
            logger.exception("socket_failed")
        finally:
            await server.disconnect(connection.id, reason=reason)
