"""
Connection manager: the authoritative set of live connections.

Manifesto:
    Connections die in many ways (clean close, socket error, slow peer,
    silent network drop).  All of them end the same way: the connection is
    removed from the live set and from the subscription registry in one
    step, then closed.  After that no broadcast can reach it.

Heartbeat:
    Every ``heartbeat_interval`` seconds :meth:`sweep` runs once:

    1. a connection still flagged ``alive == False`` missed the previous
       challenge → it is evicted;
    2. every other connection is flagged ``alive = False`` and sent a
       ``ping`` challenge.

    A ``ping`` or ``pong`` from the client sets ``alive = True`` again
    (:meth:`mark_alive`).  A silent connection is therefore evicted between
    one and two intervals after it stops answering.

    ``run_heartbeat`` is a cancellable loop around ``sweep``; tests drive
    ``sweep`` directly instead of waiting on timers.

Tags:
    connections, heartbeat, liveness, asyncio, memsync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable

from memsync.core.errors import SyncError
from memsync.core.logging import get_logger
from memsync.core.timestamps import generate_client_id, now_ms
from memsync.sync import protocol
from memsync.sync.connection import Connection, Transport
from memsync.sync.registry import SubscriptionRegistry

__all__ = ["ConnectionManager"]

logger = get_logger(__name__)


class ConnectionManager:
    """Owns connections, their subscriptions, and the heartbeat.

    Example::

        manager = ConnectionManager(SubscriptionRegistry(), heartbeat_interval=30)
        conn = await manager.register(transport)
        ...
        await manager.remove(conn.id, reason="closed")
    """

    def __init__(
        self,
        registry: SubscriptionRegistry,
        *,
        heartbeat_interval: float = 30.0,
        send_timeout: float = 10.0,
        queue_size: int = 256,
        id_factory: Callable[[], str] = generate_client_id,
    ) -> None:
        self.registry = registry
        self.heartbeat_interval = heartbeat_interval
        self._send_timeout = send_timeout
        self._queue_size = queue_size
        self._id_factory = id_factory
        self._connections: dict[str, Connection] = {}
        self._lock = asyncio.Lock()

    # ── Membership ───────────────────────────────────────────────────

    async def register(self, transport: Transport) -> Connection:
        """Admit a new transport and start its writer."""
        async with self._lock:
            connection_id = self._id_factory()
            while connection_id in self._connections:
                connection_id = self._id_factory()
            connection = Connection(
                connection_id,
                transport,
                send_timeout=self._send_timeout,
                queue_size=self._queue_size,
                on_failure=self._on_connection_failure,
            )
            self._connections[connection_id] = connection
            self.registry.add(connection_id)
        connection.start()
        logger.info("client_connected", connection_id=connection_id, clients=len(self))
        return connection

    async def remove(self, connection_id: str, *, reason: str = "closed", flush: bool = False) -> bool:
        """Drop a connection from the live set and registry, then close it.

        Returns:
            False when the id was not live (already removed)
        """
        async with self._lock:
            connection = self._connections.pop(connection_id, None)
            if connection is None:
                return False
            self.registry.discard(connection_id)
        await connection.close(flush=flush)
        logger.info("client_removed", connection_id=connection_id, reason=reason, clients=len(self))
        return True

    async def _on_connection_failure(self, connection: Connection, error: SyncError) -> None:
        await self.remove(connection.id, reason=error.category.value.lower())

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def live(self) -> list[Connection]:
        """Snapshot of the live connections."""
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)

    def __contains__(self, connection_id: object) -> bool:
        return connection_id in self._connections

    # ── Liveness ─────────────────────────────────────────────────────

    def mark_alive(self, connection_id: str) -> None:
        connection = self._connections.get(connection_id)
        if connection is not None:
            connection.alive = True

    async def sweep(self) -> list[str]:
        """Run one heartbeat cycle; returns the ids that were evicted."""
        evicted = []
        challenge = protocol.encode_message(protocol.PING, {"timestamp": now_ms()})
        for connection in self.live():
            if not connection.alive:
                evicted.append(connection.id)
                continue
            connection.alive = False
            connection.enqueue(challenge)

        for connection_id in evicted:
            if await self.remove(connection_id, reason="heartbeat_timeout"):
                logger.warning("heartbeat_evicted", connection_id=connection_id)
        return evicted

    async def run_heartbeat(self, stop: asyncio.Event) -> None:
        """Call :meth:`sweep` every interval until ``stop`` is set."""
        logger.info("heartbeat_started", interval=self.heartbeat_interval)
        while not stop.is_set():
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.heartbeat_interval)
            except TimeoutError:
                pass
            else:
                break
            try:
                await self.sweep()
            except Exception:
                logger.exception("heartbeat_sweep_failed")
        logger.info("heartbeat_stopped")

    # ── Shutdown ─────────────────────────────────────────────────────

    async def close_all(self) -> None:
        """Gracefully flush and close every connection."""
        ids = list(self._connections)
        await asyncio.gather(
            *(self.remove(cid, reason="shutdown", flush=True) for cid in ids),
            return_exceptions=True,
        )
