"""
Broadcast engine: channel-scoped fan-out.

Manifesto:
    A publish turns one state change into one frame, encoded once, and puts
    it on the outbound queue of every live connection subscribed to the
    channel.  Enqueueing never blocks, so a stuck client only hurts itself.

    - **Channel-scoped:** only subscribers of the channel receive the frame
    - **Snapshot iteration:** subscribers are copied before iterating
    - **Ordered per channel:** publishes are enqueued in call order on one
      event loop, and each connection drains its queue FIFO
    - **Direct-write echo:** every accepted store write is published
      unconditionally; fingerprint gating is only for polled sources
      (see ``memsync.sync.detector``)

Snapshots:
    ``push_snapshot(conn, name)`` sends the current state of one channel or
    resource to a single connection.  Providers for ``files``, ``tasks``
    and ``memories`` are built in.  The server registers the rest
    (``sessions``, ``logs``, ``status``).

Tags:
    broadcast, pubsub, channels, fan-out, memsync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Callable
from typing import Any

from memsync.core.logging import get_logger
from memsync.core.models import Document, document_to_wire
from memsync.core.parser import parse_document
from memsync.core.store import FILE_DELETE, DocumentStore
from memsync.sync import protocol
from memsync.sync.connection import Connection
from memsync.sync.manager import ConnectionManager

__all__ = ["BroadcastEngine", "SnapshotProvider"]

logger = get_logger(__name__)

SnapshotProvider = Callable[[], dict[str, Any]]


class BroadcastEngine:
    """Publishes frames to channel subscribers and pushes snapshots.

    Example::

        engine = BroadcastEngine(manager, store)
        store.set_listener(engine.document_changed)
        engine.publish("sessions", "sessions", {"sessions": []})
    """

    def __init__(self, manager: ConnectionManager, store: DocumentStore) -> None:
        self._manager = manager
        self._store = store
        self._providers: dict[str, SnapshotProvider] = {
            protocol.FILES: self.files_snapshot,
            protocol.TASKS: self.tasks_snapshot,
            protocol.MEMORIES: self.memories_snapshot,
        }
        self.published: Counter[str] = Counter()

    # ── Fan-out ──────────────────────────────────────────────────────

    def publish(self, channel: str, message_type: str, payload: dict[str, Any]) -> int:
        """Enqueue one frame to every live subscriber of ``channel``.

        Returns:
            Number of connections the frame was queued for
        """
        subscriber_ids = self._manager.registry.subscribers(channel)
        if not subscriber_ids:
            return 0
        frame = protocol.encode_message(message_type, payload)
        delivered = 0
        for connection_id in subscriber_ids:
            connection = self._manager.get(connection_id)
            if connection is not None and connection.enqueue(frame):
                delivered += 1
        self.published[channel] += 1
        logger.debug("published", channel=channel, type=message_type, delivered=delivered)
        return delivered

    def has_subscribers(self, channel: str) -> bool:
        return bool(self._manager.registry.subscribers(channel))

    def send(self, connection: Connection, message_type: str, payload: dict[str, Any] | None = None) -> bool:
        """Enqueue one frame to a single connection."""
        return connection.enqueue(protocol.encode_message(message_type, payload))

    # ── Snapshots ────────────────────────────────────────────────────

    def register_snapshot(self, name: str, provider: SnapshotProvider) -> None:
        self._providers[name] = provider

    def has_snapshot(self, name: str) -> bool:
        return name in self._providers

    def snapshot(self, name: str) -> dict[str, Any] | None:
        provider = self._providers.get(name)
        return provider() if provider is not None else None

    def push_snapshot(self, connection: Connection, name: str) -> bool:
        """Send the current state of ``name`` to ``connection`` only.

        Channels without a provider push nothing and return False.
        """
        payload = self.snapshot(name)
        if payload is None:
            return False
        return self.send(connection, name, payload)

    def files_snapshot(self) -> dict[str, Any]:
        return {"files": [document_to_wire(d) for d in self._store.list()]}

    def tasks_snapshot(self) -> dict[str, Any]:
        tasks = []
        for document in self._store.list():
            found, _ = parse_document(document.key, document.content)
            tasks.extend(t.to_wire() for t in found)
        return {"tasks": tasks}

    def memories_snapshot(self) -> dict[str, Any]:
        memories = []
        for document in self._store.list():
            _, found = parse_document(document.key, document.content)
            memories.extend(m.to_wire() for m in found)
        return {"memories": memories}

    # ── Store listener ───────────────────────────────────────────────

    def document_changed(self, event: str, document: Document) -> None:
        """Fan out one store mutation.

        ``file_add``/``file_change`` carry the full ``file`` object,
        ``file_delete`` carries the key.  Derived channels (``tasks``,
        ``memories``) get a refreshed snapshot when anyone listens.
        """
        if event == FILE_DELETE:
            self.publish(protocol.FILES, event, {"date": document.key})
        else:
            self.publish(protocol.FILES, event, {"file": document_to_wire(document)})

        for channel in (protocol.TASKS, protocol.MEMORIES):
            if self.has_subscribers(channel):
                self.publish(channel, channel, self._providers[channel]())
