"""
Change detector: fingerprint-gated polling of external sources.

Manifesto:
    Some sources cannot tell us when they change (a folder on a network
    share, an upstream HTTP API).  For those we poll, and we only broadcast
    when a cheap fingerprint of the source differs from the last one, so
    an idle source costs a ``stat`` per tick and no client traffic.

    Polling is the fallback.  A documents directory whose filesystem can
    push change events is handed to a ``DocumentWatcher`` instead, and the
    documents loop only runs when the watcher cannot start.

Architecture:
    ::

        PollLoop.tick()
            snapshot()  ──error──► log "poll_failed", keep last fingerprint
                │
            fingerprint(snapshot)
                │ same as last ──► nothing
                ▼ different
            on_change(snapshot, previous)
                │ ok
            last = (fingerprint, snapshot)

    The fingerprint advances only after ``on_change`` succeeds, so a failed
    tick is retried on the next one instead of being lost.

    Two loops with different cadences:

    - **sessions** (fast, ~5s): cheap presence data →
      ``session_open`` / ``session_close`` per key, then full ``sessions``
    - **documents** (slow, ~10-30s): ``stat`` versions; changed keys are
      read and applied to the store, which broadcasts
      ``file_add`` / ``file_change`` / ``file_delete``

Tags:
    polling, change-detection, fingerprint, asyncio, memsync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import Any, Generic, TypeVar

from memsync.core.errors import InvalidKeyError
from memsync.core.hashing import fingerprint_versions
from memsync.core.logging import get_logger
from memsync.core.models import Document, Session
from memsync.core.store import DocumentStore
from memsync.sync import protocol
from memsync.sync.broadcast import BroadcastEngine
from memsync.sync.sources import DocumentSource, SessionSource
from memsync.sync.watcher import DocumentWatcher

__all__ = ["PollLoop", "ChangeDetector"]

logger = get_logger(__name__)

T = TypeVar("T")


class PollLoop(Generic[T]):
    """snapshot → fingerprint → compare → on_change, once per interval."""

    def __init__(
        self,
        name: str,
        interval: float,
        snapshot: Callable[[], Awaitable[T]],
        fingerprint: Callable[[T], str],
        on_change: Callable[[T, T | None], Awaitable[None]],
    ) -> None:
        self.name = name
        self.interval = interval
        self._snapshot = snapshot
        self._fingerprint = fingerprint
        self._on_change = on_change
        self.last_fingerprint: str | None = None
        self.last_snapshot: T | None = None
        self.ticks = 0
        self.changes = 0
        self.failures = 0

    async def tick(self) -> bool:
        """Poll once; returns True when a change was detected and applied."""
        self.ticks += 1
        try:
            current = await self._snapshot()
            fingerprint = self._fingerprint(current)
            if fingerprint == self.last_fingerprint:
                return False
            await self._on_change(current, self.last_snapshot)
        except Exception as e:
            self.failures += 1
            logger.warning("poll_failed", loop=self.name, error=str(e), failures=self.failures)
            return False

        self.last_fingerprint = fingerprint
        self.last_snapshot = current
        self.changes += 1
        return True

    async def run(self, stop: asyncio.Event) -> None:
        """Tick immediately, then every ``interval`` until ``stop`` is set."""
        logger.info("poll_started", loop=self.name, interval=self.interval)
        while not stop.is_set():
            await self.tick()
            try:
                await asyncio.wait_for(stop.wait(), timeout=self.interval)
            except TimeoutError:
                continue
        logger.info("poll_stopped", loop=self.name, ticks=self.ticks)

    def stats(self) -> dict[str, Any]:
        return {
            "interval": self.interval,
            "ticks": self.ticks,
            "changes": self.changes,
            "failures": self.failures,
        }


class ChangeDetector:
    """Runs the session and document poll loops for one server."""

    def __init__(
        self,
        engine: BroadcastEngine,
        store: DocumentStore,
        *,
        sessions: SessionSource | None = None,
        documents: DocumentSource | None = None,
        watcher: DocumentWatcher | None = None,
        fast_interval: float = 5.0,
        slow_interval: float = 10.0,
    ) -> None:
        self._engine = engine
        self._store = store
        self._session_source = sessions
        self._document_source = documents
        self.watcher = watcher
        self.current_sessions: list[Session] = []
        self._on_disk: dict[str, Document] = {}

        self.loops: list[PollLoop[Any]] = []
        if sessions is not None:
            self.sessions_loop: PollLoop[list[Session]] | None = PollLoop(
                "sessions",
                fast_interval,
                sessions.sessions,
                lambda found: fingerprint_versions({s.key: s.updated_at for s in found}),
                self._sessions_changed,
            )
            self.loops.append(self.sessions_loop)
        else:
            self.sessions_loop = None

        if documents is not None:
            self.documents_loop: PollLoop[dict[str, int]] | None = PollLoop(
                "documents",
                slow_interval,
                documents.versions,
                fingerprint_versions,
                self._documents_changed,
            )
            self.loops.append(self.documents_loop)
        else:
            self.documents_loop = None

    def sessions_snapshot(self) -> dict[str, Any]:
        return {"sessions": [s.to_wire() for s in self.current_sessions]}

    def start(self, stop: asyncio.Event) -> list[asyncio.Task[None]]:
        """Start the poll loops; documents are watched instead when possible."""
        tasks = []
        for loop in self.loops:
            if loop is self.documents_loop and self.watcher is not None and self.watcher.start():
                tasks.append(asyncio.create_task(self.watcher.run(stop), name="memsync-watch-documents"))
                continue
            tasks.append(asyncio.create_task(loop.run(stop), name=f"memsync-poll-{loop.name}"))
        return tasks

    def stats(self) -> dict[str, Any]:
        stats: dict[str, Any] = {loop.name: loop.stats() for loop in self.loops}
        if self.watcher is not None:
            stats["watch"] = self.watcher.stats()
        return stats

    # ── Change handlers ──────────────────────────────────────────────

    async def _sessions_changed(self, current: list[Session], previous: list[Session] | None) -> None:
        before = {s.key for s in (previous if previous is not None else self.current_sessions)}
        after = {s.key for s in current}
        self.current_sessions = list(current)

        for session in current:
            if session.key not in before:
                self._engine.publish(protocol.SESSIONS, protocol.SESSION_OPEN, session.to_wire())
        for key in sorted(before - after):
            self._engine.publish(protocol.SESSIONS, protocol.SESSION_CLOSE, {"key": key})

        self._engine.publish(protocol.SESSIONS, protocol.SESSIONS, self.sessions_snapshot())
        logger.info("sessions_updated", active=len(current))

    async def _documents_changed(self, current: dict[str, int], previous: dict[str, int] | None) -> None:
        source = self._document_source
        if source is None:
            return
        applied = 0
        for key in sorted(current):
            if previous is not None and previous.get(key) == current[key]:
                continue
            document = await source.read(key)
            if document is None:
                continue
            try:
                if await self._store.apply_external(key, document.content, document.last_modified):
                    applied += 1
            except InvalidKeyError:
                logger.debug("external_key_skipped", key=key)
                continue
            stored = self._store.get(key)
            if stored is not None and stored.content == document.content:
                self._on_disk[key] = stored

        removed = sorted(set(previous or ()) - set(current))
        for key in removed:
            # Only the document last matched to disk; a newer client write stays
            seen = self._on_disk.pop(key, None)
            if seen is not None:
                await self._store.delete(key, expected=seen)

        if applied or removed:
            logger.info("documents_reconciled", changed=applied, removed=len(removed))
