"""
Filesystem watcher for the documents directory.

When the operating system can push change events for ``memory_dir``, the
documents are kept in sync from those events and the slow documents poll
is not started.  When it cannot (no inotify/FSEvents, unsupported network
share), :meth:`DocumentWatcher.start` returns False and the detector falls
back to polling.

Architecture:
    ::

        watchdog Observer thread
            DocumentEventHandler.on_created/modified/deleted/moved
                │  key of a ``<key>.md`` file
                ▼
            loop.call_soon_threadsafe(queue.put_nowait, key)
                │
        event loop
            DocumentWatcher.run()
                wait for a key, debounce, drain the queue (one read per key)
                │
                ├─ file present ──► store.apply_external(key, content, mtime)
                └─ file missing ──► store.delete(key, expected=known)

    Every event results in a fresh read of the file, so a burst of writes
    by an editor collapses into one update carrying the final content.

Tags:
    watchdog, filesystem, change-detection, asyncio, memsync
"""

from __future__ import annotations

import asyncio
import os
from collections.abc import Callable
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from memsync.core.errors import InvalidKeyError, SyncError
from memsync.core.logging import get_logger
from memsync.core.store import DocumentStore
from memsync.sync.sources import DirectoryDocumentSource

__all__ = ["DocumentEventHandler", "DocumentWatcher"]

logger = get_logger(__name__)


class DocumentEventHandler(FileSystemEventHandler):
    """Reports the document key of every touched ``<key><suffix>`` file.

    Runs on the observer thread; ``notify`` must be thread-safe.
    """

    def __init__(self, suffix: str, notify: Callable[[str], None]) -> None:
        super().__init__()
        self.suffix = suffix
        self._notify = notify

    def key_for(self, path: str | bytes) -> str | None:
        name = os.path.basename(os.fsdecode(path))
        if name.startswith(".") or not name.endswith(self.suffix) or name == self.suffix:
            return None
        return name[: -len(self.suffix)]

    def _touch(self, path: str | bytes) -> None:
        key = self.key_for(path)
        if key is not None:
            self._notify(key)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._touch(event.src_path)

    def on_moved(self, event: FileSystemEvent) -> None:
        # Atomic saves land as a move from a temp file onto <key>.md
        if not event.is_directory:
            self._touch(event.src_path)
            self._touch(event.dest_path)


class DocumentWatcher:
    """Applies filesystem events for one document directory to the store."""

    def __init__(
        self,
        source: DirectoryDocumentSource,
        store: DocumentStore,
        *,
        debounce: float = 0.3,
    ) -> None:
        self._source = source
        self._store = store
        self.debounce = debounce
        self._queue: asyncio.Queue[str] = asyncio.Queue()
        self._observer: Any = None
        self.events = 0
        self.applied = 0

    @property
    def watching(self) -> bool:
        return self._observer is not None

    def start(self) -> bool:
        """Start the observer thread; False when events are unavailable."""
        loop = asyncio.get_running_loop()

        def notify(key: str) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(self._queue.put_nowait, key)

        handler = DocumentEventHandler(self._source.suffix, notify)
        observer = Observer()
        try:
            observer.schedule(handler, str(self._source.directory), recursive=False)
            observer.start()
        except OSError as e:
            logger.warning("watch_unavailable", directory=str(self._source.directory), error=str(e))
            return False
        self._observer = observer
        logger.info("watch_started", directory=str(self._source.directory))
        return True

    def notify(self, key: str) -> None:
        """Queue ``key`` for a re-read (event-loop thread only)."""
        self._queue.put_nowait(key)

    async def run(self, stop: asyncio.Event) -> None:
        """Apply queued keys until ``stop`` is set, then stop the observer."""
        try:
            while not stop.is_set():
                try:
                    key = await asyncio.wait_for(self._queue.get(), timeout=0.5)
                except TimeoutError:
                    continue
                await asyncio.sleep(self.debounce)
                keys = {key}
                while not self._queue.empty():
                    keys.add(self._queue.get_nowait())
                for pending in sorted(keys):
                    await self.apply(pending)
        finally:
            await self.close()

    async def apply(self, key: str) -> bool:
        """Re-read ``key`` and reconcile the store; True when it changed."""
        self.events += 1
        known = self._store.get(key)
        try:
            document = await self._source.read(key)
            if document is None:
                changed = known is not None and await self._store.delete(key, expected=known)
            else:
                changed = await self._store.apply_external(key, document.content, document.last_modified) is not None
        except InvalidKeyError:
            logger.debug("external_key_skipped", key=key)
            return False
        except SyncError as e:
            logger.warning("watch_read_failed", key=key, **e.to_dict())
            return False
        if changed:
            self.applied += 1
            logger.info("document_reconciled", key=key, removed=document is None)
        return changed

    async def close(self) -> None:
        observer, self._observer = self._observer, None
        if observer is None:
            return
        observer.stop()
        await asyncio.to_thread(observer.join, 2.0)
        logger.info("watch_stopped", events=self.events, applied=self.applied)

    def stats(self) -> dict[str, Any]:
        return {"watching": self.watching, "events": self.events, "applied": self.applied}
