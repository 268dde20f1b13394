"""
In-memory Document Store - the single source of truth.

Manifesto:
    Many clients write the same dated documents concurrently.  The store
    guarantees that writes to one key are applied one at a time in the
    server's order, that readers never see half a write, and that every
    accepted write is announced exactly once.

    - **Per-key serialization:** one ``asyncio.Lock`` per key; different
      keys proceed concurrently
    - **No torn reads:** documents are frozen values swapped in whole
    - **Monotonic versions:** ``last_modified`` strictly increases per key
    - **Exactly-once notification:** the change listener runs before the
      write returns, while the key lock is still held, so notification
      order equals serialization order

Architecture:
    ::

        put(key, content)
            │
            ▼
        async with lock[key]:
            previous = docs.get(key)
            doc = Document(key, content, max(now, previous + 1))
            docs[key] = doc              ← atomic swap
            listener("file_change", doc) ← synchronous, exactly once
            │
            ▼
        return doc

Guardrails:
    ❌ DON'T: make the listener await network sends
    ✅ DO: enqueue and return (see ``BroadcastEngine``)

Tags:
    store, documents, concurrency, asyncio, locking, memsync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import asyncio
import re
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

from memsync.core.errors import DocumentExistsError, InvalidKeyError
from memsync.core.logging import get_logger
from memsync.core.models import Document
from memsync.core.timestamps import now_ms

__all__ = [
    "DocumentStore",
    "ChangeListener",
    "CommitHook",
    "PersistHook",
    "FILE_ADD",
    "FILE_CHANGE",
    "FILE_DELETE",
    "validate_key",
]

logger = get_logger(__name__)

FILE_ADD = "file_add"
FILE_CHANGE = "file_change"
FILE_DELETE = "file_delete"

ChangeListener = Callable[[str, Document], None]
CommitHook = Callable[[Document], None]
PersistHook = Callable[[str, str], Awaitable[Any]]

_KEY_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]{0,127}$")


def validate_key(key: str) -> str:
    """Return ``key`` if it is a non-empty, file-name-safe document key."""
    if not isinstance(key, str) or not _KEY_RE.match(key) or ".." in key:
        raise InvalidKeyError(str(key))
    return key


class DocumentStore:
    """Keyed documents with per-key write serialization.

    Example::

        store = DocumentStore()
        store.set_listener(lambda event, doc: print(event, doc.key))
        doc = await store.put("2026-02-21", "## Note\\nhello")
        # file_change 2026-02-21
        assert store.get("2026-02-21") == doc
    """

    def __init__(
        self,
        *,
        listener: ChangeListener | None = None,
        clock: Callable[[], int] = now_ms,
    ) -> None:
        self._documents: dict[str, Document] = {}
        self._locks: dict[str, asyncio.Lock] = {}
        self._listener = listener
        self._clock = clock

    def set_listener(self, listener: ChangeListener | None) -> None:
        self._listener = listener

    # ── Reads ────────────────────────────────────────────────────────

    def get(self, key: str) -> Document | None:
        return self._documents.get(key)

    def list(self) -> list[Document]:
        """All documents, most recent key first."""
        return [self._documents[k] for k in sorted(self._documents, reverse=True)]

    def keys(self) -> list[str]:
        return sorted(self._documents, reverse=True)

    def __len__(self) -> int:
        return len(self._documents)

    def __contains__(self, key: object) -> bool:
        return key in self._documents

    # ── Writes ───────────────────────────────────────────────────────

    async def put(
        self,
        key: str,
        content: str,
        *,
        persist: PersistHook | None = None,
        on_commit: CommitHook | None = None,
    ) -> Document:
        """Replace the content of ``key`` and announce ``file_change``.

        Args:
            key: Document key
            content: New full content
            persist: Awaited under the key lock before the swap (write-through)
            on_commit: Called after the swap, before the listener; lets the
                writer's acknowledgement precede the broadcast
        """
        validate_key(key)
        async with self._lock_for(key):
            if persist is not None:
                await persist(key, content)
            document = self._swap(key, content, self._clock())
            self._commit(on_commit, document)
            self._notify(FILE_CHANGE, document)
        return document

    async def create(
        self,
        key: str,
        content: str,
        *,
        persist: PersistHook | None = None,
        on_commit: CommitHook | None = None,
    ) -> Document:
        """Store ``content`` under a new ``key`` and announce ``file_add``.

        Raises:
            DocumentExistsError: ``key`` already holds a document
        """
        validate_key(key)
        async with self._lock_for(key):
            if key in self._documents:
                raise DocumentExistsError(key)
            if persist is not None:
                await persist(key, content)
            document = self._swap(key, content, self._clock())
            self._commit(on_commit, document)
            self._notify(FILE_ADD, document)
        return document

    async def delete(
        self,
        key: str,
        *,
        persist: Callable[[str], Awaitable[Any]] | None = None,
        on_commit: CommitHook | None = None,
        expected: Document | None = None,
    ) -> bool:
        """Remove ``key`` and announce ``file_delete``.

        Args:
            expected: Only delete if ``key`` still holds this exact document
                (an external removal must not drop a newer client write)

        Returns:
            False when ``key`` was not present, or no longer ``expected``
            (nothing is announced)
        """
        validate_key(key)
        async with self._lock_for(key):
            current = self._documents.get(key)
            if current is None or (expected is not None and current is not expected):
                return False
            if persist is not None:
                await persist(key)
            document = self._documents.pop(key)
            self._commit(on_commit, document)
            self._notify(FILE_DELETE, document)
        return True

    async def apply_external(
        self, key: str, content: str, last_modified: int
    ) -> Document | None:
        """Record a change detected in an external source.

        Returns None, announcing nothing, when the store already holds
        identical content (a write-through echo) or a version at least as
        new as ``last_modified``.  The source is read outside the key lock,
        so a client write committed in between must not be overwritten by
        the older copy.
        """
        validate_key(key)
        async with self._lock_for(key):
            previous = self._documents.get(key)
            if previous is not None and (
                previous.content == content or previous.last_modified >= last_modified
            ):
                return None
            document = self._swap(key, content, last_modified)
            self._notify(FILE_ADD if previous is None else FILE_CHANGE, document)
        return document

    def load(self, documents: Iterable[Document]) -> int:
        """Seed the store at startup without notifying the listener."""
        count = 0
        for document in documents:
            validate_key(document.key)
            self._documents[document.key] = document
            count += 1
        return count

    # ── Internals ────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    def _swap(self, key: str, content: str, candidate: int) -> Document:
        previous = self._documents.get(key)
        version = candidate if previous is None else max(candidate, previous.last_modified + 1)
        document = Document(key=key, content=content, last_modified=version)
        self._documents[key] = document
        return document

    @staticmethod
    def _commit(on_commit: CommitHook | None, document: Document) -> None:
        if on_commit is None:
            return
        try:
            on_commit(document)
        except Exception:
            logger.exception("store_commit_hook_failed", key=document.key)

    def _notify(self, event: str, document: Document) -> None:
        if self._listener is None:
            return
        try:
            self._listener(event, document)
        except Exception:
            # A failing listener must not undo an accepted write
            logger.exception("store_listener_failed", change=event, key=document.key)
