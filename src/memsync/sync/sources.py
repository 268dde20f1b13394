"""
External sources read by the change detector and the watcher.

Document sources:
    ``DirectoryDocumentSource`` - a folder of ``<key>.md`` files.  Snapshots
    are cheap (``stat`` only, ``key -> mtime millis``); content is read only
    for keys whose version changed.  It also serves as the write-through
    mirror for accepted client writes.

Session sources:
    ``DirectorySessionSource`` - ``*.jsonl`` transcripts in a workspace folder
    ``HttpSessionSource``      - an upstream ``GET /api/sessions`` endpoint
                                 (history at ``/api/sessions/<key>/history``)
    ``StaticSessionSource``    - fixed list (no upstream configured, tests)

All blocking filesystem calls run in a worker thread via
``asyncio.to_thread`` so a slow disk never stalls the event loop.  Every
failure surfaces as :class:`~memsync.core.errors.SourceUnavailableError`.

Tags:
    sources, filesystem, httpx, polling, memsync
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from collections import deque
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from memsync.core.errors import SourceUnavailableError
from memsync.core.logging import get_logger
from memsync.core.models import Document, Session

__all__ = [
    "DocumentSource",
    "SessionSource",
    "DirectoryDocumentSource",
    "DirectorySessionSource",
    "HttpSessionSource",
    "StaticSessionSource",
]

logger = get_logger(__name__)


class DocumentSource(Protocol):
    async def versions(self) -> dict[str, int]:
        ...

    async def read(self, key: str) -> Document | None:
        ...


class SessionSource(Protocol):
    async def sessions(self) -> list[Session]:
        ...

    async def history(self, key: str, limit: int) -> list[dict[str, Any]]:
        ...

    async def close(self) -> None:
        ...


# ── Documents ────────────────────────────────────────────────────────────


def _mtime_ms(path: Path) -> int:
    return int(path.stat().st_mtime * 1000)


class DirectoryDocumentSource:
    """Markdown documents stored as ``<directory>/<key>.md``."""

    suffix = ".md"

    def __init__(self, directory: str | os.PathLike[str]) -> None:
        self.directory = Path(directory).expanduser()

    def __repr__(self) -> str:
        return f"DirectoryDocumentSource({str(self.directory)!r})"

    def path_for(self, key: str) -> Path:
        return self.directory / f"{key}{self.suffix}"

    async def versions(self) -> dict[str, int]:
        """``key -> mtime millis`` for every document in the directory."""
        try:
            return await asyncio.to_thread(self._scan)
        except OSError as e:
            raise SourceUnavailableError(
                f"Cannot list {self.directory}: {e}", cause=e
            ).with_context(source="directory") from e

    def _scan(self) -> dict[str, int]:
        found = {}
        with os.scandir(self.directory) as entries:
            for entry in entries:
                if entry.is_file() and entry.name.endswith(self.suffix):
                    found[entry.name[: -len(self.suffix)]] = int(entry.stat().st_mtime * 1000)
        return found

    async def read(self, key: str) -> Document | None:
        """Read one document; None when it vanished between scan and read."""
        path = self.path_for(key)
        try:
            return await asyncio.to_thread(self._read, key, path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise SourceUnavailableError(f"Cannot read {path}: {e}", cause=e) from e

    @staticmethod
    def _read(key: str, path: Path) -> Document:
        content = path.read_text(encoding="utf-8")
        return Document(key=key, content=content, last_modified=_mtime_ms(path))

    async def load_all(self) -> list[Document]:
        """Read every document (startup seed); creates the directory if needed."""
        await asyncio.to_thread(self.directory.mkdir, parents=True, exist_ok=True)
        documents = []
        for key in sorted(await self.versions()):
            document = await self.read(key)
            if document is not None:
                documents.append(document)
        return documents

    async def write(self, key: str, content: str) -> bool:
        """Mirror one document to disk; returns False (and logs) on failure."""
        try:
            await asyncio.to_thread(self._write, self.path_for(key), content)
        except OSError as e:
            logger.warning("mirror_write_failed", key=key, error=str(e))
            return False
        return True

    def _write(self, path: Path, content: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=self.directory, prefix=".memsync-", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(content)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    async def remove(self, key: str) -> bool:
        try:
            await asyncio.to_thread(self.path_for(key).unlink, missing_ok=True)
        except OSError as e:
            logger.warning("mirror_remove_failed", key=key, error=str(e))
            return False
        return True


# ── Sessions ─────────────────────────────────────────────────────────────


class StaticSessionSource:
    """A fixed, in-memory list of sessions."""

    def __init__(
        self,
        sessions: Iterable[Session] = (),
        histories: Mapping[str, list[dict[str, Any]]] | None = None,
    ) -> None:
        self._sessions = list(sessions)
        self._histories = dict(histories or {})

    def set(self, sessions: Iterable[Session]) -> None:
        self._sessions = list(sessions)

    async def sessions(self) -> list[Session]:
        return list(self._sessions)

    async def history(self, key: str, limit: int) -> list[dict[str, Any]]:
        return list(self._histories.get(key, []))[-limit:]

    async def close(self) -> None:
        return None


class DirectorySessionSource:
    """Session transcripts (``*.jsonl``) in a workspace directory."""

    def __init__(self, directory: str | os.PathLike[str], *, limit: int = 20) -> None:
        self.directory = Path(directory).expanduser()
        self.limit = limit

    async def sessions(self) -> list[Session]:
        try:
            return await asyncio.to_thread(self._scan)
        except OSError as e:
            raise SourceUnavailableError(f"Cannot list {self.directory}: {e}", cause=e) from e

    def _scan(self) -> list[Session]:
        found = []
        for path in self.directory.glob("*.jsonl"):
            key = path.stem
            found.append(
                Session(
                    key=key,
                    kind="session",
                    display_name=key.split("-")[-1] or key,
                    updated_at=_mtime_ms(path),
                )
            )
        found.sort(key=lambda s: (-(s.updated_at or 0), s.key))
        return found[: self.limit]

    async def history(self, key: str, limit: int) -> list[dict[str, Any]]:
        """The last ``limit`` JSON records of ``<key>.jsonl``; [] when unknown."""
        if not key or key.startswith(".") or "/" in key or "\\" in key:
            raise SourceUnavailableError(f"Invalid session key: {key!r}")
        path = self.directory / f"{key}.jsonl"
        try:
            return await asyncio.to_thread(self._tail, path, limit)
        except FileNotFoundError:
            return []
        except (OSError, UnicodeDecodeError) as e:
            raise SourceUnavailableError(f"Cannot read {path}: {e}", cause=e) from e

    @staticmethod
    def _tail(path: Path, limit: int) -> list[dict[str, Any]]:
        lines: deque[str] = deque(maxlen=limit)
        with path.open(encoding="utf-8") as handle:
            for line in handle:
                if line.strip():
                    lines.append(line)
        messages = []
        for line in lines:
            try:
                record = json.loads(line)
            except ValueError:
                continue
            if isinstance(record, dict):
                messages.append(record)
        return messages

    async def close(self) -> None:
        return None


class HttpSessionSource:
    """Sessions listed by an upstream HTTP API (``{"sessions": [...]}``)."""

    def __init__(
        self,
        url: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def sessions(self) -> list[Session]:
        try:
            response = await self._client.get(self.url)
            response.raise_for_status()
            body: Any = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceUnavailableError(
                f"Session source unavailable: {e}", cause=e
            ).with_context(url=self.url) from e

        items = body.get("sessions", []) if isinstance(body, dict) else body
        if not isinstance(items, list):
            raise SourceUnavailableError("Session source returned no session list").with_context(url=self.url)
        return [Session.from_wire(item) for item in items if isinstance(item, dict) and "key" in item]

    def history_url(self, key: str) -> str:
        return f"{self.url.rstrip('/')}/{quote(key, safe='')}/history"

    async def history(self, key: str, limit: int) -> list[dict[str, Any]]:
        """``GET <url>/<key>/history?limit=N`` → ``{"messages": [...]}``."""
        url = self.history_url(key)
        try:
            response = await self._client.get(url, params={"limit": limit})
            response.raise_for_status()
            body: Any = response.json()
        except (httpx.HTTPError, ValueError) as e:
            raise SourceUnavailableError(
                f"Session history unavailable: {e}", cause=e
            ).with_context(url=url) from e

        messages = body.get("messages", []) if isinstance(body, dict) else body
        if not isinstance(messages, list):
            raise SourceUnavailableError("Session history returned no message list").with_context(url=url)
        return [m for m in messages if isinstance(m, dict)][-limit:]

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()
