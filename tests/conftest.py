"""
Shared pytest fixtures for memsync tests.

This module provides:
- ``FakeTransport``: records outbound frames, can hang or fail on send
- ``settle()``: lets writer tasks drain their queues
- ``restore_logging``: undoes ``configure_logging`` after a test
- Settings / server factories with short timeouts and no ``.env`` lookup

Usage:
    @pytest.mark.asyncio
    async def test_something(server):
        conn = await server.connect(FakeTransport())
        await server.handle_raw(conn, '{"type": "ping"}')
        await settle()
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any

import pytest
import pytest_asyncio
import structlog

from memsync.core.settings import SyncSettings
from memsync.sync.server import SyncServer


# =============================================================================
# Transport doubles
# =============================================================================


class FakeTransport:
    """In-memory :class:`~memsync.sync.connection.Transport`."""

    def __init__(self, *, hang: bool = False, fail: bool = False) -> None:
        self.sent: list[str] = []
        self.hang = hang
        self.fail = fail
        self.closed = False
        self.close_code: int | None = None

    async def send_text(self, data: str) -> None:
        if self.fail:
            raise ConnectionResetError("peer reset")
        if self.hang:
            await asyncio.Event().wait()
        self.sent.append(data)

    async def close(self, code: int = 1000) -> None:
        self.closed = True
        self.close_code = code

    @property
    def frames(self) -> list[dict[str, Any]]:
        return [json.loads(text) for text in self.sent]

    @property
    def types(self) -> list[str]:
        return [frame["type"] for frame in self.frames]

    def of_type(self, message_type: str) -> list[dict[str, Any]]:
        return [frame for frame in self.frames if frame["type"] == message_type]

    def last(self, message_type: str) -> dict[str, Any]:
        found = self.of_type(message_type)
        assert found, f"no {message_type!r} frame in {self.types}"
        return found[-1]


async def settle(rounds: int = 50) -> None:
    """Yield to the loop until pending writer tasks have run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


def frame(message_type: str, **payload: Any) -> str:
    """Client frame in the ``{type, payload}`` envelope."""
    return json.dumps({"type": message_type, "payload": payload})


# =============================================================================
# Settings / server
# =============================================================================


def make_settings(**overrides: Any) -> SyncSettings:
    values: dict[str, Any] = {
        "heartbeat_interval": 30.0,
        "send_timeout": 0.2,
        "outbound_queue_size": 64,
        "fast_poll_interval": 60.0,
        "slow_poll_interval": 60.0,
    }
    values.update(overrides)
    return SyncSettings(_env_file=None, **values)


@pytest.fixture
def settings() -> SyncSettings:
    return make_settings()


@pytest_asyncio.fixture
async def server(settings: SyncSettings):
    """An unstarted server: no background loops, no directory mirror."""
    server = SyncServer(settings)
    yield server
    await server.manager.close_all()


@pytest.fixture(autouse=True)
def _clear_parse_cache():
    """Memoized parses must not leak between tests."""
    from memsync.core.parser import parse_document

    parse_document.cache_clear()
    yield


@pytest.fixture
def restore_logging():
    """Undo ``configure_logging`` after a test."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield
    structlog.reset_defaults()
    structlog.contextvars.clear_contextvars()
    root.handlers[:] = handlers
    root.setLevel(level)
