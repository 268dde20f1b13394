"""
FastAPI dependency injection.

Usage in routers::

    from memsync.api.deps import Server

    @router.get("/files")
    async def list_files(server: Server):
        ...

The ``SyncServer`` lives on ``app.state.sync_server`` (set by
:func:`memsync.api.app.create_app`); routers never construct one.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Depends, Request

from memsync.core.settings import SyncSettings
from memsync.sync.server import SyncServer

# ── Settings (singleton) ─────────────────────────────────────────────────


@lru_cache(maxsize=1)
def get_settings() -> SyncSettings:
    """Cached settings - loaded once per process."""
    return SyncSettings()


# ── Sync server (per-app) ────────────────────────────────────────────────


def get_server(request: Request) -> SyncServer:
    return request.app.state.sync_server


Settings = Annotated[SyncSettings, Depends(get_settings)]
Server = Annotated[SyncServer, Depends(get_server)]
