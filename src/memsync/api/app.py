"""
FastAPI application factory.

``create_app()`` builds one ``SyncServer``, wires middleware and routers
around it and ties its start/stop to the application lifespan.

Manifesto:
    The app factory is the single composition root of the network layer.
    Each call returns an app with its own ``SyncServer``, so tests can run
    several isolated apps in one process.

Tags:
    memsync, api, app-factory, composition-root, FastAPI

Doc-Types:
    api-reference
"""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from memsync import __version__
from memsync.api.deps import get_settings
from memsync.core.logging import get_logger
from memsync.core.settings import SyncSettings
from memsync.sync.server import SyncServer

log = get_logger("memsync.api")


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan - start and stop the sync server."""
    server: SyncServer = app.state.sync_server
    log.info("memsync API starting", version=app.version)
    await server.start()
    try:
        yield
    finally:
        await server.stop()
        log.info("memsync API shutting down")


def create_app(
    settings: SyncSettings | None = None,
    *,
    server: SyncServer | None = None,
) -> FastAPI:
    """Build and return a fully-configured FastAPI application.

    Parameters
    ----------
    settings : SyncSettings | None
        Override settings (useful for testing).  When ``None`` the cached
        instance from :func:`get_settings` is used.
    server : SyncServer | None
        Pre-built server (tests inject one with fake sources).
    """
    settings = settings or (server.settings if server else get_settings())
    server = server or SyncServer(settings)

    app = FastAPI(
        title="memsync",
        version=__version__,
        lifespan=lifespan,
    )

    app.state.settings = settings
    app.state.sync_server = server
    app.dependency_overrides[get_settings] = lambda: settings

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    from memsync.api.routers import files, health, ws

    # Health at root level for container healthchecks
    app.include_router(health.router, tags=["health"])
    app.include_router(files.router, prefix="/api", tags=["files"])
    app.include_router(ws.router, tags=["websocket"])

    return app
