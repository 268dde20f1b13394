"""
Health router - liveness for container healthchecks.

Endpoints:
    GET /health    Service status with client and document counts
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter
from pydantic import BaseModel, Field

from memsync import __version__
from memsync.api.deps import Server

router = APIRouter()


class HealthResponse(BaseModel):
    """Health envelope returned by ``GET /health``."""

    status: str = "healthy"
    service: str = "memsync"
    version: str = __version__
    clients: int = 0
    files: int = 0
    timestamp: str = Field(default_factory=lambda: datetime.now(UTC).isoformat())


@router.get("/health", response_model=HealthResponse)
async def health(server: Server) -> HealthResponse:
    return HealthResponse(
        status="healthy" if server.running else "starting",
        clients=len(server.manager),
        files=len(server.store),
    )
