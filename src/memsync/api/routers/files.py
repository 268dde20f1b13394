"""
Read-only HTTP views of the sync state.

Endpoints:
    GET /api/files            All documents (newest key first)
    GET /api/files/{date}     One document, 404 when missing
    GET /api/tasks            Tasks parsed from every document
    GET /api/memories         Memories parsed from every document
    GET /api/status           Server status (same as the ``status`` resource)

These return the same payloads a WebSocket client receives for the
matching snapshot, so polling clients and socket clients agree.
"""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, HTTPException

from memsync.api.deps import Server
from memsync.core.models import document_to_wire

router = APIRouter()


@router.get("/files")
async def list_files(server: Server) -> dict[str, Any]:
    return server.engine.files_snapshot()


@router.get("/files/{date}")
async def get_file(date: str, server: Server) -> dict[str, Any]:
    document = server.store.get(date)
    if document is None:
        raise HTTPException(status_code=404, detail=f"Document not found: {date}")
    return {"file": document_to_wire(document)}


@router.get("/tasks")
async def list_tasks(server: Server) -> dict[str, Any]:
    return server.engine.tasks_snapshot()


@router.get("/memories")
async def list_memories(server: Server) -> dict[str, Any]:
    return server.engine.memories_snapshot()


@router.get("/status")
async def status(server: Server) -> dict[str, Any]:
    return server.status()
