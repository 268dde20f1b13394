"""
HTTP / WebSocket transport for memsync.

Quick start::

    from memsync.api import create_app

    app = create_app()  # ready for uvicorn

Manifesto:
    This package owns the network boundary.  All sync behaviour lives in
    ``memsync.sync``; the code here only accepts sockets, hands frames to
    the ``SyncServer`` and serialises read-only HTTP views.

Tags:
    memsync, api, websocket, FastAPI, transport-layer

Doc-Types:
    api-reference
"""

from memsync.api.app import create_app

__all__ = ["create_app"]
