"""
memsync - real-time sync server for markdown memory documents.

Layers:
- memsync.core: documents, parsing, the document store, errors, settings, logging
- memsync.sync: connections, subscriptions, broadcast, change detection
- memsync.api: FastAPI transport (WebSocket + read-only HTTP)
- memsync.cli: ``memsync serve``
"""

__version__ = "0.1.0"
