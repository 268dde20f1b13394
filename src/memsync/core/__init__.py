"""memsync core -- the document model and its authoritative store.

Manifesto:
    Everything a client ever sees is derived from one place: the in-memory
    document store.  Tasks and memories are never stored, they are parsed
    from document content on demand, so they can never drift from it.

Architecture::

    errors.py       Structured error hierarchy (SyncError + categories)
    settings.py     SyncSettings (pydantic-settings, MEMSYNC_ env prefix)
    logging.py      structlog configuration + recent-log buffer
    timestamps.py   Millisecond clock + client id generation
    hashing.py      Fingerprints for change detection
    models.py       Document / Task / Memory / Session records
    parser.py       Markdown → tasks and memories
    store.py        DocumentStore (per-key serialized writes)
"""

from memsync.core.errors import (
    DocumentExistsError,
    DocumentNotFoundError,
    ErrorCategory,
    InvalidKeyError,
    ProtocolError,
    SyncError,
)
from memsync.core.models import Document, Memory, Session, Task
from memsync.core.parser import parse_document, parse_memories, parse_tasks
from memsync.core.store import DocumentStore

__all__ = [
    "Document",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "DocumentStore",
    "ErrorCategory",
    "InvalidKeyError",
    "Memory",
    "ProtocolError",
    "Session",
    "SyncError",
    "Task",
    "parse_document",
    "parse_memories",
    "parse_tasks",
]
