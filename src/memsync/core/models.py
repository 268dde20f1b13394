"""
Data model for memsync: documents, derived records and sessions.

``Document`` is the only stored entity.  ``Task`` and ``Memory`` are
derived values recomputed from document content by the parser, and
``Session`` is a presence record read from an external session source.

All models are frozen dataclasses: the store swaps whole values in and out,
so a reader holds either the old or the new document, never a mix.

Wire shape:
    Each model has ``to_wire()`` producing the camelCase JSON objects that
    browser clients consume (``lastModified``, ``displayName``, ...).

Tags:
    models, dataclasses, wire-format, memsync
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

__all__ = [
    "Document",
    "Task",
    "Memory",
    "Session",
    "document_to_wire",
]


@dataclass(frozen=True)
class Document:
    """One dated markdown document.

    Attributes:
        key: Unique document key, usually an ISO date (``YYYY-MM-DD``)
        content: Raw markdown text
        last_modified: Epoch milliseconds of the last accepted write
    """

    key: str
    content: str
    last_modified: int

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.key,
            "date": self.key,
            "content": self.content,
            "lastModified": self.last_modified,
        }


@dataclass(frozen=True)
class Task:
    """A checkbox line (``- [ ]`` / ``- [x]``) parsed from a document."""

    id: str
    title: str
    status: str
    priority: str
    source: str
    description: str = ""
    assignee: str = "robin"
    workflow: str = "personal"
    tags: tuple[str, ...] = ()

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "status": self.status,
            "priority": self.priority,
            "description": self.description,
            "assignee": self.assignee,
            "workflow": self.workflow,
            "tags": list(self.tags),
            "source": self.source,
        }


@dataclass(frozen=True)
class Memory:
    """A ``##``/``###`` section parsed from a document."""

    id: str
    title: str
    content: str
    source: str
    category: str = "general"
    date: str | None = None
    tags: tuple[str, ...] = ()

    def to_wire(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "content": self.content,
            "category": self.category,
            "date": self.date,
            "tags": list(self.tags),
            "source": self.source,
        }


@dataclass(frozen=True)
class Session:
    """An active session reported by a session source."""

    key: str
    kind: str = "session"
    display_name: str = ""
    label: str | None = None
    updated_at: int | None = None
    extra: dict[str, Any] = field(default_factory=dict, compare=False, hash=False)

    @classmethod
    def from_wire(cls, data: dict[str, Any]) -> Session:
        known = {"key", "kind", "displayName", "label", "updatedAt"}
        return cls(
            key=str(data["key"]),
            kind=str(data.get("kind") or "session"),
            display_name=str(data.get("displayName") or data["key"]),
            label=data.get("label"),
            updated_at=data.get("updatedAt"),
            extra={k: v for k, v in data.items() if k not in known},
        )

    def to_wire(self) -> dict[str, Any]:
        return {
            **self.extra,
            "key": self.key,
            "kind": self.kind,
            "displayName": self.display_name,
            "label": self.label,
            "updatedAt": self.updated_at,
        }


def document_to_wire(document: Document) -> dict[str, Any]:
    """The ``file`` object: document fields plus its derived records."""
    from memsync.core.parser import parse_document

    tasks, memories = parse_document(document.key, document.content)
    return {
        **document.to_wire(),
        "tasks": [t.to_wire() for t in tasks],
        "memories": [m.to_wire() for m in memories],
    }
