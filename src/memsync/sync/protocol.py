"""
Wire protocol: JSON text frames over a WebSocket.

Every frame is a JSON object with a ``type`` string and a ``payload``
object; frames sent by the server also carry ``timestamp`` (epoch millis).

Client → server::

    {"type": "subscribe",   "payload": {"channels": ["files", "tasks"]}}
    {"type": "unsubscribe", "payload": {"channels": ["tasks"]}}
    {"type": "request",     "payload": {"resource": "status"}}
    {"type": "request",     "payload": {"resource": "session_history", "sessionKey": "s1", "limit": 20}}
    {"type": "write_file",  "payload": {"date": "2026-02-21", "content": "..."}}
    {"type": "create_file", "payload": {"date": "2026-02-22"}}
    {"type": "delete_file", "payload": {"date": "2026-02-22"}}
    {"type": "ping"}

Older clients put the fields next to ``type`` instead of under
``payload`` (``{"type": "subscribe", "channels": [...]}``); both shapes
are accepted.

Server → client::

    {"type": "file_change", "payload": {"file": {...}}, "timestamp": 1771632000000}

Tags:
    protocol, json, websocket, pydantic, memsync

Doc-Types:
    - API Reference
    - Protocol Reference
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from memsync.core.errors import ProtocolError
from memsync.core.timestamps import now_ms

__all__ = [
    "ClientMessage",
    "SubscribePayload",
    "RequestPayload",
    "WriteFilePayload",
    "CreateFilePayload",
    "DeleteFilePayload",
    "decode_message",
    "encode_message",
    "parse_payload",
    "CHANNELS",
    "RESOURCES",
]

# ── Message types ────────────────────────────────────────────────────────

# client → server
SUBSCRIBE = "subscribe"
UNSUBSCRIBE = "unsubscribe"
REQUEST = "request"
WRITE_FILE = "write_file"
CREATE_FILE = "create_file"
DELETE_FILE = "delete_file"
PING = "ping"
PONG = "pong"

# server → client
CONNECTED = "connected"
SUBSCRIBED = "subscribed"
UNSUBSCRIBED = "unsubscribed"
WRITE_COMPLETE = "write_complete"
CREATE_COMPLETE = "create_complete"
DELETE_COMPLETE = "delete_complete"
SESSION_OPEN = "session_open"
SESSION_CLOSE = "session_close"
ERROR = "error"
FILE = "file"
SESSION_HISTORY = "session_history"

# ── Channels / resources ─────────────────────────────────────────────────

FILES = "files"
TASKS = "tasks"
MEMORIES = "memories"
SESSIONS = "sessions"
LOGS = "logs"
STATUS = "status"

CHANNELS = frozenset({FILES, TASKS, MEMORIES, SESSIONS, LOGS})
RESOURCES = frozenset({FILES, TASKS, MEMORIES, SESSIONS, LOGS, STATUS, FILE, SESSION_HISTORY})


# ── Envelope ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ClientMessage:
    """A decoded inbound frame."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)


def decode_message(raw: str | bytes) -> ClientMessage:
    """Parse one inbound frame.

    Raises:
        ProtocolError: not JSON, not an object, or missing a string ``type``
    """
    try:
        data = json.loads(raw)
    except (TypeError, ValueError) as e:
        raise ProtocolError("Invalid message format", cause=e) from e

    if not isinstance(data, dict):
        raise ProtocolError("Invalid message format: expected a JSON object")

    message_type = data.get("type")
    if not isinstance(message_type, str) or not message_type:
        raise ProtocolError("Invalid message format: missing type")

    payload = data.get("payload")
    if payload is None:
        payload = {k: v for k, v in data.items() if k != "type"}
    elif not isinstance(payload, dict):
        raise ProtocolError("Invalid message format: payload must be an object")

    return ClientMessage(type=message_type, payload=payload)


def encode_message(
    message_type: str,
    payload: dict[str, Any] | None = None,
    timestamp: int | None = None,
) -> str:
    """Serialise one outbound frame."""
    return json.dumps(
        {
            "type": message_type,
            "payload": payload or {},
            "timestamp": now_ms() if timestamp is None else timestamp,
        },
        separators=(",", ":"),
        ensure_ascii=False,
    )


# ── Payload schemas ──────────────────────────────────────────────────────


class SubscribePayload(BaseModel):
    """``subscribe`` / ``unsubscribe`` payload."""

    channels: list[str] = Field(..., description="Channel names")


class RequestPayload(BaseModel):
    """``request`` payload.

    ``date`` selects a document for ``file``; ``sessionKey`` and ``limit``
    select the transcript tail for ``session_history``.
    """

    model_config = ConfigDict(populate_by_name=True)

    resource: str
    date: str | None = None
    session_key: str | None = Field(default=None, alias="sessionKey")
    limit: int = Field(default=50, ge=1, le=1000, description="Most recent messages to return")


class WriteFilePayload(BaseModel):
    date: str
    content: str


class CreateFilePayload(BaseModel):
    date: str
    template: str | None = None


class DeleteFilePayload(BaseModel):
    date: str


P = TypeVar("P", bound=BaseModel)


def parse_payload(model: type[P], message: ClientMessage) -> P:
    """Validate ``message.payload`` against ``model``.

    Raises:
        ProtocolError: with the first validation problem as message
    """
    try:
        return model.model_validate(message.payload)
    except ValidationError as e:
        first = e.errors()[0]
        where = ".".join(str(part) for part in first.get("loc", ())) or "payload"
        raise ProtocolError(
            f"Invalid {message.type} payload: {where}: {first.get('msg', 'invalid')}",
            cause=e,
        ) from e
