"""
Structured error types for memsync.

Every failure the sync core can name has its own type, so callers decide
what to do by catching a class instead of matching message strings.  Each
error carries a category, a retryable flag, a free-form context dict and an
optional chained cause.

Manifesto:
    - **Typed hierarchy:** protocol, store, transport and source failures
      are distinct classes
    - **Explicit retry semantics:** every error knows whether retrying helps
    - **Rich context:** errors carry metadata for structured logging
    - **Error chaining:** the original exception is kept as ``cause``

Architecture:
    ::

        ┌────────────────────────────────────────────────────────────┐
        │                        SyncError                            │
        │          (category, retryable, context, cause)              │
        ├────────────────────────────────────────────────────────────┤
        │  ProtocolError          StoreError          TransportError  │
        │  (PROTOCOL)             (STORE)             (TRANSPORT)     │
        │     │                      │                    │           │
        │  UnknownMessageError    InvalidKeyError     BackpressureErr │
        │  UnknownResourceError   DocumentExistsError                 │
        │                         DocumentNotFoundError               │
        │                                                              │
        │  SourceUnavailableError (SOURCE, retryable)                  │
        └────────────────────────────────────────────────────────────┘

    Handling rules:

    - ProtocolError and subclasses are answered with an ``error`` frame;
      the connection stays open.
    - TransportError and subclasses close the connection; nothing is sent.
    - SourceUnavailableError is logged by the poll loop and never reaches
      a client.

Tags:
    error-handling, exception-hierarchy, memsync, protocol, transport

Doc-Types:
    - API Reference
    - Error Handling Guide
"""

from __future__ import annotations

from enum import Enum
from typing import Any

__all__ = [
    "ErrorCategory",
    "SyncError",
    "ProtocolError",
    "UnknownMessageError",
    "UnknownResourceError",
    "StoreError",
    "InvalidKeyError",
    "DocumentExistsError",
    "DocumentNotFoundError",
    "TransportError",
    "BackpressureError",
    "SourceUnavailableError",
]


class ErrorCategory(str, Enum):
    """Error categories used for routing and log classification."""

    PROTOCOL = "PROTOCOL"      # Malformed or unknown client input
    STORE = "STORE"            # Document store contract violations
    TRANSPORT = "TRANSPORT"    # Send/receive failures, slow peers
    SOURCE = "SOURCE"          # External document/session source
    CONFIG = "CONFIG"          # Invalid settings
    INTERNAL = "INTERNAL"      # Bugs, unexpected state


class SyncError(Exception):
    """
    Base exception for all memsync errors.

    Subclasses set ``default_category`` and ``default_retryable`` so the
    common case needs only a message.

    Examples:
        >>> error = SyncError("boom")
        >>> error.category
        <ErrorCategory.INTERNAL: 'INTERNAL'>
        >>> error.with_context(connection_id="client-1").context
        {'connection_id': 'client-1'}
    """

    default_category: ErrorCategory = ErrorCategory.INTERNAL
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        category: ErrorCategory | None = None,
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.category = category or self.default_category
        self.retryable = retryable if retryable is not None else self.default_retryable
        self.context: dict[str, Any] = dict(context or {})
        self.cause = cause

        if cause is not None:
            self.__cause__ = cause

    def with_context(self, **kwargs: Any) -> SyncError:
        """Add context to this error (fluent API)."""
        self.context.update(kwargs)
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert error to dictionary for logging/serialization."""
        result: dict[str, Any] = {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "category": self.category.value,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = dict(self.context)
        if self.cause is not None:
            result["cause"] = str(self.cause)
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, category={self.category.value})"


# =============================================================================
# PROTOCOL ERRORS (answered with an ``error`` frame)
# =============================================================================


class ProtocolError(SyncError):
    """Inbound frame could not be parsed or failed payload validation."""

    default_category = ErrorCategory.PROTOCOL


class UnknownMessageError(ProtocolError):
    """Valid envelope with an unrecognised ``type``."""

    def __init__(self, message_type: str, **kwargs: Any):
        super().__init__(f"Unknown message type: {message_type}", **kwargs)
        self.message_type = message_type


class UnknownResourceError(ProtocolError):
    """``request`` for a resource the server does not serve."""

    def __init__(self, resource: str, **kwargs: Any):
        super().__init__(f"Unknown resource: {resource}", **kwargs)
        self.resource = resource


# =============================================================================
# STORE ERRORS
# =============================================================================


class StoreError(SyncError):
    """Document store contract violation."""

    default_category = ErrorCategory.STORE


class InvalidKeyError(StoreError, ProtocolError):
    """Document key is empty or not a safe file name."""

    default_category = ErrorCategory.PROTOCOL

    def __init__(self, key: str, **kwargs: Any):
        super().__init__(f"Invalid document key: {key!r}", **kwargs)
        self.key = key


class DocumentExistsError(StoreError):
    """``create`` targeted a key that already holds a document."""

    def __init__(self, key: str, **kwargs: Any):
        super().__init__(f"Document already exists: {key}", **kwargs)
        self.key = key


class DocumentNotFoundError(StoreError):
    """Lookup or delete targeted a key that holds no document."""

    def __init__(self, key: str, **kwargs: Any):
        super().__init__(f"Document not found: {key}", **kwargs)
        self.key = key


# =============================================================================
# TRANSPORT ERRORS (connection is closed, nothing is sent)
# =============================================================================


class TransportError(SyncError):
    """Send or receive on a connection failed."""

    default_category = ErrorCategory.TRANSPORT


class BackpressureError(TransportError):
    """A connection's outbound queue is full or a send exceeded its timeout."""


# =============================================================================
# SOURCE ERRORS (logged by the change detector only)
# =============================================================================


class SourceUnavailableError(SyncError):
    """External document or session source could not be read."""

    default_category = ErrorCategory.SOURCE
    default_retryable = True
