"""
memsync logging - structured logging for the sync server.

Manifesto:
    A sync server is mostly invisible: connections come and go, polls tick,
    writes fan out.  Structured events with stable names and key/value
    fields are what make that activity traceable.

    - **Structures:** JSON output for log aggregation, console for development
    - **Correlates:** ``connection_id`` bound per connection via contextvars
    - **Replays:** each server keeps its last N entries for the ``logs`` channel

Architecture:
    ::

        configure_logging(level="INFO", json_format=None, service="memsync")
              │
              ▼
        structlog processor chain:
          1. TimeStamper (iso)
          2. merge_contextvars
          3. add_log_level (``logger_name`` bound by get_logger)
          4. add_service_metadata
          5. recent-log capture     ← feeds the server's ``logs`` snapshot
          6. ecs field names        (JSON only)
          7. JSONRenderer | ConsoleRenderer

Examples:
    >>> from memsync.core.logging import configure_logging, get_logger
    >>> configure_logging(level="DEBUG", service="memsync")
    >>> logger = get_logger(__name__)
    >>> logger.info("client_connected", connection_id="client-1")

Tags:
    logging, structlog, observability, memsync

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import logging
import sys
from collections import deque
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any

import structlog
from structlog.types import EventDict, Processor, WrappedLogger

__all__ = [
    "configure_logging",
    "get_logger",
    "bind_context",
    "unbind_context",
    "clear_context",
    "LogContext",
    "RecentLogBuffer",
]


# Store service name for metadata
_SERVICE_NAME = "memsync"


def _add_service_metadata(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Add service-level metadata to all logs."""
    event_dict.setdefault("service.name", _SERVICE_NAME)
    return event_dict


def _elasticsearch_compatible(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Make field names Elasticsearch/ECS compatible."""
    if "timestamp" in event_dict:
        event_dict["@timestamp"] = event_dict.pop("timestamp")
    if "level" in event_dict:
        event_dict["log.level"] = event_dict.pop("level")
    return event_dict


def _ecs_logger_name(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    if "logger_name" in event_dict:
        event_dict["log.logger"] = event_dict.pop("logger_name")
    return event_dict


_active_buffer: ContextVar[RecentLogBuffer | None] = ContextVar("memsync_log_buffer", default=None)


class RecentLogBuffer:
    """Remembers the most recent log entries of one server.

    Each server owns a buffer and activates it with :meth:`capture` around
    its own work; tasks created inside inherit it.  Entries are shallow,
    JSON-friendly copies of the event dict.
    """

    def __init__(self, maxlen: int = 200) -> None:
        self._entries: deque[dict[str, Any]] = deque(maxlen=maxlen)

    def __call__(
        self, logger: WrappedLogger, method_name: str, event_dict: EventDict
    ) -> EventDict:
        entry = {}
        for key, value in event_dict.items():
            if key in ("exc_info", "stack_info"):
                continue
            entry[key] = value if isinstance(value, (str, int, float, bool, type(None))) else str(value)
        self._entries.append(entry)
        return event_dict

    @contextmanager
    def capture(self) -> Iterator[RecentLogBuffer]:
        """Route log entries of the current context into this buffer."""
        token = _active_buffer.set(self)
        try:
            yield self
        finally:
            _active_buffer.reset(token)

    def resize(self, maxlen: int) -> None:
        self._entries = deque(self._entries, maxlen=maxlen)

    def snapshot(self) -> list[dict[str, Any]]:
        return list(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


def _record_recent(
    logger: WrappedLogger, method_name: str, event_dict: EventDict
) -> EventDict:
    """Hand the event to the buffer active in this context, if any."""
    buffer = _active_buffer.get()
    if buffer is None:
        return event_dict
    return buffer(logger, method_name, event_dict)


def configure_logging(
    level: str = "INFO",
    json_format: bool | None = None,
    service: str = "memsync",
    add_timestamp: bool = True,
) -> None:
    """Configure structured logging for the application.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR)
        json_format: True for JSON, False for console, None for auto (JSON if not tty)
        service: Service name to include in logs
        add_timestamp: Include ISO timestamp in logs
    """
    global _SERVICE_NAME
    _SERVICE_NAME = service

    if json_format is None:
        json_format = not sys.stdout.isatty()

    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        _add_service_metadata,
    ]

    if add_timestamp:
        shared_processors.insert(0, structlog.processors.TimeStamper(fmt="iso"))

    shared_processors.append(_record_recent)

    if json_format:
        shared_processors.extend([_ecs_logger_name, _elasticsearch_compatible])
        renderer: Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=shared_processors + [renderer],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, level.upper())
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # uvicorn and httpx log through the standard library
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper()),
    )


def get_logger(name: str | None = None) -> Any:
    """Get a structured logger.

    Args:
        name: Logger name (usually __name__)

    Returns:
        structlog BoundLogger
    """
    if name is None:
        return structlog.get_logger()
    return structlog.get_logger(logger_name=name)


def bind_context(**kwargs: Any) -> None:
    """Bind context to include in all subsequent logs of this task."""
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove specific keys from logging context."""
    structlog.contextvars.unbind_contextvars(*keys)


def clear_context() -> None:
    """Clear all bound context."""
    structlog.contextvars.clear_contextvars()


class LogContext:
    """Context manager for scoped logging context.

    Example:
        async with LogContext(connection_id="client-1"):
            logger.info("message_received", type="ping")
    """

    def __init__(self, **kwargs: Any):
        self._context = kwargs

    def __enter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    def __exit__(self, *args) -> None:
        unbind_context(*self._context.keys())

    async def __aenter__(self) -> LogContext:
        bind_context(**self._context)
        return self

    async def __aexit__(self, *args) -> None:
        unbind_context(*self._context.keys())
