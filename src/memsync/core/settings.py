"""Settings for the memsync server.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.
    Every knob the server has (listen address, heartbeat cadence, poll
    cadences, source locations) lives on one ``SyncSettings`` object that
    is passed to the components that need it, never read from globals.

Features:
    - **Pydantic validation:** intervals and sizes are checked at startup
    - **Environment-driven:** ``MEMSYNC_`` prefixed env vars and ``.env``
    - **Extra ignore:** unknown env vars don't cause startup failures

Examples:
    >>> settings = SyncSettings(heartbeat_interval=5, memory_dir="/tmp/memory")
    >>> settings.heartbeat_interval
    5.0

Tags:
    settings, configuration, pydantic, environment, memsync

Doc-Types:
    - API Reference
    - Configuration Guide
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

__all__ = ["SyncSettings"]


class SyncSettings(BaseSettings):
    """All settings of one sync server instance.

    Order of precedence (highest → lowest):
        1. Constructor arguments
        2. Environment variables (``MEMSYNC_PORT``, etc.)
        3. ``.env`` file
        4. Defaults below
    """

    model_config = SettingsConfigDict(
        env_prefix="MEMSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Network ──────────────────────────────────────────────────
    host: str = Field(default="0.0.0.0", description="Bind address")
    port: int = Field(default=18791, description="Bind port")
    cors_origins: list[str] = Field(default=["*"], description="Allowed CORS origins")

    # ── Observability ────────────────────────────────────────────
    debug: bool = False
    log_level: str = "INFO"
    json_logs: bool | None = Field(default=None, description="None = JSON when stdout is not a tty")
    log_buffer_size: int = Field(default=200, description="Recent log entries served on the logs channel")

    # ── Sources ──────────────────────────────────────────────────
    memory_dir: Path | None = Field(default=None, description="Directory of <date>.md documents")
    workspace_dir: Path | None = Field(default=None, description="Directory of *.jsonl session files")
    sessions_url: str | None = Field(default=None, description="Upstream HTTP endpoint listing sessions")
    write_through: bool = Field(default=True, description="Mirror accepted writes into memory_dir")
    watch_documents: bool = Field(default=True, description="Follow memory_dir via filesystem events; polling is the fallback")
    watch_debounce: float = Field(default=0.3, description="Seconds to let a burst of file events settle")

    # ── Liveness & backpressure ──────────────────────────────────
    heartbeat_interval: float = Field(default=30.0, description="Seconds between heartbeat sweeps")
    send_timeout: float = Field(default=10.0, description="Seconds a single send may take")
    outbound_queue_size: int = Field(default=256, description="Frames buffered per connection")

    # ── Change detection ─────────────────────────────────────────
    fast_poll_interval: float = Field(default=5.0, description="Seconds between session polls")
    slow_poll_interval: float = Field(default=10.0, description="Seconds between document polls")

    @field_validator(
        "heartbeat_interval",
        "send_timeout",
        "fast_poll_interval",
        "slow_poll_interval",
        "watch_debounce",
    )
    @classmethod
    def _positive_interval(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("interval must be positive")
        return value

    @field_validator("outbound_queue_size", "log_buffer_size")
    @classmethod
    def _positive_size(cls, value: int) -> int:
        if value < 1:
            raise ValueError("size must be at least 1")
        return value
