"""
CLI: ``memsync serve`` - start the sync server.

Command-line options override ``MEMSYNC_*`` environment variables, which
override the defaults in :class:`~memsync.core.settings.SyncSettings`.
"""

from __future__ import annotations

from pathlib import Path

import typer
import uvicorn
from pydantic import ValidationError

from memsync.api.app import create_app
from memsync.cli.utils import console, err_console
from memsync.core.logging import configure_logging
from memsync.core.settings import SyncSettings


def serve(
    host: str | None = typer.Option(None, "--host", "-h", help="Bind address"),
    port: int | None = typer.Option(None, "--port", "-p", help="Bind port"),
    memory_dir: Path | None = typer.Option(
        None, "--memory-dir", "-m", help="Directory of <date>.md documents"
    ),
    workspace_dir: Path | None = typer.Option(
        None, "--workspace-dir", help="Directory of *.jsonl session files"
    ),
    sessions_url: str | None = typer.Option(None, "--sessions-url", help="Upstream sessions endpoint"),
    poll_interval: float | None = typer.Option(
        None, "--poll-interval", help="Seconds between document polls"
    ),
    log_level: str | None = typer.Option(None, "--log-level", help="DEBUG, INFO, WARNING, ERROR"),
    json_logs: bool | None = typer.Option(
        None, "--json-logs/--console-logs", help="Force JSON or console log output"
    ),
) -> None:
    """Start the memsync WebSocket server."""
    overrides = {
        "host": host,
        "port": port,
        "memory_dir": memory_dir,
        "workspace_dir": workspace_dir,
        "sessions_url": sessions_url,
        "slow_poll_interval": poll_interval,
        "log_level": log_level,
        "json_logs": json_logs,
    }
    try:
        settings = SyncSettings(**{k: v for k, v in overrides.items() if v is not None})
    except ValidationError as e:
        err_console.print(f"[red]Invalid configuration:[/red] {e}")
        raise typer.Exit(code=2) from e

    configure_logging(level=settings.log_level, json_format=settings.json_logs)

    console.print(f"[bold green]Starting memsync[/bold green] on ws://{settings.host}:{settings.port}/ws")
    if settings.memory_dir is not None:
        console.print(f"  memory dir: {settings.memory_dir}")

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )
