"""
CLI: ``memsync status`` - query a running server.
"""

from __future__ import annotations

import json

import httpx
import typer

from memsync.cli.utils import console, err_console, render_status


def status(
    url: str = typer.Option("http://127.0.0.1:18791", "--url", "-u", help="Server base URL"),
    as_json: bool = typer.Option(False, "--json", help="Print raw JSON"),
    timeout: float = typer.Option(5.0, "--timeout", help="Request timeout in seconds"),
) -> None:
    """Show status of a running memsync server."""
    try:
        response = httpx.get(f"{url.rstrip('/')}/api/status", timeout=timeout)
        response.raise_for_status()
        payload = response.json()
    except httpx.HTTPError as e:
        err_console.print(f"[red]Server unavailable:[/red] {e}")
        raise typer.Exit(code=1) from e

    if as_json:
        typer.echo(json.dumps(payload, indent=2))
        return
    console.print(render_status(payload, title=f"memsync @ {url}"))
