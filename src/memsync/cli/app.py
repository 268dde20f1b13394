"""
Root Typer application for the memsync CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

from memsync import __version__
from memsync.cli.serve import serve
from memsync.cli.status import status

app = Typer(
    name="memsync",
    help="memsync - real-time sync server for markdown memory documents.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"memsync {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """memsync CLI - serve and inspect the sync server."""


app.command("serve")(serve)
app.command("status")(status)
