#!/usr/bin/env python3
"""
finreplay CLI - point-in-time reconstruction of user financial state

Main entrypoint for the finreplay command-line tool.
"""

import os

import typer
from rich.console import Console
from rich.table import Table

from .. import __version__
from ..config import EngineConfig
from ..core.errors import ConfigError
from ..logging_config import setup_logging
from ..metrics import start_metrics_server
from ..snapshot.codec import CODEC_VERSION
from .commands import balance, log, replay, snapshot, trace

app = typer.Typer(
    name="finreplay",
    help="Temporal replay engine for user financial state",
    add_completion=False,
)

console = Console()

app.add_typer(log.app, name="log", help="Delta log operations")
app.add_typer(snapshot.app, name="snapshot", help="Snapshot management")

app.command("replay")(replay.replay_command)
app.command("trace")(trace.trace_command)
app.command("balance")(balance.balance_command)


@app.callback()
def init():
    """Configure logging and, if enabled, the metrics endpoint."""
    # Commands print results on stdout; keep library logs quiet unless asked
    setup_logging(level=os.getenv("FINREPLAY_LOG_LEVEL", "WARNING"))
    try:
        config = EngineConfig.from_env()
    except ConfigError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(2)
    start_metrics_server(config.metrics_enabled, config.metrics_port)


@app.command()
def version():
    """Show version information."""
    table = Table(show_header=False, box=None)
    table.add_row("[bold]finreplay[/bold]", f"v{__version__}")
    table.add_row("Snapshot codec", f"v{CODEC_VERSION} (zlib + SHA-256)")

    console.print(table)


def main():
    """Main entrypoint."""
    app()


if __name__ == "__main__":
    main()
