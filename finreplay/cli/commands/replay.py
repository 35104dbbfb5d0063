"""
Replay command: reconstruct a user's state at a date
"""

import asyncio
import json
from typing import Optional

import typer
from rich.syntax import Syntax
from rich.table import Table

from ...core.errors import ReplayEngineError
from ..runtime import console, data_dir_option, fail, load_engine, parse_date, print_json


def replay_command(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    at: str = typer.Option(..., "--at", "-a", help="Target date (ISO-8601)"),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Deadline in seconds"),
    show_state: bool = typer.Option(False, "--show-state", "-s", help="Show reconstructed state"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Reconstruct a user's state as of a date.

    Examples:
        finreplay replay --user u1 --at 2024-03-01
        finreplay replay --user u1 --at 2024-03-01T12:00:00Z --show-state
        finreplay replay --user u1 --at 2024-03-01 --json
    """
    try:
        engine = load_engine(data_dir)
        result = asyncio.run(engine.replay_to_date(user, parse_date(at), timeout=timeout))
        state_hash = engine.codec.checksum_of(result.state)
    except (ReplayEngineError, ValueError) as e:
        fail(str(e), json_output)

    meta = result.metadata
    if json_output:
        output = {
            "success": True,
            "metadata": meta.to_dict(),
            "state_hash": state_hash,
            "resource_counts": result.state.resource_counts(),
        }
        if show_state:
            output["state"] = result.state.to_dict()
        print_json(output)
        return

    console.print(
        f"[green]✓ Reconstructed state of {user} at {meta.target_date.isoformat()}[/green]"
    )
    console.print(f"  Mode: [cyan]{meta.mode}[/cyan]")
    console.print(f"  Base snapshot: [cyan]{meta.snapshot_id or '-'}[/cyan]")
    console.print(f"  Deltas applied: [cyan]{meta.deltas_applied}[/cyan]")
    console.print(f"  State hash: [yellow]{state_hash}[/yellow]")
    for warning in meta.warnings:
        console.print(f"  [yellow]{warning}[/yellow]")
    if meta.skipped_updates:
        console.print(
            f"  [yellow]Skipped {len(meta.skipped_updates)} updates on missing resources[/yellow]"
        )

    table = Table(title="Resources")
    table.add_column("Type", style="green")
    table.add_column("Count", style="cyan", justify="right")
    for resource_type, count in sorted(result.state.resource_counts().items()):
        table.add_row(resource_type, str(count))
    console.print(table)

    if show_state:
        console.print("\n[bold]Reconstructed State:[/bold]")
        syntax = Syntax(
            json.dumps(result.state.to_dict(), indent=2, sort_keys=True, default=str),
            "json",
            theme="monokai",
        )
        console.print(syntax)
