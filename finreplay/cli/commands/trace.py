"""
Trace command: audit trail of one resource
"""

import asyncio
from typing import Optional

import typer
from rich.table import Table

from ...core.errors import ReplayEngineError
from ..runtime import EXIT_NOT_FOUND, console, data_dir_option, fail, load_engine, print_json


def trace_command(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    resource: str = typer.Option(..., "--resource", "-r", help="Resource id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Show every change recorded for a resource.

    Examples:
        finreplay trace --user u1 --resource exp-42
        finreplay trace --user u1 --resource exp-42 --json
    """
    try:
        engine = load_engine(data_dir)
        trace = asyncio.run(engine.trace_transaction(user, resource))
    except ReplayEngineError as e:
        fail(str(e), json_output)

    if json_output:
        print_json(trace.to_dict())
    elif not trace.found:
        console.print(f"[yellow]{trace.message}:[/yellow] {resource}")
    else:
        table = Table(title=f"{trace.resource_type} {resource} ({trace.total_changes} changes)")
        table.add_column("Timestamp", style="cyan")
        table.add_column("Operation", style="green")
        table.add_column("Changed fields")
        table.add_column("By", style="dim")
        table.add_column("Delta", style="dim")
        for entry in trace.lifecycle:
            table.add_row(
                entry.timestamp.isoformat(),
                entry.operation.value,
                ", ".join(entry.changed_fields) or "-",
                entry.triggered_by,
                entry.delta_id[:16],
            )
        console.print(table)

    if not trace.found:
        raise typer.Exit(EXIT_NOT_FOUND)
