"""
Delta log commands: append, tail, verify
"""

import asyncio
import json
from typing import Optional

import typer
from rich.table import Table

from ...core.deltas import StateDelta
from ...core.errors import ReplayEngineError
from ...core.ids import stable_id
from ...log.file_store import FileDeltaLog
from ..runtime import console, data_dir_option, fail, load_engine, print_json

app = typer.Typer()


def _delta_from_record(rec: dict) -> StateDelta:
    if not rec.get("id"):
        # Same producer record -> same id, so re-imports are deduplicated
        rec = dict(rec)
        rec["id"] = stable_id(
            str(rec["user_id"]),
            str(rec["resource_type"]),
            str(rec["resource_id"]),
            str(rec["operation"]),
            str(rec["created_at"]),
        )
    return StateDelta.from_dict(rec)


@app.command()
def append(
    file: str = typer.Option(..., "--file", "-f", help="JSONL file, one delta per line"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Append deltas from a JSONL file.

    Examples:
        finreplay log append --file deltas.jsonl
    """
    try:
        deltas = []
        with open(file, "r") as f:
            for lineno, line in enumerate(f, start=1):
                if not line.strip():
                    continue
                try:
                    deltas.append(_delta_from_record(json.loads(line)))
                except (ValueError, KeyError) as e:
                    raise ValueError(f"{file}:{lineno}: invalid delta: {e}") from e
    except (OSError, ValueError) as e:
        fail(str(e), json_output)

    async def run():
        results = []
        for delta in deltas:
            results.append(await engine.append_delta(delta))
        return results

    try:
        engine = load_engine(data_dir)
        results = asyncio.run(run())
    except ReplayEngineError as e:
        fail(str(e), json_output)

    appended = sum(1 for r in results if r.committed)
    duplicates = sum(1 for r in results if r.duplicate)
    if json_output:
        print_json({"appended": appended, "duplicates": duplicates})
    else:
        console.print(f"[green]✓ Appended {appended} deltas[/green] ({duplicates} duplicates skipped)")


@app.command()
def tail(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    lines: int = typer.Option(50, "--lines", "-n", help="Number of deltas to show"),
    resource_type: Optional[str] = typer.Option(None, "--type", "-t", help="Filter by resource type"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Show the most recent deltas for a user, newest first.

    Examples:
        finreplay log tail --user u1
        finreplay log tail --user u1 --type expense --lines 10
    """
    try:
        engine = load_engine(data_dir)
        deltas = asyncio.run(engine.recent_deltas(user, limit=lines, resource_type=resource_type))
    except ReplayEngineError as e:
        fail(str(e), json_output)

    if json_output:
        print_json({"deltas": [d.to_dict() for d in deltas], "count": len(deltas)})
        return

    if not deltas:
        console.print(f"[yellow]No deltas for {user}[/yellow]")
        return

    table = Table(title=f"Recent deltas of {user}")
    table.add_column("Created", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Resource", style="yellow")
    table.add_column("Operation")
    table.add_column("ID (prefix)", style="dim")
    for d in deltas:
        table.add_row(
            d.created_at.isoformat(), d.resource_type, d.resource_id, d.operation.value, d.id[:16]
        )
    console.print(table)


@app.command("verify")
def verify_chain(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Verify the hash chain of a user's file delta log.

    Examples:
        finreplay log verify --user u1
    """
    try:
        engine = load_engine(data_dir)
        if not isinstance(engine.deltas, FileDeltaLog):
            fail("hash chain verification needs the file backend", json_output)
        count = asyncio.run(engine.deltas.verify(user))
        head = asyncio.run(engine.deltas.last_hash(user))
    except ReplayEngineError as e:
        fail(str(e), json_output)

    if json_output:
        print_json({"user_id": user, "valid": True, "records": count, "head": head})
    else:
        console.print(f"[green]✓ Hash chain valid[/green] ({count} records)")
        if head:
            console.print(f"Head: [dim]{head}[/dim]")
