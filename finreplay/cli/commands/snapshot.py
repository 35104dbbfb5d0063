"""
Snapshot commands: create, list, verify, prune
"""

import asyncio
from typing import List, Optional

import typer
from rich.table import Table

from ...core.errors import IntegrityError, ReplayEngineError
from ...live import JsonFileLiveState
from ..runtime import (
    EXIT_ERROR,
    EXIT_NOT_FOUND,
    console,
    data_dir_option,
    fail,
    load_engine,
    parse_date,
    print_json,
)

app = typer.Typer()


@app.command()
def create(
    users: Optional[List[str]] = typer.Option(None, "--user", "-u", help="User id (repeatable)"),
    all_users: bool = typer.Option(False, "--all", help="Snapshot every user in the delta log"),
    live_file: Optional[str] = typer.Option(
        None,
        "--live",
        help="JSON export of live state ({user: {type: [records]}}); default: project the delta log",
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Capture current state as immutable snapshots.

    Examples:
        finreplay snapshot create --user u1
        finreplay snapshot create --all
        finreplay snapshot create --user u1 --live export.json
    """
    if not users and not all_users:
        fail("pass --user or --all", json_output)

    try:
        live = JsonFileLiveState(live_file) if live_file else None
        engine = load_engine(data_dir, live=live)
        batch = asyncio.run(engine.create_snapshots(None if all_users else users))
    except ReplayEngineError as e:
        fail(str(e), json_output)

    if json_output:
        print_json(
            {
                "created": batch.created,
                "failed": batch.failed,
                "elapsed_seconds": round(batch.elapsed_seconds, 3),
            }
        )
    else:
        for user_id, snapshot_id in sorted(batch.created.items()):
            console.print(f"[green]✓ {user_id}[/green]: snapshot [cyan]{snapshot_id}[/cyan]")
        for user_id, error in sorted(batch.failed.items()):
            console.print(f"[red]✗ {user_id}[/red]: {error}")
        console.print(
            f"Success: {batch.success_count}, failed: {batch.failure_count} "
            f"({batch.elapsed_seconds:.2f}s)"
        )

    if batch.failure_count:
        raise typer.Exit(EXIT_ERROR)


@app.command("list")
def list_snapshots(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum snapshots to show"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    List snapshots, newest first.

    Examples:
        finreplay snapshot list --user u1
        finreplay snapshot list --user u1 --limit 3 --json
    """
    try:
        engine = load_engine(data_dir)
        summaries = asyncio.run(engine.list_snapshots(user, limit=limit))
    except ReplayEngineError as e:
        fail(str(e), json_output)

    if json_output:
        print_json({"snapshots": summaries, "count": len(summaries)})
        return

    if not summaries:
        console.print(f"[yellow]No snapshots for {user}[/yellow]")
        return

    table = Table(title=f"Snapshots of {user}")
    table.add_column("Snapshot date", style="cyan")
    table.add_column("ID", style="dim")
    table.add_column("Expenses", justify="right")
    table.add_column("Balance", style="green", justify="right")
    table.add_column("Size", justify="right")
    for s in summaries:
        table.add_row(
            s["snapshot_date"],
            s["id"][:16],
            str(s["transaction_count"]),
            s["total_balance"],
            str(s["metadata"].get("compressed_size", "-")),
        )
    console.print(table)


@app.command()
def verify(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    snapshot_id: Optional[str] = typer.Option(None, "--id", help="Verify one snapshot only"),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Decode snapshots and check their checksums.

    Examples:
        finreplay snapshot verify --user u1
        finreplay snapshot verify --user u1 --id 6f1c...
    """
    try:
        engine = load_engine(data_dir)
        if snapshot_id is None:
            snapshots = asyncio.run(engine.snapshots.list_user(user))
        else:
            found = asyncio.run(engine.snapshots.get(user, snapshot_id))
            snapshots = [found] if found else []
    except ReplayEngineError as e:
        fail(str(e), json_output)

    if snapshot_id is not None and not snapshots:
        fail(f"snapshot not found: {snapshot_id}", json_output, code=EXIT_NOT_FOUND)

    results = []
    for snapshot in snapshots:
        try:
            engine.codec.decode(snapshot.compressed_state, snapshot.checksum)
            results.append({"id": snapshot.id, "valid": True})
        except IntegrityError as e:
            results.append({"id": snapshot.id, "valid": False, "error": str(e)})

    invalid = [r for r in results if not r["valid"]]
    if json_output:
        print_json({"results": results, "verified": len(results), "invalid": len(invalid)})
    else:
        for r in results:
            if r["valid"]:
                console.print(f"[green]✓ {r['id']}[/green]")
            else:
                console.print(f"[red]✗ {r['id']}[/red]: {r['error']}")
        console.print(f"Verified {len(results)} snapshots, {len(invalid)} invalid")

    if invalid:
        raise typer.Exit(EXIT_ERROR)


@app.command()
def prune(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    horizon: str = typer.Option(
        ..., "--horizon", help="Earliest date that must stay replayable (ISO-8601)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Delete snapshots older than the base snapshot for the horizon.

    Examples:
        finreplay snapshot prune --user u1 --horizon 2024-01-01
    """
    try:
        engine = load_engine(data_dir)
        deleted = asyncio.run(engine.prune_snapshots(user, parse_date(horizon)))
    except (ReplayEngineError, ValueError) as e:
        fail(str(e), json_output)

    if json_output:
        print_json({"user_id": user, "deleted": deleted})
    else:
        console.print(f"[green]✓ Deleted {deleted} snapshots[/green]")
