"""
Balance command: completed expense totals at dates
"""

import asyncio
from typing import List, Optional

import typer
from rich.table import Table

from ...core.errors import ReplayEngineError
from ..runtime import console, data_dir_option, fail, load_engine, parse_date, print_json


def balance_command(
    user: str = typer.Option(..., "--user", "-u", help="User id"),
    dates: List[str] = typer.Option(..., "--date", help="Date (ISO-8601); repeat for history"),
    compare: bool = typer.Option(
        False, "--compare", help="Compare exactly two dates (difference, % change)"
    ),
    json_output: bool = typer.Option(False, "--json", help="Output as JSON"),
    data_dir: Optional[str] = data_dir_option(),
):
    """
    Total of completed expenses dated at or before each date.

    Examples:
        finreplay balance --user u1 --date 2024-03-01
        finreplay balance --user u1 --date 2024-01-01 --date 2024-02-01 --date 2024-03-01
        finreplay balance --user u1 --date 2024-01-01 --date 2024-02-01 --compare
    """
    if compare and len(dates) != 2:
        fail("--compare needs exactly two --date values", json_output)

    try:
        engine = load_engine(data_dir)
        parsed = [parse_date(d) for d in dates]
        if compare:
            report = asyncio.run(engine.balance_discrepancy(user, parsed[0], parsed[1]))
        else:
            points = asyncio.run(engine.balance_history(user, parsed))
    except (ReplayEngineError, ValueError) as e:
        fail(str(e), json_output)

    if compare:
        if json_output:
            print_json(report.to_dict())
            return
        change = f"{report.percentage_change}%" if report.percentage_change is not None else "n/a"
        console.print(f"  {report.date1.isoformat()}: [cyan]{report.balance1}[/cyan]")
        console.print(f"  {report.date2.isoformat()}: [cyan]{report.balance2}[/cyan]")
        console.print(f"  Difference: [yellow]{report.difference}[/yellow] ({change})")
        console.print(f"  Expense changes in window: {report.expense_changes}")
        return

    if json_output:
        print_json({"user_id": user, "history": [p.to_dict() for p in points]})
        return

    table = Table(title=f"Balance of {user}")
    table.add_column("Date", style="cyan")
    table.add_column("Balance", style="green", justify="right")
    for point in points:
        table.add_row(point.date.isoformat(), str(point.balance))
    console.print(table)
