"""
Shared helpers for CLI commands: engine construction, dates, error output.
"""

import dataclasses
import json
from datetime import datetime
from typing import NoReturn, Optional

import typer
from rich.console import Console

from ..config import EngineConfig
from ..core.clock import parse_timestamp
from ..engine import ReplayEngine, build_engine
from ..live import LiveStateSource

console = Console()

EXIT_NOT_FOUND = 1
EXIT_ERROR = 2


def data_dir_option():
    return typer.Option(
        None,
        "--data-dir",
        "-d",
        help="Data directory (default: FINREPLAY_DATA_DIR or ./finreplay-data)",
    )


def load_engine(data_dir: Optional[str] = None, live: Optional[LiveStateSource] = None) -> ReplayEngine:
    config = EngineConfig.from_env()
    if data_dir:
        config = dataclasses.replace(config, data_dir=data_dir)
    return build_engine(config, live=live)


def parse_date(value: str) -> datetime:
    try:
        return parse_timestamp(value)
    except ValueError:
        raise ValueError(f"invalid date: {value!r} (expected ISO-8601)") from None


def print_json(payload) -> None:
    print(json.dumps(payload, indent=2, sort_keys=True))


def fail(message: str, json_output: bool, code: int = EXIT_ERROR) -> NoReturn:
    if json_output:
        print(json.dumps({"error": message}))
    else:
        console.print(f"[red]Error:[/red] {message}")
    raise typer.Exit(code)
