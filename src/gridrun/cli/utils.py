"""
CLI utility helpers — output formatting and error exits.
"""

from __future__ import annotations

import json
from typing import Any

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from gridrun.core.errors import BOOTSTRAP_EXIT_CODE, BootstrapError, ConfigError, GridError
from gridrun.runtimes._types import JobOutcome

console = Console()
err_console = Console(stderr=True)

#: Exit status for missing or invalid configuration.
CONFIG_EXIT_CODE = 2


def exit_for_error(error: GridError) -> typer.Exit:
    """Print ``error`` and build the matching ``typer.Exit``."""
    err_console.print(f"[bold red]Error[/bold red] ({error.category.value}): {escape(error.message)}")
    if isinstance(error, BootstrapError):
        return typer.Exit(code=BOOTSTRAP_EXIT_CODE)
    if isinstance(error, ConfigError):
        return typer.Exit(code=CONFIG_EXIT_CODE)
    return typer.Exit(code=1)


def outcome_row(selector: str, result: JobOutcome | BaseException) -> dict[str, Any]:
    if isinstance(result, JobOutcome):
        return {
            "selector": selector,
            "job_id": result.job_id,
            "state": result.state.value,
            "succeeded": result.succeeded,
            "duration_seconds": round(result.duration_seconds, 1),
        }
    return {
        "selector": selector,
        "job_id": None,
        "state": type(result).__name__,
        "succeeded": False,
        "error": str(result),
    }


def print_outcomes(rows: list[dict[str, Any]], *, as_json: bool = False) -> None:
    if as_json:
        console.print_json(json.dumps(rows, default=str))
        return

    table = Table(title="Remote jobs", show_lines=False, pad_edge=False)
    table.add_column("Selector", overflow="fold")
    table.add_column("Job", overflow="fold")
    table.add_column("State")
    table.add_column("Duration (s)", justify="right")
    for row in rows:
        color = "green" if row["succeeded"] else "red"
        table.add_row(
            row["selector"],
            row.get("job_id") or "-",
            f"[{color}]{row['state']}[/{color}]",
            str(row.get("duration_seconds", "-")),
        )
    console.print(table)
