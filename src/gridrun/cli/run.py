"""
CLI: ``gridrun run`` — dispatch pytest selectors as remote jobs.

Each selector becomes one remote job. With ``--invocation-id`` the remote
worker narrows the selector to that single parameterization; without it the
whole selector runs in the job.
"""

from __future__ import annotations

import asyncio

import typer
from rich.markup import escape

from gridrun.cli.utils import console, err_console, exit_for_error, outcome_row, print_outcomes
from gridrun.core.errors import BootstrapError, GridError
from gridrun.core.logging import configure_logging
from gridrun.core.settings import GridSettings, get_settings
from gridrun.execution.coordinator import GridCoordinator
from gridrun.runtimes._types import JobOutcome


async def dispatch_selectors(
    coordinator: GridCoordinator,
    selectors: list[str],
    invocation_id: str,
    *,
    show_logs: bool,
) -> list[JobOutcome | BaseException]:
    """Run every selector concurrently; bootstrap failure propagates."""
    async with coordinator:
        await coordinator.ensure_ready()
        results = await asyncio.gather(
            *(coordinator.run(selector, invocation_id) for selector in selectors),
            return_exceptions=True,
        )
        for selector, result in zip(selectors, results, strict=True):
            if isinstance(result, BootstrapError):
                raise result
            if show_logs and isinstance(result, JobOutcome) and not result.succeeded:
                logs = await coordinator.fetch_logs(result)
                err_console.rule(f"{selector} ({result.job_id})")
                err_console.print(logs or "[dim]no build log[/dim]", markup=False)
        return list(results)


def run_command(
    selectors: list[str] = typer.Argument(..., help="pytest selectors, one remote job each"),
    invocation_id: str = typer.Option("", "--invocation-id", "-i", help="Narrow every job to one invocation"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", min=1, help="Max jobs in flight"),
    logs: bool = typer.Option(True, "--logs/--no-logs", help="Print the build log of failed jobs"),
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json"),
) -> None:
    """Dispatch SELECTORS remotely and wait for every job to finish."""
    settings: GridSettings = get_settings()
    if concurrency is not None:
        settings = settings.model_copy(update={"concurrency": concurrency})
    configure_logging(level=settings.log_level, json_format=settings.json_logs)
    for warning in settings.config_warnings:
        err_console.print(f"[yellow]Warning:[/yellow] {escape(warning)}")

    try:
        coordinator = GridCoordinator.from_settings(settings)
        results = asyncio.run(
            dispatch_selectors(coordinator, selectors, invocation_id, show_logs=logs),
        )
    except GridError as exc:
        raise exit_for_error(exc) from exc

    rows = [outcome_row(selector, result) for selector, result in zip(selectors, results, strict=True)]
    print_outcomes(rows, as_json=format == "json")

    failed = sum(1 for row in rows if not row["succeeded"])
    if failed:
        if format != "json":
            console.print(f"[red]{failed} of {len(rows)} jobs failed[/red]")
        raise typer.Exit(code=1)
