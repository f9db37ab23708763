"""
CLI: ``gridrun logs`` — print the build phase log of a remote job.
"""

from __future__ import annotations

import asyncio

import typer
from botocore.exceptions import BotoCoreError

from gridrun.cli.utils import console, exit_for_error
from gridrun.core.errors import ConfigError
from gridrun.core.settings import get_settings
from gridrun.runtimes._types import JobHandle
from gridrun.runtimes.logs import CloudWatchLogSource


async def _fetch(source: CloudWatchLogSource, handle: JobHandle) -> str:
    try:
        return await source.fetch_logs(handle)
    finally:
        await source.close()


def logs_command(
    job_id: str = typer.Argument(..., help="Job id, e.g. 'localhost-tests-3f2a9c1:5d0c...'"),
    pages: int | None = typer.Option(None, "--pages", "-p", min=1, help="Max log pages to read"),
) -> None:
    """Show the build phase of JOB_ID's log."""
    settings = get_settings()
    if not settings.log_group:
        raise exit_for_error(ConfigError("GRIDRUN_LOG_GROUP is not set"))

    try:
        source = CloudWatchLogSource(
            log_group=settings.log_group,
            max_pages=pages or settings.max_log_pages,
            page_size=settings.log_page_size,
            region=settings.region,
        )
    except BotoCoreError as exc:
        raise exit_for_error(ConfigError(f"Cannot create AWS clients: {exc}", cause=exc)) from exc

    handle = JobHandle(
        job_id=job_id,
        project=job_id.split(":", 1)[0],
        work_selector="",
        invocation_id="",
    )
    text = asyncio.run(_fetch(source, handle))
    if not text:
        console.print("[dim]No build log.[/dim]")
        return
    console.print(text, markup=False, highlight=False, end="")
