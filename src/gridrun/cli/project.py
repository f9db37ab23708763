"""
CLI: ``gridrun buildspec`` / ``gridrun project-name`` — inspect what the
coordinator would provision, without touching AWS.
"""

from __future__ import annotations

from pathlib import Path

import typer

from gridrun.cli.utils import console
from gridrun.core.settings import get_settings
from gridrun.packaging.revision import latest_revision, project_name
from gridrun.runtimes.buildspec import render_buildspec


def buildspec_command(
    selector: str | None = typer.Option(None, "--selector", "-s", help="Render the per-job buildspec for SELECTOR"),
    invocation_id: str | None = typer.Option(None, "--invocation-id", "-i", help="Target invocation of the job"),
) -> None:
    """Print the project buildspec, or a job's buildspec with --selector."""
    settings = get_settings()
    console.print(render_buildspec(settings, selector, invocation_id), markup=False, highlight=False, end="")


def project_name_command(
    host: str | None = typer.Option(None, "--host", help="Host identity (default: GRIDRUN_TEST_HOST)"),
    workspace: Path | None = typer.Option(None, "--workspace", "-w", help="Checkout to read the revision from"),
) -> None:
    """Print the remote project name for the current revision."""
    settings = get_settings()
    revision = latest_revision(workspace or settings.workspace)
    console.print(project_name(host or settings.test_host, revision), markup=False, highlight=False)
