"""
Root Typer application for the gridrun CLI.
"""

from __future__ import annotations

import typer
from typer import Typer

app = Typer(
    name="gridrun",
    help="gridrun — run test cases as remote AWS CodeBuild jobs.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)


# ── Version callback ─────────────────────────────────────────────────────


def _version_callback(value: bool) -> None:
    if value:
        from gridrun import __version__

        typer.echo(f"gridrun {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(  # noqa: UP007
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
) -> None:
    """gridrun CLI — dispatch tests, read job logs, inspect configuration."""


# ── Commands ─────────────────────────────────────────────────────────────

from gridrun.cli.config import app as config_app  # noqa: E402
from gridrun.cli.logs import logs_command  # noqa: E402
from gridrun.cli.project import buildspec_command, project_name_command  # noqa: E402
from gridrun.cli.run import run_command  # noqa: E402

app.command("run")(run_command)
app.command("logs")(logs_command)
app.command("buildspec")(buildspec_command)
app.command("project-name")(project_name_command)
app.add_typer(config_app, name="config", help="Configuration management.")
