"""
CLI: ``gridrun config`` — configuration inspection.
"""

from __future__ import annotations

import typer
from pydantic import ValidationError
from rich.markup import escape
from rich.table import Table

from gridrun.cli.utils import CONFIG_EXIT_CODE, console

app = typer.Typer(no_args_is_help=True)


@app.command("show")
def show_config(
    format: str = typer.Option("table", "--format", "-f", help="Output format: table, json, env"),
) -> None:
    """Show current configuration."""
    from gridrun.core.settings import get_settings

    settings = get_settings()

    if format == "json":
        console.print_json(settings.model_dump_json())
        return

    if format == "env":
        for key, value in sorted(settings.model_dump().items()):
            console.print(f"GRIDRUN_{key.upper()}={value}", markup=False, highlight=False)
        return

    console.print(f"[bold]Mode:[/bold] {settings.routing_mode.value}")
    table = Table()
    table.add_column("Setting")
    table.add_column("Value", overflow="fold")
    for key, value in sorted(settings.model_dump().items()):
        table.add_row(key, str(value))
    console.print(table)


@app.command("validate")
def validate_config(
    remote: bool = typer.Option(True, "--remote/--local", help="Require the AWS settings a caller needs"),
) -> None:
    """Validate configuration and show warnings."""
    from gridrun.core.settings import get_settings

    try:
        settings = get_settings(_force_reload=True)
    except ValidationError as e:
        console.print(f"[red]Configuration Error:[/red] {escape(str(e))}")
        raise typer.Exit(CONFIG_EXIT_CODE) from e

    console.print(f"[bold]Mode:[/bold] {settings.routing_mode.value}")
    for warning in settings.config_warnings:
        console.print(f"  [yellow]WARNING:[/yellow] {escape(warning)}")

    missing = settings.missing_remote_settings() if remote else []
    if missing:
        for name in missing:
            console.print(f"  [red]MISSING:[/red] {name}")
        raise typer.Exit(CONFIG_EXIT_CODE)

    if not settings.config_warnings:
        console.print("[green]✓ Configuration OK[/green]")
