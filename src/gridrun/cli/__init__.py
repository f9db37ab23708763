"""gridrun command-line interface (typer + rich)."""

from gridrun.cli.app import app

__all__ = ["app"]
