"""bootpack command line (Typer)."""

from bootpack.cli.app import app

__all__ = ["app"]
