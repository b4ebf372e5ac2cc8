"""
CLI utility helpers: output formatting.
"""

from __future__ import annotations

import json
from typing import Any, NoReturn

import typer
from rich.console import Console
from rich.table import Table

from bootpack.ops.result import OperationResult

console = Console()
err_console = Console(stderr=True)


def _to_dict(obj: Any) -> dict[str, Any]:
    """Convert a report / dict to a plain dict."""
    if hasattr(obj, "to_dict"):
        return obj.to_dict()
    if isinstance(obj, dict):
        return obj
    return {"value": str(obj)}


def fail(code: str, message: str) -> NoReturn:
    err_console.print(f"[bold red]Error[/bold red] ({code}): {message}")
    raise typer.Exit(code=1)


def output_result(
    result: OperationResult,
    *,
    as_json: bool = False,
    title: str = "",
) -> None:
    """Render an ``OperationResult`` to the terminal."""
    if not result.success:
        err = result.error
        if as_json:
            console.print_json(json.dumps(result.to_dict(), default=str))
            raise typer.Exit(code=1)
        fail(err.code if err else "ERROR", err.message if err else "Unknown error")

    for warning in result.warnings:
        err_console.print(f"[yellow]Warning[/yellow]: {warning}")

    if as_json:
        console.print_json(json.dumps(_to_dict(result.data), default=str))
        return
    print_dict(_to_dict(result.data), title=title)


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a single dict as key-value pairs, skipping empty values."""
    if title:
        console.print(f"[bold]{title}[/bold]")
    for k, v in data.items():
        if v is None or v == [] or v == "":
            continue
        console.print(f"  [cyan]{k}[/cyan]: {v}")


def print_attributes(attributes: dict[str, str], *, title: str = "") -> None:
    """Render manifest attributes as a Rich table."""
    table = Table(title=title or None, show_lines=False, pad_edge=False)
    table.add_column("Attribute", style="cyan")
    table.add_column("Value", overflow="fold")
    for name, value in attributes.items():
        table.add_row(name, value)
    console.print(table)
