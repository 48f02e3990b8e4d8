"""
CLI utility helpers: consoles and output formatting.
"""

from __future__ import annotations

import json
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()
err_console = Console(stderr=True)


def print_json(payload: Any) -> None:
    """Write ``payload`` as JSON to stdout (no Rich markup processing)."""
    console.print_json(json.dumps(payload, default=str))


def print_dict(data: dict[str, Any], *, title: str = "") -> None:
    """Render a flat dict as a two-column table."""
    table = Table(title=title or None, show_header=True)
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        table.add_row(str(key), "" if value is None else str(value))
    console.print(table)


def print_rows(
    rows: list[dict[str, Any]],
    columns: list[str],
    *,
    title: str = "",
) -> None:
    """Render a list of dicts as a table with the given columns."""
    if not rows:
        console.print(f"[dim]No {title.lower() or 'items'}.[/dim]")
        return
    table = Table(title=title or None, show_header=True)
    for column in columns:
        table.add_column(column.replace("_", " ").title())
    for row in rows:
        table.add_row(*("" if row.get(c) is None else str(row.get(c)) for c in columns))
    console.print(table)
