"""
Console output for the allocentra CLI.

Rich console with one style per allocation decision. Honors NO_COLOR and
FORCE_COLOR.
"""

from __future__ import annotations

import os
from collections.abc import Mapping, Sequence

from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

from allocentra.domain.models import Decision

ALLOCENTRA_THEME = Theme(
    {
        "info": "#88C0D0",
        "success": "#A3BE8C",
        "allocated": "#A3BE8C bold",
        "partial": "#EBCB8B bold",
        "denied": "#BF616A bold",
        "pool": "cyan",
    }
)

console = Console(
    theme=ALLOCENTRA_THEME,
    force_terminal=os.environ.get("FORCE_COLOR") is not None,
    no_color=os.environ.get("NO_COLOR") is not None,
)


def success(message: str) -> None:
    console.print(f"[success]✓ {message}[/success]")


def info(message: str) -> None:
    console.print(f"[info]ℹ {message}[/info]")


def header(title: str) -> None:
    console.print()
    console.print(Panel(f"[bold]{title}[/bold]", border_style="cyan"))


def decision_label(decision: Decision) -> str:
    """Decision name wrapped in its theme style."""
    style = decision.value.lower()
    return f"[{style}]{decision.value}[/{style}]"


def print_table(title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    table = Table(title=title, header_style="bold")
    for col in columns:
        table.add_column(col)
    for row in rows:
        table.add_row(*row)
    console.print(table)


def print_key_value(items: Mapping[str, str], title: str | None = None) -> None:
    if title:
        console.print(f"\n[bold]{title}[/bold]")
    width = max((len(key) for key in items), default=0)
    for key, value in items.items():
        console.print(f"  [pool]{key.ljust(width)}[/pool]  {value}")
