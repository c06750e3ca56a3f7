"""Console logging and table output via Rich.

Warnings and errors go to stderr so that command output (tables, CSV paths)
stays clean on stdout.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence

from rich.console import Console
from rich.table import Table

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False
_quiet = False


def configure(*, verbose: bool = False, quiet: bool = False) -> None:
    """Set verbosity for the rest of the process."""
    global _verbose, _quiet
    _verbose = verbose
    _quiet = quiet and not verbose


def info(msg: str) -> None:
    if not _quiet:
        console.print(f"[blue]\\[INFO][/blue] {msg}")


def success(msg: str) -> None:
    if not _quiet:
        console.print(f"[green]\\[OK][/green] {msg}")


def warn(msg: str) -> None:
    _err_console.print(f"[yellow]\\[WARN][/yellow] {msg}")


def error(msg: str) -> None:
    _err_console.print(f"[red]\\[ERROR][/red] {msg}")


def debug(msg: str) -> None:
    if _verbose:
        console.print(f"[dim]\\[DEBUG] {msg}[/dim]")


def print_table(
    title: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[object]],
) -> None:
    """Render *rows* as a Rich table on stdout."""
    table = Table(title=title, title_justify="left")
    for col in columns:
        table.add_column(col, justify="left" if col == columns[0] else "right")
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row))
    console.print(table)
