"""Terminal diagnostics."""

from __future__ import annotations

from typing import Optional, Sequence

from rich.console import Console
from rich.markup import escape
from rich.table import Table


class Reporter:
    def __init__(
        self,
        verbose: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        self.verbose = verbose
        self.console = console or Console(highlight=False)
        self.err_console = err_console or Console(stderr=True, highlight=False)

    def info(self, message: str) -> None:
        self.console.print(escape(message))

    def success(self, message: str) -> None:
        self.console.print(f"[green]{escape(message)}[/green]")

    def warn(self, message: str) -> None:
        self.console.print(f"[yellow]\\[warn][/yellow] {escape(message)}")

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]{escape(message)}[/red]")

    def debug(self, message: str) -> None:
        if self.verbose:
            self.console.print(f"[dim]\\[debug] {escape(message)}[/dim]")

    def table(self, title: str, columns: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
        table = Table(title=title)
        for column in columns:
            table.add_column(column)
        for row in rows:
            table.add_row(*[escape(str(cell)) for cell in row])
        self.console.print(table)
