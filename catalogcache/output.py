"""Console output for the catalogcache command line tool."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.table import Table


class OutputFormatter:
    """Prints human-readable or JSON output."""

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress informational messages
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console()
        self.err_console = Console(stderr=True)

    def print(self, message: str = "") -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, highlight=False)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(message, highlight=False)

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self.console.print(f"[green]{message}[/green]", highlight=False)

    def warning(self, message: str) -> None:
        self.err_console.print(f"[yellow]Warning:[/yellow] {message}", highlight=False)

    def error(self, message: str) -> None:
        self.err_console.print(f"[red]Error:[/red] {message}", highlight=False)

    def output_json(self, data: Any) -> None:
        """Print data as JSON regardless of quiet mode."""
        self.console.print_json(json.dumps(data, default=str))

    def print_summary(self, title: str, rows: list[tuple[str, Any]]) -> None:
        """Print a two-column summary table.

        Args:
            title: Table title
            rows: (label, value) pairs
        """
        if self.json_output:
            self.output_json({label: value for label, value in rows})
            return
        if self.quiet:
            return
        table = Table(title=title, show_header=False)
        table.add_column("Field", style="bold")
        table.add_column("Value")
        for label, value in rows:
            table.add_row(label, _display(value))
        self.console.print(table)


def _display(value: Optional[Any]) -> str:
    if value is None:
        return "-"
    return str(value)
