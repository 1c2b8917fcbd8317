"""Console output helpers."""

import json
from typing import Any, Optional

from rich.console import Console
from rich.text import Text


class OutputFormatter:
    """Writes user-facing messages and JSON documents.

    Informational output goes to stdout and is suppressed in quiet mode.
    Errors always go to stderr.
    """

    def __init__(
        self,
        json_output: bool = False,
        quiet: bool = False,
        console: Optional[Console] = None,
        err_console: Optional[Console] = None,
    ):
        """Initialize output formatter.

        Args:
            json_output: Emit machine-readable JSON instead of text
            quiet: Suppress non-essential output
            console: Console for stdout (created if not given)
            err_console: Console for stderr (created if not given)
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = console or Console(highlight=False, soft_wrap=True)
        self.err_console = err_console or Console(
            stderr=True, highlight=False, soft_wrap=True
        )

    def print(self, message: Any = "") -> None:
        """Print a message or renderable unless quiet."""
        if self.quiet or self.json_output:
            return
        if isinstance(message, str):
            message = Text(message)
        self.console.print(message)

    def info(self, message: str) -> None:
        self.print(message)

    def warning(self, message: str) -> None:
        """Print a warning (shown in JSON mode too, on stderr)."""
        if self.quiet:
            return
        self.err_console.print(Text(message, style="yellow"))

    def error(self, message: str) -> None:
        """Print an error. Never suppressed."""
        self.err_console.print(Text(f"Error: {message}", style="bold red"))

    def output_json(self, data: Any) -> None:
        """Print a JSON document on stdout."""
        self.console.print_json(json.dumps(data, default=str))

