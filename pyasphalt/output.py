"""Console output helpers for the CLI."""

import json
from typing import Any

import click
from rich.console import Console


class OutputFormatter:
    """Writes status messages to stderr and results to stdout.

    Status messages go through a rich console on stderr so piped stdout only
    carries data (plain text or JSON).
    """

    def __init__(self, json_output: bool = False, quiet: bool = False):
        """Initialize output formatter.

        Args:
            json_output: Print results as JSON instead of text
            quiet: Suppress informational and success messages
        """
        self.json_output = json_output
        self.quiet = quiet
        self.console = Console(stderr=True, soft_wrap=True, highlight=False)

    def _status(self, message: str, style: str) -> None:
        self.console.print(message, style=style, markup=False)

    def info(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self._status(message, "")

    def success(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self._status(message, "green")

    def warning(self, message: str) -> None:
        self._status(message, "yellow")

    def error(self, message: str) -> None:
        self._status(message, "bold red")

    def progress_message(self, message: str) -> None:
        if not self.quiet and not self.json_output:
            self._status(message, "dim")

    def print(self, message: str = "") -> None:
        """Print a line of result data to stdout."""
        click.echo(message)

    def output_json(self, data: Any) -> None:
        click.echo(json.dumps(data, indent=2))
