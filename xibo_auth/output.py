"""Output formatters for human-readable and JSON output."""

import json
import sys
from typing import Any

import click

from .auth.errors import AuthExhausted


def format_json(data: Any) -> str:
    """Wrap data in the ``{"success": true, "data": ...}`` envelope."""
    return json.dumps({"success": True, "data": data}, indent=2, default=str)


def _error_detail(error: Exception, error_type: str | None, help_text: str | None) -> dict[str, Any]:
    detail: dict[str, Any] = {
        "type": error_type or type(error).__name__,
        "message": str(error),
        "help": help_text or "",
    }
    if isinstance(error, AuthExhausted):
        detail["message"] = error.summary
        detail["attempts"] = [str(attempt) for attempt in error.attempts]
    status_code = getattr(error, "status_code", None)
    if status_code is not None:
        detail["status_code"] = status_code
    return detail


def format_error_json(
    error: Exception,
    error_type: str | None = None,
    help_text: str | None = None,
) -> str:
    """Format an error as JSON, listing failed endpoints for exhausted logins.

    Tokens and passwords never appear: only the exception message, which
    is built without them, is included.
    """
    return json.dumps({"success": False, "error": _error_detail(error, error_type, help_text)}, indent=2)


def format_human(data: Any) -> str:
    """Render a mapping as aligned ``key: value`` lines; anything else as JSON."""
    if not isinstance(data, dict) or not data:
        return json.dumps(data, indent=2, default=str)
    width = max(len(str(key)) for key in data)
    return "\n".join(f"{str(key).ljust(width)}  {value}" for key, value in data.items())


class OutputHandler:
    """Handles output formatting based on mode (JSON or human)."""

    def __init__(self, json_mode: bool = False):
        self.json_mode = json_mode

    def success(self, data: Any, human_message: str | None = None) -> None:
        """Print a successful result."""
        if self.json_mode:
            click.echo(format_json(data))
        else:
            click.echo(human_message if human_message else format_human(data))

    def error(
        self,
        error: Exception,
        error_type: str | None = None,
        help_text: str | None = None,
    ) -> None:
        """Print an error and exit with status 1."""
        if self.json_mode:
            click.echo(format_error_json(error, error_type, help_text))
        else:
            click.secho(f"Error: {error}", fg="red", err=True)
            if help_text:
                click.echo(f"\n{help_text}", err=True)
        sys.exit(1)

    def table(self, headers: list[str], rows: list[list[str]]) -> None:
        """Print rows as an aligned table, or as a list of objects in JSON mode."""
        if self.json_mode:
            click.echo(format_json([dict(zip(headers, row)) for row in rows]))
            return

        widths = [max([len(h)] + [len(str(row[i])) for row in rows]) for i, h in enumerate(headers)]
        header_line = "  ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
        click.secho(header_line, bold=True)
        click.echo("-" * len(header_line))
        for row in rows:
            click.echo("  ".join(str(cell).ljust(widths[i]) for i, cell in enumerate(row)))
