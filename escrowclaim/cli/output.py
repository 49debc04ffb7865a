"""
Shared output helpers for CLI commands.
"""

import json
import sys

import click

EXIT_OK          = 0
EXIT_CLAIM_ERROR = 1
EXIT_USAGE       = 2


def emit(data: dict, fmt: str, title: str) -> None:
    if fmt == "json":
        click.echo(json.dumps(data, indent=2, sort_keys=True))
        return
    click.echo(click.style(title, bold=True))
    width = max((len(k) for k in data), default=0)
    for key, value in data.items():
        if isinstance(value, dict):
            value = json.dumps(value, sort_keys=True) if value else "-"
        elif value is None:
            value = "-"
        click.echo(f"  {key:<{width}}  {value}")


def fail(message: str, fmt: str, code: int, kind: str = None) -> None:
    """Report an error and exit with `code`."""
    if fmt == "json":
        payload = {"error": message}
        if kind:
            payload["kind"] = kind
        click.echo(json.dumps(payload, sort_keys=True))
    else:
        click.echo(click.style(f"error: {message}", fg="red"), err=True)
    sys.exit(code)


format_option = click.option(
    "--format", "fmt",
    type=click.Choice(["human", "json"], case_sensitive=False),
    default="human",
    show_default=True,
    help="Output format.",
)
