"""Terminal output for the authgate CLI.

Status and prompts go to stderr; data (tables, the signed-in identity) to stdout.
"""

from __future__ import annotations

from collections.abc import Sequence

from rich.console import Console
from rich.table import Table

from authgate.flow import FlowController
from authgate.models import SecondFactorHint

err_console = Console(stderr=True)
out_console = Console()


def success(message: str, *, console: Console | None = None) -> None:
    """Print a success message (green checkmark) to stderr."""
    (console or err_console).print(f"[green]  ✓ {message}[/green]")


def error(message: str, *, console: Console | None = None) -> None:
    """Print an error message (red X) to stderr."""
    (console or err_console).print(f"[red]  ✗ {message}[/red]")


def warn(message: str, *, console: Console | None = None) -> None:
    (console or err_console).print(f"[yellow]  ⚠ {message}[/yellow]")


def info(message: str, *, console: Console | None = None) -> None:
    (console or err_console).print(f"[dim]  {message}[/dim]")


def report_form(flow: FlowController, *, console: Console | None = None) -> bool:
    """Print the form's error or success message.

    Returns:
        False if the form holds an error.
    """
    form = flow.form
    if form.error:
        error(f"{flow.error_title}: {form.error}", console=console)
        return False
    if form.success:
        success(form.success, console=console)
    return True


def hints_table(hints: Sequence[SecondFactorHint]) -> Table:
    """Numbered table of enrolled second factors for selection."""
    table = Table(
        title="Second factors",
        title_style="bold",
        header_style="bold cyan",
        border_style="dim",
    )
    table.add_column("#", style="cyan", justify="right")
    table.add_column("Factor", style="white")
    table.add_column("Phone", style="dim")
    for index, hint in enumerate(hints, start=1):
        table.add_row(str(index), hint.label, hint.phone_number or "-")
    return table
