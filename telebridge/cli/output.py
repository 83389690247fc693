"""
Telebridge CLI - Rich Output Helpers

Utility functions for consistent command-line output using Rich.

Functions:
    print_table    - Print a formatted table
    print_status   - Print status checks with pass/fail indicators
    print_json     - Print formatted JSON
    print_error    - Print error message
    print_success  - Print success message
    print_warning  - Print warning message
    print_info     - Print info message
"""

from __future__ import annotations

import json
from typing import Optional

from rich.console import Console
from rich.json import JSON
from rich.table import Table

console = Console()
err_console = Console(stderr=True)

STATUS_PASS = "[green]PASS[/green]"
STATUS_FAIL = "[red]FAIL[/red]"


def print_table(
    title: str,
    columns: list[str],
    rows: list[list[str]],
    styles: Optional[list[str]] = None,
    show_header: bool = True,
) -> None:
    """
    Print a rich table.

    Args:
        title: Table title
        columns: Column headers
        rows: Table rows (list of lists)
        styles: Optional column styles
        show_header: Whether to show column headers
    """
    table = Table(title=title, show_header=show_header)

    for i, col in enumerate(columns):
        style = styles[i] if styles and i < len(styles) else None
        table.add_column(col, style=style)

    for row in rows:
        padded_row = list(row) + [""] * (len(columns) - len(row))
        table.add_row(*padded_row[:len(columns)])

    console.print(table)


def print_status(
    checks: list[tuple[str, bool, str]],
    title: Optional[str] = None,
) -> None:
    """
    Print status checks with pass/fail indicators.

    Args:
        checks: List of (name, passed, message) tuples
        title: Optional title for the status list
    """
    if title:
        console.print(f"[bold]{title}[/bold]")
        console.print()

    for name, passed, message in checks:
        icon = STATUS_PASS if passed else STATUS_FAIL
        status_color = "green" if passed else "red"
        console.print(f"  {icon} [cyan]{name}[/cyan]: [{status_color}]{message}[/{status_color}]")


def print_json(data: dict | list, indent: int = 2, highlight: bool = True) -> None:
    """
    Print formatted JSON.

    Args:
        data: Data to print as JSON
        indent: Indentation level
        highlight: Whether to syntax highlight
    """
    json_str = json.dumps(data, indent=indent, default=str)
    if highlight:
        console.print(JSON(json_str))
    else:
        console.print(json_str, markup=False, highlight=False)


def print_error(message: str, details: Optional[str] = None, hint: Optional[str] = None) -> None:
    """
    Print error message.

    Args:
        message: Error message
        details: Optional detailed error information
        hint: Optional hint for resolving the error
    """
    err_console.print(f"[bold red]Error:[/bold red] {message}")
    if details:
        err_console.print(f"[dim]{details}[/dim]")
    if hint:
        err_console.print(f"[yellow]Hint:[/yellow] {hint}")


def print_success(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold green]Success:[/bold green] {message}")
    if details:
        console.print(f"[dim]{details}[/dim]")


def print_warning(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold yellow]Warning:[/bold yellow] {message}")
    if details:
        console.print(f"[dim]{details}[/dim]")


def print_info(message: str, details: Optional[str] = None) -> None:
    console.print(f"[bold blue]Info:[/bold blue] {message}")
    if details:
        console.print(f"[dim]{details}[/dim]")
