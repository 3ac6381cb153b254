"""
Rich logging utilities for the StoryBridge service.

Messages are printed as plain text: story text, URLs and upstream error
bodies may contain square brackets that rich would otherwise read as
markup.
"""

from typing import Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.theme import Theme

# Story reader and API console styles
custom_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "step": "blue bold",
        "vocab": "bold magenta underline",
        "word.active": "black on dark_orange",
        "sentence.active": "black on light_salmon1",
        "http.ok": "green",
        "http.client": "yellow",
        "http.server": "red",
    }
)

console = Console(theme=custom_theme)


def info(message: str) -> None:
    console.print(f"[info]ℹ[/info] {escape(message)}")


def success(message: str) -> None:
    console.print(f"[success]✓[/success] {escape(message)}")


def warning(message: str) -> None:
    console.print(f"[warning]⚠[/warning] {escape(message)}")


def error(message: str) -> None:
    console.print(f"[error]✗[/error] {escape(message)}")


def step(message: str, step_num: Optional[int] = None, total: Optional[int] = None) -> None:
    """Print a progress step, numbered when the total is known."""
    if step_num and total:
        console.print(f"[step][{step_num}/{total}][/step] {escape(message)}")
    else:
        console.print(f"[step]→[/step] {escape(message)}")


def header(message: str) -> None:
    """Print a rule with a title, e.g. a story title."""
    console.print()
    console.rule(f"[bold]{escape(message)}[/bold]")
    console.print()


def request(client: str, method: str, path: str, status: int) -> None:
    """Print one API access log line, colored by status class."""
    if status >= 500:
        style = "http.server"
    elif status >= 400:
        style = "http.client"
    else:
        style = "http.ok"
    console.print(f"[{style}]{status}[/{style}] {escape(method)} {escape(path)} [dim]{escape(client)}[/dim]")


def create_table(title: str, *columns: str) -> Table:
    """Create a table styled like the rest of the console output."""
    table = Table(title=title, header_style="step")
    for column in columns:
        table.add_column(column)
    return table
