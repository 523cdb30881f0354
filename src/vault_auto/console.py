"""Rich console utilities for styled terminal output.

This module provides the operator-facing output of every command. Secrets
never pass through here: callers print counts and paths, not key material.
"""

from collections.abc import Generator
from contextlib import contextmanager

from questionary import Style
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich.theme import Theme

_THEME = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "red bold",
        "highlight": "cyan bold",
        "muted": "dim",
        "state": "magenta",
    }
)

# Shared console instance
console = Console(theme=_THEME)

# questionary style for the context selection prompt
PROMPT_STYLE = Style(
    [
        ("qmark", "fg:#5fafff bold"),
        ("question", "bold"),
        ("answer", "fg:#5fd7af bold"),
        ("pointer", "fg:#5fd7af bold"),
        ("highlighted", "fg:#1c1c1c bg:#5fd7af bold"),
        ("instruction", "fg:#6c6c6c italic"),
    ]
)
POINTER = "❯ "
QMARK = "? "


def _emit(style: str, marker: str, message: str, *, soft_wrap: bool = False) -> None:
    console.print(f"[{style}]{marker}[/{style}] {message}", soft_wrap=soft_wrap)


def info(message: str) -> None:
    """Print an informational message."""
    _emit("info", "ℹ", message)


def success(message: str) -> None:
    _emit("success", "✓", message)


def warning(message: str) -> None:
    _emit("warning", "⚠", message)


def error(message: str) -> None:
    """Print an error message on a single line, however long."""
    _emit("error", "✗", message, soft_wrap=True)


def action(message: str) -> None:
    """Print an action/progress message."""
    _emit("info", "→", message)


def step(message: str) -> None:
    _emit("muted", "•", message)


def transition(source: str, target: str) -> None:
    """Print a bootstrap state transition.

    Args:
        source: The state being left.
        target: The state being entered.

    """
    step(f"[state]{source}[/state] → [state]{target}[/state]")


def highlight(text: str) -> str:
    """Return text wrapped in highlight markup.

    Args:
        text: The text to highlight.

    Returns:
        Text wrapped in Rich markup for highlighting.

    """
    return f"[highlight]{text}[/highlight]"


@contextmanager
def spinner(message: str) -> Generator[None, None, None]:
    """Display a spinner while performing an operation.

    Args:
        message: The status message to display.

    Yields:
        None

    """
    with console.status(f"[info]{message}[/info]", spinner="dots"):
        yield


def summary_panel(title: str, items: dict[str, str]) -> None:
    """Print a summary panel with key-value pairs.

    Args:
        title: Title for the panel.
        items: Dictionary of label -> value pairs to display.

    """
    table = Table.grid(padding=(0, 2))
    table.add_column(style="bold")
    table.add_column(style="cyan")

    for label, value in items.items():
        table.add_row(f"{label}:", value)

    console.print(Panel(table, title=f"[bold]{title}[/bold]", border_style="green"))


def newline() -> None:
    """Print an empty line."""
    console.print()
