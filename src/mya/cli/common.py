"""Shared CLI utilities - colors, console, helpers."""

import asyncio
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import ParamSpec, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

# Color palette
ELECTRIC_PURPLE = "#e135ff"
NEON_CYAN = "#80ffea"
ELECTRIC_YELLOW = "#f1fa8c"
SUCCESS_GREEN = "#50fa7b"
ERROR_RED = "#ff6363"

# Shared console instance
console = Console()

# Type vars for async decorator
P = ParamSpec("P")
R = TypeVar("R")


def success(message: str) -> None:
    """Print a success message."""
    console.print(f"[{SUCCESS_GREEN}]✓[/{SUCCESS_GREEN}] {message}")


def error(message: str) -> None:
    """Print an error message."""
    console.print(f"[{ERROR_RED}]✗[/{ERROR_RED}] {message}")


def warn(message: str) -> None:
    """Print a warning message."""
    console.print(f"[{ELECTRIC_YELLOW}]![/{ELECTRIC_YELLOW}] {message}")


def info(message: str) -> None:
    """Print an info message."""
    console.print(f"[{NEON_CYAN}]→[/{NEON_CYAN}] {message}")


def hint(message: str) -> None:
    """Print a hint message."""
    console.print(f"[{ELECTRIC_YELLOW}]Hint:[/{ELECTRIC_YELLOW}] {message}")


def troubleshooting(title: str, steps: list[str]) -> None:
    """Print a titled list of troubleshooting steps."""
    console.print(f"\n[{ELECTRIC_YELLOW}]Troubleshooting:[/{ELECTRIC_YELLOW}] {title}")
    for step in steps:
        console.print(f"  [dim]- {step}[/dim]")


def create_table(title: str | None = None, *columns: str) -> Table:
    """Create a styled table."""
    table = Table(title=title, border_style=NEON_CYAN)
    for i, col in enumerate(columns):
        style = ELECTRIC_PURPLE if i == 0 else NEON_CYAN
        table.add_column(col, style=style)
    return table


def create_panel(content: str, title: str | None = None, subtitle: str | None = None) -> Panel:
    """Create a styled panel."""
    return Panel(
        content,
        title=f"[{ELECTRIC_PURPLE}]{title}[/{ELECTRIC_PURPLE}]" if title else None,
        subtitle=subtitle,
        border_style=NEON_CYAN,
    )


def spinner(_description: str = "") -> Progress:
    """Create a spinner progress indicator.

    Args:
        _description: Unused - callers add their own task descriptions.
    """
    return Progress(
        SpinnerColumn(style=NEON_CYAN),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    )


def run_async(func: Callable[P, Awaitable[R]]) -> Callable[P, R]:
    """Decorator to run async functions in sync context (for Typer commands)."""

    @wraps(func)
    def wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
        return asyncio.run(func(*args, **kwargs))

    return wrapper


def format_status(status: str) -> str:
    """Format a queued request status with appropriate color."""
    status_colors = {
        "queued": NEON_CYAN,
        "pending": NEON_CYAN,
        "processing": ELECTRIC_PURPLE,
        "completed": SUCCESS_GREEN,
        "failed": ERROR_RED,
    }
    color = status_colors.get(status.lower(), NEON_CYAN)
    return f"[{color}]{status}[/{color}]"
