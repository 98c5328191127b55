"""CLI utilities for SessionKit.

This module provides common CLI utilities like Rich console output, the
level meter and log sink setup.
"""

import sys
from typing import Dict

from loguru import logger
from rich.console import Console
from rich.progress import BarColumn, Progress, TextColumn
from rich.table import Table
from rich.theme import Theme

# Create themed console for consistent output
_theme = Theme(
    {
        "info": "cyan",
        "success": "green",
        "warning": "yellow",
        "error": "bold red",
        "debug": "dim white",
    }
)

console = Console(theme=_theme)


def configure_logging(verbose: bool = False) -> None:
    """Route loguru output to stderr.

    ``enqueue=True`` hands records to a background writer so logging never
    blocks the caller.
    """
    logger.remove()
    logger.add(sys.stderr, level="DEBUG" if verbose else "WARNING", enqueue=True)


def make_info_table(rows: Dict[str, str]) -> Table:
    """Build a two-column key/value grid.

    Args:
        rows: Labels mapped to values, printed in insertion order.

    Returns:
        Configured Rich Table ready to print.
    """
    grid = Table.grid(padding=(0, 1))
    grid.add_column(style="dim", justify="right")
    grid.add_column()
    for label, value in rows.items():
        grid.add_row(f"{label}:", value)
    return grid


def make_level_progress() -> Progress:
    """Create a Rich Progress instance repurposed as a real-time level meter.

    Usage::

        with make_level_progress() as progress:
            task = progress.add_task("level", total=1.0, level_text="--")
            while recording:
                progress.update(task, completed=level, level_text=f"{level:.2f}")

    Returns:
        Configured Rich Progress instance (0-1 scale).
    """
    return Progress(
        TextColumn("📈 Audio Level"),
        BarColumn(
            bar_width=50,
            complete_style="green",
            finished_style="green",
            pulse_style="yellow",
        ),
        TextColumn("[bold]{task.fields[level_text]}[/bold]"),
        console=console,
        transient=False,
        expand=False,
    )


__all__ = ["console", "configure_logging", "make_info_table", "make_level_progress"]
