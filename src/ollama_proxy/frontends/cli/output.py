"""Output formatting utilities for CLI commands."""

from __future__ import annotations

import json
import sys
from typing import Any, NoReturn

import rich_click as click


def print_table(
    headers: list[str],
    rows: list[list[str]],
    widths: list[int] | None = None,
    separator_width: int = 70,
) -> None:
    """Print a formatted table with headers.

    Args:
        headers: Column header strings
        rows: List of rows, each row is a list of cell values
        widths: Optional column widths. If None, sized to the widest cell.
        separator_width: Width of the separator line
    """
    if widths is None:
        widths = [
            max([len(h)] + [len(row[i]) for row in rows if i < len(row)])
            for i, h in enumerate(headers)
        ]

    # Last column doesn't need padding
    fmt = " ".join(f"{{:<{w}}}" for w in widths[:-1])
    fmt = f"{fmt} {{}}" if fmt else "{}"

    click.echo(fmt.format(*headers))
    click.echo("-" * separator_width)

    for row in rows:
        padded_row = list(row) + [""] * (len(headers) - len(row))
        click.echo(fmt.format(*padded_row[: len(headers)]))


def output_json(data: Any, indent: int = 2) -> None:
    """Output data as formatted JSON."""
    click.echo(json.dumps(data, indent=indent))


def format_size(size: int | None) -> str:
    """Human-readable byte size (e.g. ``4.1 GB``), or ``-`` when unknown."""
    if not size:
        return "-"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024:
            return f"{value:.1f} {unit}" if unit != "B" else f"{int(value)} B"
        value /= 1024
    return f"{value:.1f} TB"


def error_exit(message: str, code: int = 1) -> NoReturn:
    """Print error message and exit with code."""
    click.echo(f"Error: {message}", err=True)
    sys.exit(code)
