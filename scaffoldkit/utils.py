"""Shared utility functions for scaffoldkit.

Provides the Rich console used across the package, JSON I/O, file-system
helpers, name conversion helpers used to build canonical template
variables, and small formatting helpers for console output.
"""

from __future__ import annotations

import asyncio
import json
import re
from datetime import date
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.table import Table

console = Console()


# ---------------------------------------------------------------------------
# String / name helpers
# ---------------------------------------------------------------------------


def sanitize_name(name: str) -> str:
    """Convert an arbitrary project name to a safe directory/package name.

    * Lowercases the input.
    * Replaces spaces and non-alphanumeric characters (except hyphens and
      underscores) with hyphens.
    * Collapses consecutive hyphens and strips leading/trailing hyphens.

    Examples::

        sanitize_name("My Cool API") -> "my-cool-api"
        sanitize_name("  2FA (TOTP)  ") -> "2fa-totp"
    """
    result = re.sub(r"[^a-zA-Z0-9_-]", "-", name.strip().lower())
    result = re.sub(r"-+", "-", result)
    return result.strip("-")


def to_class_name(name: str) -> str:
    """Derive a PascalCase class name from a project name.

    The name is split into words on anything that is not a letter or digit
    and each word gets an upper-case first letter. Leading characters that
    cannot start an identifier are dropped::

        to_class_name("my-api") -> "MyApi"
        to_class_name("shop API") -> "ShopAPI"
        to_class_name("9lives") -> "Lives"
    """
    cleaned = re.sub(r"^[^a-zA-Z]+", "", name)
    words = re.split(r"[^a-zA-Z0-9]+", cleaned)
    return "".join(word[0].upper() + word[1:] for word in words if word)


def today_iso() -> str:
    """Return today's date as ``YYYY-MM-DD``."""
    return date.today().isoformat()


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    file_path = Path(path)
    raw = file_path.read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


async def save_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Save data as pretty-printed JSON.

    Parent directories are created automatically.  The write itself is
    performed in a worker thread to avoid blocking the event loop.
    """
    file_path = Path(path)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)
    await asyncio.to_thread(_write_text, file_path, content)


def _write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


# ---------------------------------------------------------------------------
# File-system helpers
# ---------------------------------------------------------------------------


def ensure_dir(path: str | Path) -> Path:
    """Create a directory (and parents) if it does not exist.

    Returns:
        The resolved ``Path`` object.
    """
    dir_path = Path(path)
    dir_path.mkdir(parents=True, exist_ok=True)
    return dir_path.resolve()


def make_dirs(path: str | Path) -> list[Path]:
    """Like ``mkdir -p`` but report which directories were actually created.

    The returned list is ordered outermost first, so removing it in reverse
    undoes the call.
    """
    dir_path = Path(path)
    missing: list[Path] = []
    current = dir_path
    while not current.exists() and current.parent != current:
        missing.append(current)
        current = current.parent
    dir_path.mkdir(parents=True, exist_ok=True)
    return list(reversed(missing))


def is_empty_dir(path: str | Path) -> bool:
    """Return ``True`` if *path* is an existing directory with no entries."""
    dir_path = Path(path)
    if not dir_path.is_dir():
        return False
    return next(dir_path.iterdir(), None) is None


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(0.042)  -> "42ms"
        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
    """
    if seconds < 0:
        return "0ms"
    if seconds < 1:
        return f"{round(seconds * 1000)}ms"

    minutes = int(seconds // 60)
    secs = seconds % 60
    if minutes > 0:
        return f"{minutes}m {int(secs)}s"
    return f"{secs:.1f}s"


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


def print_summary_table(
    rows: list[tuple[str, ...]],
    columns: list[str],
    title: str = "Summary",
) -> None:
    """Print a table with the given column headers and rows."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    for index, column in enumerate(columns):
        table.add_column(column, style="dim" if index == 0 else None, no_wrap=index == 0)

    for row in rows:
        table.add_row(*(str(cell) for cell in row))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
