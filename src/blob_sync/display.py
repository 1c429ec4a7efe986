# src/blob_sync/display.py
"""
Consistent terminal styling for log lines and listings.

Helpers return rich markup. Log calls that use them pass `extra=MARKUP` so
the `RichHandler` renders the styles instead of printing the tags.
"""

from datetime import datetime, timezone
from typing import Dict, Iterable, Optional, Union

from rich.markup import escape
from rich.table import Table

from blob_sync.models import FileEntry

MARKUP: Dict[str, bool] = {"markup": True}


def escape_text(text: str) -> str:
    """Escapes square brackets so arbitrary text is not read as markup."""
    return escape(text)


def file_path(text: str) -> str:
    return f"[yellow]{escape(text)}[/yellow]"


def success(value: Union[str, int]) -> str:
    return f"[green]{escape(str(value))}[/green]"


def error(value: Union[str, int]) -> str:
    return f"[red]{escape(str(value))}[/red]"


def count(value: Union[str, int]) -> str:
    return f"[cyan]{escape(str(value))}[/cyan]"


def header(text: str) -> str:
    return f"[bold white]{escape(text)}[/bold white]"


def emphasis(text: str) -> str:
    return f"[white]{escape(text)}[/white]"


def format_file_status(name: str, action: str, details: Optional[str] = None) -> str:
    """
    Formats a per-file status line.

    Args:
        name (str): The file name.
        action (str): Already styled action, e.g. `success("✓ Uploaded")`.
        details (str, optional): Already styled trailing details.

    Returns:
        str: The markup line.
    """
    details_text: str = f" ({details})" if details else ""
    return f"{action} {file_path(name)}{details_text}"


def format_summary(label: str, value: int, total: Optional[int] = None) -> str:
    """Formats a `label: n` or `label: n/total` summary line."""
    if total is not None:
        return f"{label}: {count(value)}/{count(total)}"
    return f"{label}: {count(value)}"


def _format_date(timestamp: int) -> str:
    if not timestamp:
        return "-"
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).strftime("%Y-%m-%d %H:%M:%S")


def render_file_table(files: Iterable[FileEntry], title: Optional[str] = None) -> Table:
    """
    Builds a table of hashes, change dates and paths.

    Args:
        files (Iterable[FileEntry]): The entries to list.
        title (str, optional): Table title.

    Returns:
        Table: A rich table ready to print.
    """
    table: Table = Table(title=title, show_edge=False, header_style="bold white")
    table.add_column("sha256", style="dim", no_wrap=True)
    table.add_column("changed (UTC)", no_wrap=True)
    table.add_column("path", style="yellow")
    for entry in files:
        table.add_row(entry.sha256, _format_date(entry.changed_at), escape(entry.remote_path))
    return table
