"""
histdb UI - History display.

Rich tables for interactive use, tab-separated lines for pipes.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from pathlib import Path
from typing import IO, Any

from rich.console import Console
from rich.table import Table
from rich.text import Text
from rich.theme import Theme

from histdb.core.entry import Entry, RunningEntry
from histdb.query.engine import QueryStats

HISTDB_THEME = Theme(
    {
        "info": "cyan",
        "warning": "yellow",
        "error": "red bold",
        "success": "green",
        "muted": "dim",
        "failed": "red",
    }
)


@dataclass
class DisplayColumns:
    """Optional columns of the history table; time and command always show."""

    host: bool = False
    duration: bool = False
    status: bool = False
    session: bool = False
    pwd: bool = False
    header: bool = True

    def headers(self) -> list[str]:
        headers = ["tmn"]
        if self.host:
            headers.append("host")
        if self.duration:
            headers.append("duration")
        if self.status:
            headers.append("res")
        if self.session:
            headers.append("ses")
        if self.pwd:
            headers.append("pwd")
        headers.append("cmd")
        return headers


# =============================================================================
# Formatting
# =============================================================================

def format_timestamp(value: datetime, today: date | None = None) -> str:
    """Local HH:MM for today, the local date otherwise."""
    local = value.astimezone()
    today = today or datetime.now().astimezone().date()
    if local.date() == today:
        return local.strftime("%H:%M")
    return local.strftime("%Y-%m-%d")


def format_duration(duration: timedelta) -> str:
    """Compact duration such as ``250ms``, ``3s``, ``1m30s`` or ``2d4h``."""
    total_ms = max(0, int(duration.total_seconds() * 1000))
    if total_ms < 1000:
        return f"{total_ms}ms"

    seconds, ms = divmod(total_ms, 1000)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    days, hours = divmod(hours, 24)

    parts = [(days, "d"), (hours, "h"), (minutes, "m"), (seconds, "s")]
    text = "".join(f"{value}{unit}" for value, unit in parts if value)
    if not days and not hours and not minutes and ms:
        text += f"{ms}ms"
    return text


def format_session(entry: Entry) -> str:
    return entry.session_id.hex[:4]


def format_pwd(pwd: Path, home: Path | None = None) -> str:
    """Path with the home directory shown as ``~``."""
    home = home or Path.home()
    try:
        relative = pwd.relative_to(home)
    except ValueError:
        return str(pwd)
    return "~" if relative == Path(".") else f"~/{relative}"


def format_command(command: str, plain: bool) -> str:
    command = command.strip()
    return command.replace("\n", "\\n") if plain else command


def entry_row(entry: Entry, columns: DisplayColumns, plain: bool = False) -> list[str]:
    row = [format_timestamp(entry.time_finished)]
    if columns.host:
        row.append(entry.hostname)
    if columns.duration:
        row.append(format_duration(entry.duration))
    if columns.status:
        row.append(str(entry.result))
    if columns.session:
        row.append(format_session(entry))
    if columns.pwd:
        row.append(format_pwd(entry.pwd))
    row.append(format_command(entry.command, plain))
    return row


# =============================================================================
# Console
# =============================================================================

class HistoryUI:
    """
    Console output for the histdb CLI.

    Entries arrive newest first and are shown oldest first, so the most
    recent command ends up next to the prompt.
    """

    def __init__(self, file: IO[str] | None = None, theme: Theme | None = None) -> None:
        self.console = Console(file=file, theme=theme or HISTDB_THEME, highlight=False)
        self.err_console = Console(stderr=True, theme=theme or HISTDB_THEME, highlight=False)

    def print(self, *args: Any, **kwargs: Any) -> None:
        self.console.print(*args, **kwargs)

    def success(self, message: str) -> None:
        self.err_console.print(f"[success]{message}[/success]")

    def error(self, message: str) -> None:
        self.err_console.print(f"[error]{message}[/error]")

    def warning(self, message: str) -> None:
        self.err_console.print(f"[warning]{message}[/warning]")

    def line(self, text: str) -> None:
        """Print unstyled text without wrapping."""
        self.console.print(text, markup=False, soft_wrap=True)

    def entries(self, entries: list[Entry], columns: DisplayColumns, plain: bool = False) -> None:
        ordered = list(reversed(entries))

        if plain:
            if columns.header:
                self.line("\t".join(columns.headers()))
            for entry in ordered:
                self.line("\t".join(entry_row(entry, columns, plain=True)))
            return

        table = Table(show_header=columns.header, header_style="bold", box=None, pad_edge=False)
        for header in columns.headers():
            table.add_column(header, overflow="fold" if header == "cmd" else "ellipsis")

        for entry in ordered:
            style = "failed" if columns.status and entry.failed else None
            table.add_row(*(Text(cell) for cell in entry_row(entry, columns)), style=style)

        self.console.print(table)

    def stats(self, stats: QueryStats) -> None:
        table = Table(title="Statistics", show_header=False, box=None)
        table.add_column("metric", style="info")
        table.add_column("value")
        table.add_row("matched", str(stats.matched))
        table.add_row("failed", str(stats.failed))
        table.add_row("total duration", format_duration(timedelta(seconds=stats.total_duration)))
        table.add_row("mean duration", format_duration(timedelta(seconds=stats.mean_duration)))
        self.console.print(table)

    def running(self, entry: RunningEntry) -> None:
        started = format_timestamp(entry.time_start)
        self.line(f"{started}\t{entry.hostname}\t{format_pwd(entry.pwd)}\t{entry.command.strip()}")

    def hosts(self, hosts: list[str]) -> None:
        for hostname in hosts:
            self.line(hostname)
