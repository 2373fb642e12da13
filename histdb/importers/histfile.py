"""
histdb Importers - zsh extended history files.

Lines look like ``: <epoch>:<status>;<command>``. A command whose line
ends with a backslash continues on the following lines, one embedded
newline per backslash.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime
from pathlib import Path
from uuid import UUID

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from histdb.core.entry import Entry
from histdb.core.exceptions import HistoryImportError
from histdb.core.types import ImportErrorPolicy

SOURCE_NAME = "histfile"


def default_histfile_path() -> Path:
    histfile = os.environ.get("HISTFILE")
    return Path(histfile).expanduser() if histfile else Path.home() / ".zsh_history"


def parse_header(line: str) -> tuple[datetime, int, str]:
    """
    Split an extended history line into (time, status, command).

    Raises:
        ValueError: the line is not ``: <epoch>:<status>;<command>``.
    """
    if not line.startswith(":"):
        raise ValueError("line does not start with ':'")

    fields = line.split(":", 2)
    if len(fields) < 3:
        raise ValueError("missing timestamp")
    timestamp = fields[1].strip()

    code, sep, command = fields[2].partition(";")
    if not sep:
        raise ValueError("missing ';' before the command")

    try:
        time_finished = datetime.fromtimestamp(int(timestamp), tz=UTC)
    except (ValueError, OverflowError, OSError) as e:
        raise ValueError(f"invalid timestamp {timestamp!r}") from e
    try:
        result = int(code.strip())
    except ValueError as e:
        raise ValueError(f"invalid status {code!r}") from e

    return time_finished, result, command


class HistfileSource:
    """
    Lazy iterable of entries from a zsh history file.

    Every entry of one import shares a fresh session id. The history file
    records no directory, host or user, so they come from the importing
    environment.
    """

    def __init__(
        self,
        path: Path,
        hostname: str,
        user: str | None = None,
        pwd: Path | None = None,
        session_id: UUID | None = None,
        on_error: ImportErrorPolicy = ImportErrorPolicy.SKIP,
    ):
        self.path = Path(path)
        self.hostname = hostname
        self.user = user if user is not None else os.environ.get("USER", "")
        self.pwd = pwd or Path.home()
        self.session_id = session_id or uuid.uuid4()
        self.on_error = ImportErrorPolicy(on_error)
        self.skipped = 0

    def __iter__(self) -> Iterator[Entry]:
        self.skipped = 0
        try:
            handle = open(self.path, encoding="utf-8", errors="replace", newline="\n")
        except OSError as e:
            raise HistoryImportError(str(self.path), "file", e.strerror or str(e)) from e

        pending: tuple[int, datetime, int, list[str]] | None = None
        with handle:
            for number, raw in enumerate(handle, start=1):
                line = raw.rstrip("\n")

                if pending is not None:
                    start_line, time_finished, result, parts = pending
                    if line.endswith("\\"):
                        parts.append(line[:-1])
                        continue
                    parts.append(line)
                    pending = None
                    yield from self._entry(start_line, time_finished, result, "\n".join(parts))
                    continue

                try:
                    time_finished, result, command = parse_header(line)
                except ValueError as e:
                    self._skip(HistoryImportError(str(self.path), f"line {number}", str(e)))
                    continue

                if command.endswith("\\"):
                    pending = (number, time_finished, result, [command[:-1]])
                else:
                    yield from self._entry(number, time_finished, result, command)

        if pending is not None:
            start_line, time_finished, result, parts = pending
            yield from self._entry(start_line, time_finished, result, "\n".join(parts))

        logger.info(f"📥 Read {self.path}, skipped {self.skipped} line(s)")

    def _skip(self, error: HistoryImportError) -> None:
        if self.on_error == ImportErrorPolicy.ABORT:
            raise error
        self.skipped += 1
        logger.debug(f"Skipping record: {error.message}")

    def _entry(self, line: int, time_finished: datetime, result: int, command: str) -> Iterator[Entry]:
        if not command.strip():
            self._skip(HistoryImportError(str(self.path), f"line {line}", "empty command"))
            return
        try:
            entry = Entry(
                time_finished=time_finished,
                time_start=time_finished,
                hostname=self.hostname,
                pwd=self.pwd,
                result=result,
                session_id=self.session_id,
                user=self.user,
                command=command,
            )
        except PydanticValidationError as e:
            self._skip(HistoryImportError(str(self.path), f"line {line}", str(e).splitlines()[0]))
            return
        yield entry
