"""
histdb Persistence - Per-host append-only history logs.

One CSV file per hostname under the data directory. Records are only
ever appended; every append is fsync'ed before it returns. The flat
line-oriented format keeps the files diff- and merge-friendly when the
data directory is kept under version control.
"""

from __future__ import annotations

import csv
import io
import os
from collections.abc import Iterator
from datetime import datetime
from pathlib import Path
from typing import BinaryIO
from uuid import UUID

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from histdb.core.entry import Entry
from histdb.core.exceptions import HostNotFoundError, StorageError, ValidationError

LOG_SUFFIX = ".csv"

FIELDS = (
    "time_finished",
    "time_start",
    "hostname",
    "pwd",
    "result",
    "session_id",
    "user",
    "command",
)


def log_file_name(hostname: str) -> str:
    """
    File name of the log for a hostname.

    The suffix is appended, never substituted: ``Path.with_suffix`` would
    turn ``web.example.com`` into ``web.example.csv``.
    """
    if not hostname or hostname in (".", "..") or "/" in hostname or "\x00" in hostname:
        raise ValidationError(f"Invalid hostname for a history log: {hostname!r}")
    return f"{hostname}{LOG_SUFFIX}"


def encode_entry(entry: Entry) -> str:
    """Encode one entry as a CSV record, line terminator included."""
    buffer = io.StringIO()
    csv.writer(buffer).writerow([
        entry.time_finished.isoformat(),
        entry.time_start.isoformat(),
        entry.hostname,
        str(entry.pwd),
        entry.result,
        str(entry.session_id),
        entry.user,
        entry.command,
    ])
    return buffer.getvalue()


def decode_entry(row: list[str]) -> Entry:
    """Decode one CSV record into an Entry."""
    if len(row) != len(FIELDS):
        raise ValueError(f"expected {len(FIELDS)} fields, got {len(row)}")
    values = dict(zip(FIELDS, row))
    return Entry(
        time_finished=datetime.fromisoformat(values["time_finished"]),
        time_start=datetime.fromisoformat(values["time_start"]),
        hostname=values["hostname"],
        pwd=Path(values["pwd"]),
        result=int(values["result"]),
        session_id=UUID(values["session_id"]),
        user=values["user"],
        command=values["command"],
    )


BLOCK_SIZE = 64 * 1024


class HostLogReader:
    """
    Restartable, lazy view of a host log.

    Every iteration opens the file afresh and reads only the bytes present
    when the iteration started, so rows appended mid-scan are not seen.
    A trailing record cut short by a crash is skipped.
    """

    def __init__(self, path: Path, hostname: str):
        self.path = path
        self.hostname = hostname

    def __iter__(self) -> Iterator[Entry]:
        with self._open() as handle:
            yield from self._forward(handle, os.fstat(handle.fileno()).st_size)

    def newest_first(self) -> Iterator[Entry]:
        """
        Lazy snapshot of the log, newest entry first.

        The file is read backwards in blocks, so a scan that stops early
        never reads or decodes the older records.
        """
        with self._open() as handle:
            limit = os.fstat(handle.fileno()).st_size
            group: list[bytes] = []
            quotes = 0
            first = True
            for line in _lines_backward(handle, limit, self.path):
                # A record ends where the quotes collected so far balance.
                group.append(line)
                quotes += line.count(b'"')
                if quotes % 2:
                    continue
                group.reverse()
                try:
                    entry = self._decode_record(b"".join(group))
                except StorageError:
                    if not first:
                        raise
                    # The newest record may have been cut inside a quoted
                    # field, which throws the quote pairing off.
                    break
                first = False
                group, quotes = [], 0
                if entry is not None:
                    yield entry
            else:
                if not group:
                    return

            # Nothing yielded yet: resolve the torn tail with a forward pass.
            handle.seek(0)
            entries = list(self._forward(handle, limit))
            yield from reversed(entries)

    def _open(self) -> BinaryIO:
        try:
            return open(self.path, "rb")
        except FileNotFoundError:
            raise HostNotFoundError(self.hostname) from None
        except OSError as e:
            raise StorageError("read", str(e), {"path": str(self.path)}) from e

    def _forward(self, handle: BinaryIO, limit: int) -> Iterator[Entry]:
        lines = _SnapshotLines(handle, limit)
        reader = csv.reader(lines, strict=True)
        first = True
        while True:
            try:
                row = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                if lines.exhausted:
                    logger.warning(f"⚠️ Ignoring incomplete trailing record in {self.path}")
                    return
                raise StorageError(
                    "read", f"malformed record: {e}", {"path": str(self.path), "line": reader.line_num}
                ) from e

            if first:
                first = False
                if tuple(row) == FIELDS:
                    continue

            try:
                yield decode_entry(row)
            except (ValueError, PydanticValidationError) as e:
                if lines.exhausted and lines.torn:
                    logger.warning(f"⚠️ Ignoring incomplete trailing record in {self.path}")
                    return
                raise StorageError(
                    "read", f"undecodable record: {e}", {"path": str(self.path), "line": reader.line_num}
                ) from e

    def _decode_record(self, record: bytes) -> Entry | None:
        """Decode one complete record; None for the header row."""
        text = record.decode("utf-8", errors="replace")
        try:
            rows = list(csv.reader(io.StringIO(text, newline=""), strict=True))
            if len(rows) != 1:
                raise ValueError(f"expected one record, got {len(rows)}")
            if tuple(rows[0]) == FIELDS:
                return None
            return decode_entry(rows[0])
        except (csv.Error, ValueError, PydanticValidationError) as e:
            raise StorageError("read", f"undecodable record: {e}", {"path": str(self.path)}) from e


def _lines_backward(handle: BinaryIO, limit: int, path: Path) -> Iterator[bytes]:
    """Complete lines of the first ``limit`` bytes, last line first."""
    position = limit
    pending = b""
    tail = True
    while position > 0:
        size = min(BLOCK_SIZE, position)
        position -= size
        handle.seek(position)
        pending = handle.read(size) + pending
        parts = pending.split(b"\n")
        pending = parts[0]
        for part in reversed(parts[1:]):
            if tail:
                # Bytes after the last newline belong to an unfinished write.
                tail = False
                if part:
                    logger.warning(f"⚠️ Ignoring incomplete trailing record in {path}")
                continue
            yield part + b"\n"

    if pending:
        if tail:
            logger.warning(f"⚠️ Ignoring incomplete trailing record in {path}")
        else:
            yield pending + b"\n"


class _SnapshotLines:
    """Decoded lines of a binary file, bounded to ``limit`` bytes."""

    def __init__(self, handle, limit: int):
        self._handle = handle
        self._remaining = limit
        self.exhausted = False
        self.torn = False

    def __iter__(self) -> _SnapshotLines:
        return self

    def __next__(self) -> str:
        if self._remaining <= 0:
            self.exhausted = True
            raise StopIteration
        line = self._handle.readline(self._remaining)
        self._remaining -= len(line)
        if not line:
            self.exhausted = True
            raise StopIteration
        if not line.endswith(b"\n"):
            # Unterminated tail: a write that never completed.
            self.exhausted = True
            self.torn = True
            raise StopIteration
        if self._remaining <= 0:
            self.exhausted = True
        return line.decode("utf-8", errors="replace")


class HostLog:
    """Append-only history log of one host."""

    def __init__(self, data_dir: Path, hostname: str):
        self.hostname = hostname
        self.path = Path(data_dir) / log_file_name(hostname)

    def exists(self) -> bool:
        return self.path.is_file()

    def append(self, entry: Entry) -> None:
        """
        Append one entry and fsync it.

        The header is written only when the file is new so appends never
        repeat it. The record is written with a single write call on an
        O_APPEND descriptor.

        Raises:
            StorageError: the record could not be made durable.
        """
        record = encode_entry(entry)
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd = os.open(self.path, os.O_WRONLY | os.O_APPEND | os.O_CREAT, 0o644)
            try:
                if os.fstat(fd).st_size == 0:
                    header = io.StringIO()
                    csv.writer(header).writerow(FIELDS)
                    record = header.getvalue() + record
                data = record.encode("utf-8")
                written = os.write(fd, data)
                if written != len(data):
                    raise OSError(f"short write ({written} of {len(data)} bytes)")
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            raise StorageError("append", str(e), {"path": str(self.path)}) from e

    def reader(self) -> HostLogReader:
        return HostLogReader(self.path, self.hostname)


def list_host_logs(data_dir: Path) -> list[str]:
    """Hostnames of every log in the data directory, sorted."""
    data_dir = Path(data_dir)
    if not data_dir.is_dir():
        return []
    return sorted(
        path.name[: -len(LOG_SUFFIX)]
        for path in data_dir.iterdir()
        if path.is_file() and path.name.endswith(LOG_SUFFIX) and len(path.name) > len(LOG_SUFFIX)
    )
