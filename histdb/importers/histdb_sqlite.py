"""
histdb Importers - zsh-histdb SQLite databases.

Reads the ``history`` table joined with ``places`` and ``commands``
through a cursor, one row at a time. Rows of the same
``(session, host)`` pair share one session id, derived from the database
path so every pass over the same file yields the same ids.
"""

from __future__ import annotations

import sqlite3
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from histdb.core.entry import Entry
from histdb.core.exceptions import HistoryImportError
from histdb.core.types import ImportErrorPolicy

SOURCE_NAME = "histdb"
SESSION_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "histdb:import:zsh-histdb")

HISTORY_QUERY = """
    SELECT history.id, history.session, history.exit_status, history.start_time,
           history.duration, places.host, places.dir, commands.argv
    FROM history
    LEFT JOIN places ON places.id = history.place_id
    LEFT JOIN commands ON commands.id = history.command_id
    ORDER BY history.id
"""


def default_histdb_path() -> Path:
    return Path.home() / ".histdb" / "zsh-history.db"


class HistdbSqliteSource:
    """
    Lazy iterable of entries from a zsh-histdb database.

    Records that cannot become an entry (no duration or exit status yet,
    empty command, missing host) are counted in ``skipped``, or raise
    HistoryImportError under the abort policy.
    """

    def __init__(self, path: Path, on_error: ImportErrorPolicy = ImportErrorPolicy.SKIP):
        self.path = Path(path)
        self.on_error = ImportErrorPolicy(on_error)
        self.skipped = 0

    def __iter__(self) -> Iterator[Entry]:
        self.skipped = 0
        if not self.path.is_file():
            raise HistoryImportError(str(self.path), "file", "no such file")

        try:
            conn = sqlite3.connect(f"file:{self.path}?mode=ro", uri=True)
        except sqlite3.Error as e:
            raise HistoryImportError(str(self.path), "file", str(e)) from e

        sessions: dict[tuple[int, str], UUID] = {}
        try:
            cursor = conn.execute(HISTORY_QUERY)
            for row in cursor:
                try:
                    yield self._convert(row, sessions)
                except HistoryImportError as e:
                    self._skip(e)
        except sqlite3.Error as e:
            raise HistoryImportError(str(self.path), "query", str(e)) from e
        finally:
            conn.close()

        logger.info(f"📥 Read {len(sessions)} session(s) from {self.path}, skipped {self.skipped}")

    def session_id(self, session: int, host: str) -> UUID:
        """Stable id of a zsh-histdb session of one host."""
        return uuid.uuid5(SESSION_NAMESPACE, f"{self.path.resolve()}:{session}:{host}")

    def _skip(self, error: HistoryImportError) -> None:
        if self.on_error == ImportErrorPolicy.ABORT:
            raise error
        self.skipped += 1
        logger.debug(f"Skipping record: {error.message}")

    def _convert(self, row: tuple, sessions: dict[tuple[int, str], UUID]) -> Entry:
        row_id, session, exit_status, start_time, duration, host, directory, argv = row
        location = f"history row {row_id}"

        def bad(reason: str) -> HistoryImportError:
            return HistoryImportError(str(self.path), location, reason)

        if duration is None or exit_status is None:
            raise bad("command never finished")
        if not argv or not str(argv).strip():
            raise bad("empty command")
        if not host:
            raise bad("missing host")

        key = (session, host)
        if key not in sessions:
            sessions[key] = self.session_id(session, host)
        session_id = sessions[key]
        try:
            time_start = datetime.fromtimestamp(int(start_time), tz=UTC)
            time_finished = time_start + timedelta(seconds=int(duration))
            return Entry(
                time_finished=time_finished,
                time_start=time_start,
                hostname=host,
                pwd=Path(directory or "/"),
                result=int(exit_status),
                session_id=session_id,
                user="",
                command=str(argv),
            )
        except (TypeError, ValueError, OverflowError, OSError, PydanticValidationError) as e:
            raise bad(str(e).splitlines()[0]) from e
