"""
histdb Persistence - In-flight command registry.

SQLite-backed key-value store mapping a session id to the command that
session is currently running. Survives daemon restarts. Also records
the sessions whose recording has been disabled.
"""

from __future__ import annotations

import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from uuid import UUID

from loguru import logger
from pydantic import ValidationError as PydanticValidationError

from histdb.core.entry import RunningEntry, utc_now
from histdb.core.exceptions import StorageError

REGISTRY_FILE_NAME = "running.sqlite3"


class RunningRegistry:
    """
    Persistent map of session id -> RunningEntry.

    Each operation runs in its own transaction and is committed with
    ``synchronous=FULL`` before returning.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)
        self._lock = threading.Lock()
        self._conn: sqlite3.Connection | None = None
        self._open()

    def _open(self) -> None:
        try:
            self.db_path.parent.mkdir(parents=True, exist_ok=True)
            conn = sqlite3.connect(self.db_path, check_same_thread=False, isolation_level=None)
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute("PRAGMA synchronous = FULL")
            conn.execute("""
                CREATE TABLE IF NOT EXISTS running (
                    session_id TEXT PRIMARY KEY,
                    payload TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
            """)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS disabled_sessions (
                    session_id TEXT PRIMARY KEY,
                    disabled_at TEXT NOT NULL
                )
            """)
        except sqlite3.Error as e:
            raise StorageError("open registry", str(e), {"path": str(self.db_path)}) from e
        self._conn = conn
        logger.debug(f"🗄️ Registry opened: {self.db_path}")

    def close(self) -> None:
        """Close the underlying database. Safe to call twice."""
        with self._lock:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
                logger.debug("🗄️ Registry closed")

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[sqlite3.Connection]:
        with self._lock:
            if self._conn is None:
                raise StorageError(operation, "registry is closed", {"path": str(self.db_path)})
            try:
                self._conn.execute("BEGIN IMMEDIATE")
                try:
                    yield self._conn
                except BaseException:
                    self._conn.execute("ROLLBACK")
                    raise
                self._conn.execute("COMMIT")
            except sqlite3.Error as e:
                raise StorageError(operation, str(e), {"path": str(self.db_path)}) from e

    # =========================================================================
    # Running commands
    # =========================================================================

    def put(self, entry: RunningEntry) -> None:
        """Store the running command of a session, replacing any previous one."""
        with self._transaction("put running") as conn:
            conn.execute(
                """
                INSERT INTO running (session_id, payload, updated_at)
                VALUES (?, ?, ?)
                ON CONFLICT(session_id) DO UPDATE SET
                    payload = excluded.payload,
                    updated_at = excluded.updated_at
                """,
                (str(entry.session_id), entry.model_dump_json(), utc_now().isoformat()),
            )

    def get(self, session_id: UUID) -> RunningEntry | None:
        with self._transaction("get running") as conn:
            row = conn.execute(
                "SELECT payload FROM running WHERE session_id = ?", (str(session_id),)
            ).fetchone()
        if row is None:
            return None
        try:
            return RunningEntry.model_validate_json(row[0])
        except PydanticValidationError as e:
            raise StorageError("get running", f"corrupt registry record: {e}",
                               {"session_id": str(session_id)}) from e

    def remove(self, session_id: UUID) -> bool:
        """Remove the running command of a session. Returns False if there was none."""
        with self._transaction("remove running") as conn:
            cursor = conn.execute("DELETE FROM running WHERE session_id = ?", (str(session_id),))
            return cursor.rowcount > 0

    def running_sessions(self) -> list[UUID]:
        with self._transaction("list running") as conn:
            rows = conn.execute("SELECT session_id FROM running ORDER BY session_id").fetchall()
        return [UUID(row[0]) for row in rows]

    # =========================================================================
    # Disabled sessions
    # =========================================================================

    def disable(self, session_id: UUID) -> None:
        """Mark a session as not recorded and drop its running command."""
        with self._transaction("disable session") as conn:
            conn.execute(
                "INSERT OR REPLACE INTO disabled_sessions (session_id, disabled_at) VALUES (?, ?)",
                (str(session_id), utc_now().isoformat()),
            )
            conn.execute("DELETE FROM running WHERE session_id = ?", (str(session_id),))

    def enable(self, session_id: UUID) -> bool:
        with self._transaction("enable session") as conn:
            cursor = conn.execute(
                "DELETE FROM disabled_sessions WHERE session_id = ?", (str(session_id),)
            )
            return cursor.rowcount > 0

    def is_disabled(self, session_id: UUID) -> bool:
        with self._transaction("check disabled session") as conn:
            row = conn.execute(
                "SELECT 1 FROM disabled_sessions WHERE session_id = ?", (str(session_id),)
            ).fetchone()
        return row is not None
