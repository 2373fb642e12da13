"""
histdb Persistence - Storage engine.

Owns the data directory: the per-host logs and the in-flight registry.
Writes are expected to come from a single writer; reads open their own
file handles and may run concurrently.
"""

from __future__ import annotations

from collections.abc import Iterator
from pathlib import Path
from types import TracebackType
from uuid import UUID

from loguru import logger

from histdb.core.entry import Entry, RunningEntry
from histdb.persistence.host_log import HostLog, HostLogReader, list_host_logs
from histdb.persistence.registry import REGISTRY_FILE_NAME, RunningRegistry


class StorageEngine:
    """
    Durable history storage rooted at one data directory.

    Usage:
        with StorageEngine.open(data_dir) as storage:
            storage.append_entry(entry.hostname, entry)
            for entry in storage.read_all("my-host"):
                ...
    """

    def __init__(self, data_dir: Path, registry: RunningRegistry):
        self.data_dir = Path(data_dir)
        self.registry = registry
        self._closed = False

    @classmethod
    def open(cls, data_dir: Path) -> StorageEngine:
        """Create the data directory if needed and open the registry."""
        data_dir = Path(data_dir)
        data_dir.mkdir(parents=True, exist_ok=True)
        registry = RunningRegistry(data_dir / REGISTRY_FILE_NAME)
        logger.debug(f"📁 Storage opened: {data_dir}")
        return cls(data_dir, registry)

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self.registry.close()
        logger.debug(f"📁 Storage closed: {self.data_dir}")

    def __enter__(self) -> StorageEngine:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.close()

    # =========================================================================
    # Host logs
    # =========================================================================

    def host_log(self, hostname: str) -> HostLog:
        return HostLog(self.data_dir, hostname)

    def append_entry(self, hostname: str, entry: Entry) -> bool:
        """
        Durably append an entry to a host's log.

        Entries with a blank command are not stored.

        Returns:
            True if the entry was written.

        Raises:
            StorageError: the write could not be completed.
        """
        if not entry.command.strip():
            logger.debug(f"Skipping blank command for session {entry.session_id}")
            return False
        self.host_log(hostname).append(entry)
        return True

    def read_all(self, hostname: str) -> HostLogReader:
        """Lazy, restartable view of a host's log."""
        return self.host_log(hostname).reader()

    def read_all_reversed(self, hostname: str) -> Iterator[Entry]:
        """Lazy snapshot of a host's log, newest entry first."""
        return self.host_log(hostname).reader().newest_first()

    def list_hosts(self) -> set[str]:
        return set(list_host_logs(self.data_dir))

    # =========================================================================
    # In-flight registry
    # =========================================================================

    def put_running(self, session_id: UUID, entry: RunningEntry) -> None:
        if entry.session_id != session_id:
            raise ValueError(f"entry belongs to session {entry.session_id}, not {session_id}")
        self.registry.put(entry)

    def get_running(self, session_id: UUID) -> RunningEntry | None:
        return self.registry.get(session_id)

    def remove_running(self, session_id: UUID) -> bool:
        return self.registry.remove(session_id)

    def disable_session(self, session_id: UUID) -> None:
        self.registry.disable(session_id)

    def enable_session(self, session_id: UUID) -> bool:
        return self.registry.enable(session_id)

    def is_session_disabled(self, session_id: UUID) -> bool:
        return self.registry.is_disabled(session_id)
