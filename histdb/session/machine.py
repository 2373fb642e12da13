"""
histdb Session - Command start/finish state machine.

Per session id the machine is either Idle (no registry record) or
Running (one RunningEntry in the registry). A start moves Idle ->
Running or overwrites Running -> Running; a matching finish commits
the entry to its host log and moves back to Idle.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from uuid import UUID

from loguru import logger

from histdb.core.entry import Entry, RunningEntry
from histdb.core.types import FinishOutcome, StartOutcome, TimestampPolicy
from histdb.persistence.engine import StorageEngine


@dataclass
class FinishResult:
    """Result of a finish event."""

    outcome: FinishOutcome
    entry: Entry | None = None

    @property
    def committed(self) -> bool:
        return self.outcome == FinishOutcome.COMMITTED


class SessionStateMachine:
    """
    Correlates command start and finish events into entries.

    Not thread-safe on its own: the daemon calls the mutating methods
    from its single writer thread only.
    """

    def __init__(
        self,
        storage: StorageEngine,
        ignore_space: bool = True,
        finish_before_start: TimestampPolicy = TimestampPolicy.CLAMP,
    ):
        """
        Initialize the state machine.

        Args:
            storage: Storage engine holding the registry and host logs.
            ignore_space: Do not record commands starting with a space.
            finish_before_start: Policy for finish timestamps before the start.
        """
        self.storage = storage
        self.ignore_space = ignore_space
        self.finish_before_start = TimestampPolicy(finish_before_start)

    def on_start(
        self,
        session_id: UUID,
        command: str,
        pwd: Path,
        hostname: str,
        user: str,
        time_start: datetime,
    ) -> StartOutcome:
        """Register the command a session has started."""
        if self.storage.is_session_disabled(session_id):
            logger.debug(f"Session {session_id} is disabled, not recording")
            return StartOutcome.DISABLED

        if not command.strip() or (self.ignore_space and command.startswith(" ")):
            # Drop any stale command so the following finish is a no-op.
            self.storage.remove_running(session_id)
            logger.debug(f"Ignoring command for session {session_id}")
            return StartOutcome.IGNORED

        entry = RunningEntry(
            session_id=session_id,
            hostname=hostname,
            user=user,
            pwd=pwd,
            command=command,
            time_start=time_start,
        )
        previous = self.storage.get_running(session_id)
        if previous is not None:
            logger.info(f"🔄 Session {session_id} started a command without finishing the previous one, replacing it")
        self.storage.put_running(session_id, entry)
        return StartOutcome.RECORDED

    def on_finish(self, session_id: UUID, result: int, time_finished: datetime) -> FinishResult:
        """
        Commit the running command of a session.

        A finish without a matching start, including a repeated finish,
        changes nothing and reports NOT_FOUND.

        Raises:
            InvalidTimestampError: finish precedes start under the reject policy.
            StorageError: the entry could not be appended.
        """
        if self.storage.is_session_disabled(session_id):
            return FinishResult(FinishOutcome.DISABLED)

        running = self.storage.get_running(session_id)
        if running is None:
            logger.debug(f"No running command for session {session_id}")
            return FinishResult(FinishOutcome.NOT_FOUND)

        entry = running.finish(result, time_finished, self.finish_before_start)
        self.storage.append_entry(entry.hostname, entry)
        self.storage.remove_running(session_id)
        logger.debug(f"Committed command for session {session_id} (exit {result})")
        return FinishResult(FinishOutcome.COMMITTED, entry)

    def current(self, session_id: UUID) -> RunningEntry | None:
        return self.storage.get_running(session_id)

    def disable(self, session_id: UUID) -> None:
        """Stop recording a session; its running command is dropped."""
        self.storage.disable_session(session_id)
        logger.info(f"Recording disabled for session {session_id}")

    def enable(self, session_id: UUID) -> bool:
        enabled = self.storage.enable_session(session_id)
        if enabled:
            logger.info(f"Recording enabled for session {session_id}")
        return enabled
