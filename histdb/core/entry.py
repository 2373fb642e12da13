"""
histdb Core - Entry model.

Pydantic models for a finished command (Entry) and a command that has
started but not finished yet (RunningEntry).
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from pathlib import Path
from uuid import UUID

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from histdb.core.exceptions import InvalidTimestampError
from histdb.core.types import TimestampPolicy


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def as_utc(value: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class RunningEntry(BaseModel):
    """A command that has started and not finished yet."""

    model_config = ConfigDict(frozen=True)

    session_id: UUID
    hostname: str
    user: str = ""
    pwd: Path
    command: str
    time_start: datetime = Field(default_factory=utc_now)

    @field_validator("time_start")
    @classmethod
    def _normalize_time_start(cls, value: datetime) -> datetime:
        return as_utc(value)

    def finish(
        self,
        result: int,
        time_finished: datetime,
        policy: TimestampPolicy = TimestampPolicy.CLAMP,
    ) -> Entry:
        """
        Build the finished Entry for this command.

        Args:
            result: Exit status of the command.
            time_finished: When the command finished.
            policy: How to treat a finish timestamp earlier than the start.

        Raises:
            InvalidTimestampError: finish precedes start and policy is REJECT.
        """
        time_finished = as_utc(time_finished)

        if time_finished < self.time_start:
            if policy == TimestampPolicy.REJECT:
                raise InvalidTimestampError(
                    str(self.session_id),
                    self.time_start.isoformat(),
                    time_finished.isoformat(),
                )
            skew = self.time_start - time_finished
            logger.warning(
                f"⏱️ Finish for session {self.session_id} precedes start by {skew}, "
                "clamping to start time"
            )
            time_finished = self.time_start

        return Entry(
            session_id=self.session_id,
            hostname=self.hostname,
            user=self.user,
            pwd=self.pwd,
            command=self.command,
            time_start=self.time_start,
            time_finished=time_finished,
            result=result,
        )


class Entry(BaseModel):
    """One finished command. Immutable once written to a host log."""

    model_config = ConfigDict(frozen=True)

    session_id: UUID
    hostname: str
    user: str = ""
    pwd: Path
    command: str
    time_start: datetime
    time_finished: datetime
    result: int

    @field_validator("time_start", "time_finished")
    @classmethod
    def _normalize_times(cls, value: datetime) -> datetime:
        return as_utc(value)

    @model_validator(mode="after")
    def _check_order(self) -> Entry:
        if self.time_finished < self.time_start:
            raise ValueError("time_finished must not precede time_start")
        return self

    @property
    def duration(self) -> timedelta:
        """Wall time between start and finish."""
        return self.time_finished - self.time_start

    @property
    def failed(self) -> bool:
        """True when the command exited with a non-zero status."""
        return self.result != 0
