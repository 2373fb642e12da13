"""Tests for the entry models."""

from __future__ import annotations

import uuid
from datetime import UTC, datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from histdb.core.entry import Entry, RunningEntry, as_utc
from histdb.core.exceptions import InvalidTimestampError
from histdb.core.types import TimestampPolicy

from .conftest import BASE_TIME, make_entry


def running(time_start: datetime = BASE_TIME) -> RunningEntry:
    return RunningEntry(
        session_id=uuid.uuid4(),
        hostname="host-a",
        user="user",
        pwd=Path("/tmp"),
        command="make test",
        time_start=time_start,
    )


class TestAsUtc:
    """Tests for timestamp normalization."""

    def test_naive_is_taken_as_utc(self) -> None:
        naive = datetime(2024, 1, 1, 10, 0)
        assert as_utc(naive) == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)

    def test_aware_is_converted(self) -> None:
        paris = timezone(timedelta(hours=1))
        value = datetime(2024, 1, 1, 11, 0, tzinfo=paris)
        assert as_utc(value) == datetime(2024, 1, 1, 10, 0, tzinfo=UTC)
        assert as_utc(value).tzinfo == UTC


class TestRunningEntryFinish:
    """Tests for RunningEntry.finish."""

    def test_finish_copies_fields(self) -> None:
        start = running()
        entry = start.finish(2, BASE_TIME + timedelta(seconds=5))

        assert entry.session_id == start.session_id
        assert entry.command == "make test"
        assert entry.result == 2
        assert entry.duration == timedelta(seconds=5)
        assert entry.failed

    def test_finish_before_start_is_clamped(self) -> None:
        """The default policy clamps the finish time to the start time."""
        entry = running().finish(0, BASE_TIME - timedelta(seconds=3))
        assert entry.time_finished == BASE_TIME
        assert entry.duration == timedelta(0)

    def test_finish_before_start_rejected(self) -> None:
        with pytest.raises(InvalidTimestampError) as exc_info:
            running().finish(0, BASE_TIME - timedelta(seconds=3), TimestampPolicy.REJECT)
        assert "finished before it started" in exc_info.value.message

    def test_running_entry_is_frozen(self) -> None:
        with pytest.raises(PydanticValidationError):
            running().command = "other"  # type: ignore[misc]


class TestEntry:
    """Tests for Entry validation."""

    def test_finish_before_start_is_invalid(self) -> None:
        with pytest.raises(PydanticValidationError):
            Entry(
                session_id=uuid.uuid4(),
                hostname="host-a",
                pwd=Path("/"),
                command="ls",
                time_start=BASE_TIME,
                time_finished=BASE_TIME - timedelta(seconds=1),
                result=0,
            )

    def test_success_is_not_failed(self) -> None:
        assert not make_entry(result=0).failed

    def test_json_round_trip_keeps_multiline_command(self) -> None:
        entry = make_entry(command="for i in 1 2\ndo echo $i\ndone")
        assert Entry.model_validate_json(entry.model_dump_json()) == entry
