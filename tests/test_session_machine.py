"""Tests for the session state machine."""

from __future__ import annotations

import uuid
from datetime import timedelta
from pathlib import Path

import pytest

from histdb.core.exceptions import InvalidTimestampError
from histdb.core.types import FinishOutcome, StartOutcome, TimestampPolicy
from histdb.persistence.engine import StorageEngine
from histdb.session.machine import SessionStateMachine

from .conftest import BASE_TIME


@pytest.fixture
def machine(storage: StorageEngine) -> SessionStateMachine:
    return SessionStateMachine(storage)


def start(machine: SessionStateMachine, session_id: uuid.UUID, command: str = "cargo build",
          offset: int = 0, hostname: str = "host-a") -> StartOutcome:
    return machine.on_start(
        session_id, command, Path("/src"), hostname, "user", BASE_TIME + timedelta(seconds=offset)
    )


class TestStartFinish:
    """Tests for the start/finish lifecycle."""

    def test_start_then_finish_commits_entry(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        assert start(machine, session_id) == StartOutcome.RECORDED

        result = machine.on_finish(session_id, 0, BASE_TIME + timedelta(seconds=7))

        assert result.committed
        assert result.entry.duration == timedelta(seconds=7)
        assert list(storage.read_all("host-a")) == [result.entry]
        assert machine.current(session_id) is None

    def test_entry_goes_to_its_own_host_log(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        start(machine, session_id, hostname="remote.example.org")
        machine.on_finish(session_id, 0, BASE_TIME)

        assert storage.list_hosts() == {"remote.example.org"}

    def test_orphan_finish_is_a_no_op(self, machine, storage) -> None:
        result = machine.on_finish(uuid.uuid4(), 0, BASE_TIME)
        assert result.outcome == FinishOutcome.NOT_FOUND
        assert result.entry is None
        assert storage.list_hosts() == set()

    def test_second_finish_is_a_no_op(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        start(machine, session_id)
        assert machine.on_finish(session_id, 0, BASE_TIME).committed

        again = machine.on_finish(session_id, 1, BASE_TIME + timedelta(seconds=1))
        assert again.outcome == FinishOutcome.NOT_FOUND
        assert len(list(storage.read_all("host-a"))) == 1

    def test_new_start_replaces_unfinished_command(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        start(machine, session_id, "first")
        start(machine, session_id, "second", offset=1)
        machine.on_finish(session_id, 0, BASE_TIME + timedelta(seconds=2))

        assert [e.command for e in storage.read_all("host-a")] == ["second"]

    def test_sessions_are_independent(self, machine, storage) -> None:
        one, two = uuid.uuid4(), uuid.uuid4()
        start(machine, one, "vim notes.md")
        start(machine, two, "htop")
        machine.on_finish(two, 0, BASE_TIME + timedelta(seconds=1))

        assert machine.current(one).command == "vim notes.md"
        assert [e.command for e in storage.read_all("host-a")] == ["htop"]


class TestIgnoredCommands:
    """Tests for commands that are never recorded."""

    def test_leading_space_is_ignored(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        assert start(machine, session_id, " export TOKEN=secret") == StartOutcome.IGNORED
        assert machine.on_finish(session_id, 0, BASE_TIME).outcome == FinishOutcome.NOT_FOUND
        assert storage.list_hosts() == set()

    def test_ignored_start_drops_stale_command(self, machine) -> None:
        session_id = uuid.uuid4()
        start(machine, session_id, "ls")
        start(machine, session_id, " secret")
        assert machine.current(session_id) is None

    def test_leading_space_recorded_when_option_off(self, storage) -> None:
        machine = SessionStateMachine(storage, ignore_space=False)
        session_id = uuid.uuid4()
        assert start(machine, session_id, " ls") == StartOutcome.RECORDED

    def test_blank_command_is_ignored(self, machine) -> None:
        assert start(machine, uuid.uuid4(), "   ") == StartOutcome.IGNORED


class TestTimestampPolicy:
    """Tests for finish events timestamped before their start."""

    def test_clamp(self, machine) -> None:
        session_id = uuid.uuid4()
        start(machine, session_id, offset=10)
        result = machine.on_finish(session_id, 0, BASE_TIME)
        assert result.entry.time_finished == result.entry.time_start

    def test_reject_keeps_running_entry(self, storage) -> None:
        machine = SessionStateMachine(storage, finish_before_start=TimestampPolicy.REJECT)
        session_id = uuid.uuid4()
        start(machine, session_id, offset=10)

        with pytest.raises(InvalidTimestampError):
            machine.on_finish(session_id, 0, BASE_TIME)

        assert machine.current(session_id) is not None
        assert storage.list_hosts() == set()


class TestDisabledSessions:
    """Tests for disabling and enabling recording."""

    def test_disabled_session_records_nothing(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        machine.disable(session_id)

        assert start(machine, session_id) == StartOutcome.DISABLED
        assert machine.on_finish(session_id, 0, BASE_TIME).outcome == FinishOutcome.DISABLED
        assert storage.list_hosts() == set()

    def test_disable_drops_running_command(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        start(machine, session_id)
        machine.disable(session_id)
        machine.enable(session_id)

        assert machine.on_finish(session_id, 0, BASE_TIME).outcome == FinishOutcome.NOT_FOUND

    def test_enable_resumes_recording(self, machine, storage) -> None:
        session_id = uuid.uuid4()
        machine.disable(session_id)
        assert machine.enable(session_id) is True

        start(machine, session_id)
        assert machine.on_finish(session_id, 0, BASE_TIME).committed
