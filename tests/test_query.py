"""Tests for query filters and the query engine."""

from __future__ import annotations

import uuid
from pathlib import Path

import pytest
from pydantic import ValidationError as PydanticValidationError

from histdb.core.exceptions import HostNotFoundError
from histdb.persistence.engine import StorageEngine
from histdb.query.engine import QueryEngine
from histdb.query.filters import DEFAULT_LIMIT, QueryFilter, command_matches

from .conftest import make_entry


@pytest.fixture
def engine(storage: StorageEngine) -> QueryEngine:
    return QueryEngine(storage, local_hostname="host-a")


def add(storage: StorageEngine, **kwargs):
    entry = make_entry(**kwargs)
    storage.append_entry(entry.hostname, entry)
    return entry


class TestCommandMatches:
    """Tests for exact command matching."""

    def test_first_word(self) -> None:
        assert command_matches("git status", "git")
        assert not command_matches("gitk", "git")

    def test_argument_is_not_a_command(self) -> None:
        assert not command_matches("echo tr", "tr")

    def test_any_pipeline_segment(self) -> None:
        assert command_matches("cat log | grep error | tr -d ' '", "tr")
        assert command_matches("cat log |grep x", "grep")


class TestQueryFilter:
    """Tests for QueryFilter validation and predicates."""

    def test_defaults(self) -> None:
        query = QueryFilter()
        assert query.limit == DEFAULT_LIMIT == 25
        assert query.include_subdirs
        assert query.predicates() == []

    def test_invalid_regex_rejected(self) -> None:
        with pytest.raises(PydanticValidationError, match="invalid regular expression"):
            QueryFilter(include_regex="(unclosed")

    def test_hostname_and_all_hosts_exclusive(self) -> None:
        with pytest.raises(PydanticValidationError, match="mutually exclusive"):
            QueryFilter(hostname="x", all_hosts=True)

    def test_negative_limit_rejected(self) -> None:
        with pytest.raises(PydanticValidationError):
            QueryFilter(limit=-1)

    def test_folder_with_subdirs(self) -> None:
        query = QueryFilter(folder=Path("/proj"))
        assert query.matches(make_entry(pwd="/proj"))
        assert query.matches(make_entry(pwd="/proj/src"))
        assert not query.matches(make_entry(pwd="/project"))

    def test_folder_without_subdirs(self) -> None:
        query = QueryFilter(folder=Path("/proj"), include_subdirs=False)
        assert query.matches(make_entry(pwd="/proj"))
        assert not query.matches(make_entry(pwd="/proj/src"))

    def test_prefix_match(self) -> None:
        query = QueryFilter(command="git co", command_prefix=True)
        assert query.matches(make_entry(command="git commit -m x"))
        assert not query.matches(make_entry(command="git push"))

    def test_regexes(self) -> None:
        query = QueryFilter(include_regex=r"docker", exclude_regex=r"\bps\b")
        assert query.matches(make_entry(command="docker run -it alpine"))
        assert not query.matches(make_entry(command="docker ps"))

    def test_status_filters(self) -> None:
        assert QueryFilter(failed=True).matches(make_entry(result=1))
        assert not QueryFilter(failed=True).matches(make_entry(result=0))
        assert QueryFilter(status=127).matches(make_entry(result=127))
        assert not QueryFilter(status=127).matches(make_entry(result=1))

    def test_session_filter(self) -> None:
        session_id = uuid.uuid4()
        assert QueryFilter(session_id=session_id).matches(make_entry(session_id=session_id))
        assert not QueryFilter(session_id=session_id).matches(make_entry())


class TestQueryEngine:
    """Tests for QueryEngine.run."""

    def test_newest_first_and_limit(self, engine, storage) -> None:
        for i in range(40):
            add(storage, command=f"echo {i}", offset=i)

        result = engine.run(QueryFilter())

        assert len(result.entries) == 25
        assert result.entries[0].command == "echo 39"
        assert result.entries[-1].command == "echo 15"

    def test_limit_zero_returns_everything(self, engine, storage) -> None:
        for i in range(30):
            add(storage, offset=i)
        assert len(engine.run(QueryFilter(limit=0)).entries) == 30

    def test_limited_query_reads_only_the_newest_records(self, engine, storage, data_dir) -> None:
        add(storage, command="echo old", offset=1)
        with open(data_dir / "host-a.csv", "a") as f:
            f.write("garbage,row\n")
        add(storage, command="echo new", offset=2)

        result = engine.run(QueryFilter(limit=1))

        assert [e.command for e in result.entries] == ["echo new"]

    def test_local_host_by_default(self, engine, storage) -> None:
        add(storage, hostname="host-a", command="local")
        add(storage, hostname="host-b", command="remote")

        assert [e.command for e in engine.run(QueryFilter()).entries] == ["local"]
        assert [e.command for e in engine.run(QueryFilter(hostname="host-b")).entries] == ["remote"]

    def test_unknown_host(self, engine) -> None:
        with pytest.raises(HostNotFoundError):
            engine.run(QueryFilter(hostname="ghost"))

    def test_folder_and_failed_scenario(self, engine, storage) -> None:
        """Only failed commands run under the folder are returned."""
        add(storage, command="make", pwd="/proj", result=2, offset=1)
        add(storage, command="make", pwd="/proj/sub", result=0, offset=2)
        add(storage, command="pytest", pwd="/proj/sub", result=1, offset=3)
        add(storage, command="make", pwd="/elsewhere", result=2, offset=4)

        result = engine.run(QueryFilter(folder=Path("/proj"), failed=True))

        assert [(e.command, str(e.pwd)) for e in result.entries] == [
            ("pytest", "/proj/sub"),
            ("make", "/proj"),
        ]

    def test_all_hosts_merge_is_deterministic(self, engine, storage) -> None:
        add(storage, hostname="host-b", command="b1", offset=1)
        add(storage, hostname="host-a", command="a1", offset=2)
        add(storage, hostname="host-b", command="b-tie", offset=3)
        add(storage, hostname="host-a", command="a-tie", offset=3)
        add(storage, hostname="host-a", command="a-tie-later", offset=3)

        query = QueryFilter(all_hosts=True, limit=0)
        first = [e.command for e in engine.run(query).entries]
        second = [e.command for e in engine.run(query).entries]

        assert first == second
        # Equal finish times: hostname ascending, then later log position first.
        assert first == ["a-tie-later", "a-tie", "b-tie", "a1", "b1"]
        assert engine.run(query).hosts == ["host-a", "host-b"]

    def test_stats_cover_all_matches(self, engine, storage) -> None:
        for i in range(10):
            add(storage, offset=i, duration=2, result=1 if i % 2 else 0)

        result = engine.run(QueryFilter(limit=3, with_stats=True))

        assert len(result.entries) == 3
        assert result.stats.matched == 10
        assert result.stats.failed == 5
        assert result.stats.total_duration == pytest.approx(20.0)
        assert result.stats.mean_duration == pytest.approx(2.0)

    def test_no_stats_unless_requested(self, engine, storage) -> None:
        add(storage)
        assert engine.run(QueryFilter()).stats is None

    def test_query_does_not_modify_logs(self, engine, storage, data_dir) -> None:
        add(storage)
        before = (data_dir / "host-a.csv").read_bytes()
        engine.run(QueryFilter(with_stats=True))
        assert (data_dir / "host-a.csv").read_bytes() == before
