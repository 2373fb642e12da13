"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import shutil
import tempfile
import uuid
from collections.abc import Iterator
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from histdb.config.models import HistdbConfig
from histdb.core.entry import Entry
from histdb.daemon.client import DaemonClient
from histdb.daemon.server import HistoryDaemon
from histdb.persistence.engine import StorageEngine

BASE_TIME = datetime(2024, 3, 1, 12, 0, 0, tzinfo=UTC)


def make_entry(
    command: str = "ls -la",
    hostname: str = "host-a",
    offset: int = 0,
    duration: int = 1,
    result: int = 0,
    pwd: str = "/home/user",
    session_id: uuid.UUID | None = None,
    user: str = "user",
) -> Entry:
    """Build an entry finishing ``offset`` seconds after BASE_TIME."""
    time_finished = BASE_TIME + timedelta(seconds=offset)
    return Entry(
        session_id=session_id or uuid.uuid4(),
        hostname=hostname,
        user=user,
        pwd=Path(pwd),
        command=command,
        time_start=time_finished - timedelta(seconds=duration),
        time_finished=time_finished,
        result=result,
    )


@pytest.fixture
def data_dir(tmp_path: Path) -> Path:
    path = tmp_path / "data"
    path.mkdir()
    return path


@pytest.fixture
def storage(data_dir: Path) -> Iterator[StorageEngine]:
    """Storage engine over a temporary data directory."""
    engine = StorageEngine.open(data_dir)
    yield engine
    engine.close()


@pytest.fixture
def runtime_dir() -> Iterator[Path]:
    """Short runtime directory; Unix socket paths are limited to ~100 bytes."""
    path = Path(tempfile.mkdtemp(prefix="histdb-", dir="/tmp"))
    yield path / "run"
    shutil.rmtree(path, ignore_errors=True)


@pytest.fixture
def config(data_dir: Path, runtime_dir: Path) -> HistdbConfig:
    return HistdbConfig(data_dir=data_dir, runtime_dir=runtime_dir, hostname="host-a")


@pytest.fixture
def daemon(config: HistdbConfig) -> Iterator[HistoryDaemon]:
    """Daemon serving on a background thread."""
    service = HistoryDaemon(config)
    service.start()
    yield service
    service.shutdown()


@pytest.fixture
def client(daemon: HistoryDaemon) -> DaemonClient:
    return DaemonClient(daemon.socket_path, timeout=5.0)
