"""
histdb Core - Entry model, shared types and errors.
"""

from histdb.core.entry import Entry, RunningEntry, as_utc, utc_now
from histdb.core.exceptions import (
    ConfigError,
    DaemonAlreadyRunningError,
    DaemonNotRunningError,
    HistdbError,
    HistoryImportError,
    HostNotFoundError,
    InvalidTimestampError,
    NotFoundError,
    ProtocolError,
    RunningCommandNotFoundError,
    StorageError,
    ValidationError,
)
from histdb.core.types import (
    ExitCode,
    FinishOutcome,
    ImportErrorPolicy,
    StartOutcome,
    TimestampPolicy,
)

__all__ = [
    "ConfigError",
    "DaemonAlreadyRunningError",
    "DaemonNotRunningError",
    "Entry",
    "ExitCode",
    "FinishOutcome",
    "HistdbError",
    "HistoryImportError",
    "HostNotFoundError",
    "ImportErrorPolicy",
    "InvalidTimestampError",
    "NotFoundError",
    "ProtocolError",
    "RunningCommandNotFoundError",
    "RunningEntry",
    "StartOutcome",
    "StorageError",
    "TimestampPolicy",
    "ValidationError",
    "as_utc",
    "utc_now",
]
