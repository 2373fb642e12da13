"""
histdb Core - Shared types and enums.
"""

from __future__ import annotations

from enum import IntEnum, StrEnum


class ExitCode(IntEnum):
    """Process exit status."""

    SUCCESS = 0
    FAILURE = 1
    DAEMON_NOT_RUNNING = 3
    STORAGE_FAILURE = 4


class TimestampPolicy(StrEnum):
    """What to do with a finish event timestamped before its start."""

    CLAMP = "clamp"
    REJECT = "reject"


class ImportErrorPolicy(StrEnum):
    """What to do with a malformed record during import."""

    SKIP = "skip"
    ABORT = "abort"


class StartOutcome(StrEnum):
    """Result of a command start event."""

    RECORDED = "recorded"
    IGNORED = "ignored"
    DISABLED = "disabled"


class FinishOutcome(StrEnum):
    """Result of a command finish event."""

    COMMITTED = "committed"
    NOT_FOUND = "not_found"
    DISABLED = "disabled"
