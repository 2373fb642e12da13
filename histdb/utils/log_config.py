"""
histdb Utils - Logging settings.

The daemon keeps a rotating log file under ``$XDG_STATE_HOME/histdb``;
CLI invocations only log to stderr. Every setting can be overridden
with a ``HISTDB_LOG_*`` environment variable.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

LEVEL_ALIASES = {
    "WARN": "WARNING",
    "ERR": "ERROR",
    "CRIT": "CRITICAL",
    "FATAL": "CRITICAL",
}

COMPRESSIONS = ("gz", "zip", None)

ENV_VARS = {
    "log_dir": "HISTDB_LOG_DIR",
    "file_name": "HISTDB_LOG_FILE",
    "file_level": "HISTDB_LOG_FILE_LEVEL",
    "console_level": "HISTDB_LOG_CONSOLE_LEVEL",
    "rotation": "HISTDB_LOG_ROTATION",
    "retention": "HISTDB_LOG_RETENTION",
    "compression": "HISTDB_LOG_COMPRESSION",
}


class LogLevel(str, Enum):
    """loguru severity names."""

    TRACE = "TRACE"
    DEBUG = "DEBUG"
    INFO = "INFO"
    SUCCESS = "SUCCESS"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    @classmethod
    def from_string(cls, level: str) -> LogLevel:
        """Case-insensitive lookup that also accepts WARN, ERR, CRIT and FATAL."""
        name = level.strip().upper()
        name = LEVEL_ALIASES.get(name, name)
        if name not in cls.__members__:
            raise ValueError(f"Unknown log level: {level}")
        return cls[name]


def default_log_dir() -> Path:
    base = os.environ.get("XDG_STATE_HOME")
    return (Path(base) if base else Path.home() / ".local" / "state") / "histdb"


def _level(setting: str, value: str) -> str:
    try:
        return LogLevel.from_string(value).value
    except ValueError as e:
        raise ValueError(f"Invalid {setting}: {e}") from e


@dataclass
class LogConfig:
    """
    Sinks of the histdb logger.

    Attributes:
        log_dir: Directory of the daemon log file
        file_name: Daemon log file name
        file_level: Minimum severity written to the file
        console_level: Minimum severity written to stderr
        rotation: loguru rotation condition (e.g. "10 MB")
        retention: How long rotated files are kept (e.g. "1 week")
        compression: Compression of rotated files: gz, zip or None
    """

    log_dir: Path = field(default_factory=default_log_dir)
    file_name: str = "histdb.log"
    file_level: str = "INFO"
    console_level: str = "WARNING"
    rotation: str = "10 MB"
    retention: str = "1 week"
    compression: str | None = "gz"

    def __post_init__(self):
        self.log_dir = Path(self.log_dir).expanduser()
        self.file_level = _level("file_level", self.file_level)
        self.console_level = _level("console_level", self.console_level)
        if self.compression not in COMPRESSIONS:
            raise ValueError(
                f"compression must be one of {COMPRESSIONS}, got: {self.compression!r}"
            )

    @property
    def log_path(self) -> Path:
        return self.log_dir / self.file_name


def load_log_config(level: str | None = None) -> LogConfig:
    """
    Build the logging settings of this process.

    Args:
        level: The ``log_level`` setting; applies to both sinks.

    ``HISTDB_LOG_*`` environment variables win over ``level``.
    """
    values: dict[str, object] = {}
    if level:
        values["file_level"] = level
        values["console_level"] = level

    for name, env_var in ENV_VARS.items():
        raw = os.environ.get(env_var)
        if raw is None:
            continue
        if name == "compression" and raw.strip().lower() in ("", "none"):
            values[name] = None
        else:
            values[name] = raw

    return LogConfig(**values)
