"""
histdb Config - Configuration models.

Pydantic models for type-safe configuration.
"""

from __future__ import annotations

import os
import socket
from pathlib import Path
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

from histdb.core.types import ImportErrorPolicy, TimestampPolicy

SOCKET_NAME = "server_socket"


def default_data_dir() -> Path:
    """``$XDG_DATA_HOME/histdb``, falling back to ``~/.local/share/histdb``."""
    base = os.environ.get("XDG_DATA_HOME")
    return (Path(base) if base else Path.home() / ".local" / "share") / "histdb"


def default_runtime_dir() -> Path:
    """``$XDG_RUNTIME_DIR/histdb``, falling back to ``~/.cache/histdb``."""
    base = os.environ.get("XDG_RUNTIME_DIR")
    return (Path(base) if base else Path.home() / ".cache") / "histdb"


def default_config_path() -> Path:
    base = os.environ.get("XDG_CONFIG_HOME")
    return (Path(base) if base else Path.home() / ".config") / "histdb" / "config.yaml"


class HistdbConfig(BaseModel):
    """Settings read once at startup and passed to the core as plain values."""

    model_config = ConfigDict(extra="forbid")

    ignore_space: bool = Field(
        default=True, description="Do not record commands that start with a space"
    )
    log_level: Literal["trace", "debug", "info", "warning", "error"] = Field(
        default="warning", description="Minimum severity of diagnostic logging"
    )
    hostname: str | None = Field(
        default=None, description="Hostname to record instead of the system hostname"
    )
    data_dir: Path = Field(default_factory=default_data_dir, description="History data directory")
    runtime_dir: Path = Field(
        default_factory=default_runtime_dir, description="Directory holding the daemon socket"
    )
    finish_before_start: TimestampPolicy = Field(
        default=TimestampPolicy.CLAMP,
        description="clamp: finish time becomes the start time; reject: refuse the finish",
    )
    import_on_error: ImportErrorPolicy = Field(
        default=ImportErrorPolicy.SKIP,
        description="skip: skip and count malformed import records; abort: stop the import",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _lower_level(cls, value: object) -> object:
        return value.lower() if isinstance(value, str) else value

    @field_validator("data_dir", "runtime_dir")
    @classmethod
    def _expand(cls, value: Path) -> Path:
        return value.expanduser()

    @property
    def socket_path(self) -> Path:
        return self.runtime_dir / SOCKET_NAME

    def resolve_hostname(self) -> str:
        """Configured hostname, or the system hostname."""
        return self.hostname or socket.gethostname()
