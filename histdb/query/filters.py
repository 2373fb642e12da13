"""
histdb Query - Filter predicates.

A QueryFilter is a conjunction of optional predicates over entries plus
the scan options (hosts, limit, statistics).
"""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from histdb.core.entry import Entry

DEFAULT_LIMIT = 25

Predicate = Callable[[Entry], bool]


def command_matches(entry_command: str, command: str) -> bool:
    """
    True when any pipeline segment of ``entry_command`` runs ``command``.

    Only the first word of each ``|``-separated segment counts, so
    ``echo tr`` does not match ``tr`` while ``echo x | tr -d ' '`` does.
    """
    for segment in entry_command.split("|"):
        words = segment.split()
        if words and words[0] == command:
            return True
    return False


class QueryFilter(BaseModel):
    """Filters and options of one history query."""

    model_config = ConfigDict(frozen=True)

    hostname: str | None = Field(default=None, description="Only entries of this host")
    all_hosts: bool = Field(default=False, description="Scan the logs of every host")
    folder: Path | None = Field(default=None, description="Only entries run in this directory")
    include_subdirs: bool = Field(default=True, description="Also match subdirectories of folder")
    command: str | None = Field(default=None, description="Command name or prefix")
    command_prefix: bool = Field(default=False, description="Match command as a text prefix")
    include_regex: str | None = Field(default=None, description="Command must match this regex")
    exclude_regex: str | None = Field(default=None, description="Command must not match this regex")
    session_id: UUID | None = Field(default=None, description="Only entries of this session")
    failed: bool = Field(default=False, description="Only entries with a non-zero exit status")
    status: int | None = Field(default=None, description="Only entries with this exit status")
    limit: int = Field(default=DEFAULT_LIMIT, ge=0, description="Max entries returned, 0 for all")
    with_stats: bool = Field(default=False, description="Compute statistics over all matches")

    @field_validator("include_regex", "exclude_regex")
    @classmethod
    def _check_regex(cls, value: str | None) -> str | None:
        if value is not None:
            try:
                re.compile(value)
            except re.error as e:
                raise ValueError(f"invalid regular expression {value!r}: {e}") from e
        return value

    @model_validator(mode="after")
    def _check_hosts(self) -> QueryFilter:
        if self.all_hosts and self.hostname is not None:
            raise ValueError("hostname and all_hosts are mutually exclusive")
        return self

    def predicates(self) -> list[Predicate]:
        """Active predicates, cheapest first."""
        checks: list[Predicate] = []

        if self.session_id is not None:
            session_id = self.session_id
            checks.append(lambda e: e.session_id == session_id)

        if self.failed:
            checks.append(lambda e: e.result != 0)

        if self.status is not None:
            status = self.status
            checks.append(lambda e: e.result == status)

        if self.folder is not None:
            folder = self.folder
            if self.include_subdirs:
                checks.append(lambda e: e.pwd.is_relative_to(folder))
            else:
                checks.append(lambda e: e.pwd == folder)

        if self.command is not None:
            command = self.command
            if self.command_prefix:
                checks.append(lambda e: e.command.startswith(command))
            else:
                checks.append(lambda e: command_matches(e.command, command))

        if self.include_regex is not None:
            include = re.compile(self.include_regex)
            checks.append(lambda e: include.search(e.command) is not None)

        if self.exclude_regex is not None:
            exclude = re.compile(self.exclude_regex)
            checks.append(lambda e: exclude.search(e.command) is None)

        return checks

    def matches(self, entry: Entry) -> bool:
        return all(check(entry) for check in self.predicates())
