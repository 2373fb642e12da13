"""
histdb Query - Query engine.

Scans host logs newest-first and returns the entries matching a
QueryFilter. Each log is walked from its end; logs of several hosts are
merged by time_finished descending, ties broken by hostname ascending,
so the same query against unchanged logs always returns the same result.
"""

from __future__ import annotations

import heapq
from collections.abc import Iterator
from dataclasses import dataclass, field
from datetime import timedelta

from loguru import logger
from pydantic import BaseModel, Field

from histdb.core.entry import Entry
from histdb.core.exceptions import HostNotFoundError
from histdb.persistence.engine import StorageEngine
from histdb.query.filters import QueryFilter


class QueryStats(BaseModel):
    """Aggregates over every entry matching a query."""

    matched: int = 0
    failed: int = 0
    total_duration: float = Field(default=0.0, description="Seconds")
    mean_duration: float = Field(default=0.0, description="Seconds")


@dataclass
class QueryResult:
    """Entries of a query, newest first."""

    entries: list[Entry] = field(default_factory=list)
    stats: QueryStats | None = None
    hosts: list[str] = field(default_factory=list)


class QueryEngine:
    """
    Evaluates queries against the host logs of a storage engine.

    Read-only: every query opens its own snapshot of each log.
    """

    def __init__(self, storage: StorageEngine, local_hostname: str):
        self.storage = storage
        self.local_hostname = local_hostname

    def hosts_for(self, query: QueryFilter) -> list[str]:
        """Hostnames whose logs a query scans."""
        if query.all_hosts:
            return sorted(self.storage.list_hosts())

        hostname = query.hostname or self.local_hostname
        if not self.storage.host_log(hostname).exists():
            raise HostNotFoundError(hostname)
        return [hostname]

    def candidates(self, hosts: list[str]) -> Iterator[Entry]:
        """
        Entries of ``hosts``, newest first.

        Each log is read backwards lazily and the logs are merged on
        time_finished, so a limited query stops reading early.
        """
        streams = [self._keyed(rank, hostname) for rank, hostname in enumerate(hosts)]
        for _, entry in heapq.merge(*streams, key=lambda item: item[0], reverse=True):
            yield entry

    def _keyed(self, rank: int, hostname: str) -> Iterator[tuple[tuple, Entry]]:
        # Later log positions sort first on equal timestamps.
        for back, entry in enumerate(self.storage.read_all_reversed(hostname)):
            yield (entry.time_finished, -rank, -back), entry

    def run(self, query: QueryFilter) -> QueryResult:
        """
        Execute a query.

        Stops scanning once ``limit`` matches are found unless statistics
        over all matches were requested.

        Raises:
            HostNotFoundError: the requested host has no log.
            StorageError: a log could not be read.
        """
        hosts = self.hosts_for(query)
        checks = query.predicates()
        limit = query.limit

        entries: list[Entry] = []
        matched = 0
        failed = 0
        total = timedelta()

        candidates = self.candidates(hosts)
        try:
            for entry in candidates:
                if not all(check(entry) for check in checks):
                    continue

                if not limit or len(entries) < limit:
                    entries.append(entry)

                if not query.with_stats:
                    if limit and len(entries) >= limit:
                        break
                    continue

                matched += 1
                total += entry.duration
                if entry.failed:
                    failed += 1
        finally:
            candidates.close()

        stats = None
        if query.with_stats:
            seconds = total.total_seconds()
            stats = QueryStats(
                matched=matched,
                failed=failed,
                total_duration=seconds,
                mean_duration=seconds / matched if matched else 0.0,
            )

        logger.debug(f"Query over {len(hosts)} host(s) returned {len(entries)} entries")
        return QueryResult(entries=entries, stats=stats, hosts=hosts)
