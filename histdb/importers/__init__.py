"""
histdb Importers - Bring existing shell history into the host logs.

Sources are lazy iterables of entries with a ``skipped`` counter.
Importers write straight to the host logs and never touch the in-flight
registry, so they can run while the daemon is stopped.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from loguru import logger

from histdb.core.entry import Entry
from histdb.importers.histdb_sqlite import HistdbSqliteSource, default_histdb_path
from histdb.importers.histfile import HistfileSource, default_histfile_path, parse_header
from histdb.persistence.engine import StorageEngine


@dataclass
class ImportReport:
    """Result of one import run."""

    source: str
    imported: int = 0
    skipped: int = 0
    hosts: list[str] = field(default_factory=list)


def ingest(entries: Iterable[Entry], storage: StorageEngine, source: str = "") -> ImportReport:
    """
    Append every entry to the log of its own hostname.

    ``entries`` may carry a ``skipped`` count (the import sources do);
    it is added to the entries the storage engine itself declines.

    Raises:
        HistoryImportError: the source aborts on a bad record.
        StorageError: an append failed.
    """
    report = ImportReport(source=source or str(getattr(entries, "path", "")))
    hosts: set[str] = set()

    for entry in entries:
        if storage.append_entry(entry.hostname, entry):
            report.imported += 1
            hosts.add(entry.hostname)
        else:
            report.skipped += 1

    report.skipped += getattr(entries, "skipped", 0)
    report.hosts = sorted(hosts)
    logger.info(
        f"✅ Imported {report.imported} entries into {len(report.hosts)} host log(s), "
        f"skipped {report.skipped}"
    )
    return report


__all__ = [
    "HistdbSqliteSource",
    "HistfileSource",
    "ImportReport",
    "default_histdb_path",
    "default_histfile_path",
    "ingest",
    "parse_header",
]
