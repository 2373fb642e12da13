"""
histdb Persistence - Host logs and the in-flight registry.
"""

from histdb.persistence.engine import StorageEngine
from histdb.persistence.host_log import FIELDS, HostLog, HostLogReader, list_host_logs, log_file_name
from histdb.persistence.registry import REGISTRY_FILE_NAME, RunningRegistry

__all__ = [
    "FIELDS",
    "REGISTRY_FILE_NAME",
    "HostLog",
    "HostLogReader",
    "RunningRegistry",
    "StorageEngine",
    "list_host_logs",
    "log_file_name",
]
