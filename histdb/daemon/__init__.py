"""
histdb Daemon - Socket server, wire protocol and client.
"""

from histdb.daemon.client import DaemonClient
from histdb.daemon.protocol import Request, Response, ResponseStatus
from histdb.daemon.server import HistoryDaemon
from histdb.daemon.writer import WriterQueue, WriterStoppedError

__all__ = [
    "DaemonClient",
    "HistoryDaemon",
    "Request",
    "Response",
    "ResponseStatus",
    "WriterQueue",
    "WriterStoppedError",
]
