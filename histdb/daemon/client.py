"""
histdb Daemon - Client for the local socket.

One connection per request, as the daemon expects.
"""

from __future__ import annotations

import socket
from pathlib import Path
from uuid import UUID

from loguru import logger

from histdb.core.exceptions import DaemonNotRunningError
from histdb.daemon.protocol import (
    CurrentlyRunning,
    DisableSession,
    EnableSession,
    FinishCommand,
    ListHosts,
    NewSession,
    Ping,
    Query,
    Request,
    Response,
    StartCommand,
    Stop,
    encode_request,
    read_response,
)
from histdb.query.filters import QueryFilter

DEFAULT_TIMEOUT = 10.0


class DaemonClient:
    """
    Talks to a running history daemon.

    Usage:
        client = DaemonClient(config.socket_path)
        session_id = client.new_session().session_id
    """

    def __init__(self, socket_path: Path, timeout: float = DEFAULT_TIMEOUT):
        self.socket_path = Path(socket_path)
        self.timeout = timeout

    def request(self, request: Request) -> Response:
        """
        Send one request and wait for its response.

        Raises:
            DaemonNotRunningError: no daemon listens on the socket.
            ProtocolError: the response could not be decoded.
        """
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        with sock:
            try:
                sock.connect(str(self.socket_path))
            except (FileNotFoundError, ConnectionRefusedError) as e:
                raise DaemonNotRunningError(str(self.socket_path), str(e)) from e

            logger.debug(f"Sending {request.kind} request")
            sock.sendall(encode_request(request))
            return read_response(sock)

    # =========================================================================
    # Convenience
    # =========================================================================

    def start_command(self, **fields) -> Response:
        return self.request(StartCommand(**fields))

    def finish_command(self, session_id: UUID, result: int, **fields) -> Response:
        return self.request(FinishCommand(session_id=session_id, result=result, **fields))

    def new_session(self) -> Response:
        return self.request(NewSession())

    def query(self, query_filter: QueryFilter | None = None) -> Response:
        return self.request(Query(filter=query_filter or QueryFilter()))

    def currently_running(self, session_id: UUID) -> Response:
        return self.request(CurrentlyRunning(session_id=session_id))

    def disable_session(self, session_id: UUID) -> Response:
        return self.request(DisableSession(session_id=session_id))

    def enable_session(self, session_id: UUID) -> Response:
        return self.request(EnableSession(session_id=session_id))

    def list_hosts(self) -> Response:
        return self.request(ListHosts())

    def ping(self) -> Response:
        return self.request(Ping())

    def stop(self) -> Response:
        return self.request(Stop())
