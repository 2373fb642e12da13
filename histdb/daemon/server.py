"""
histdb Daemon - Local socket server.

Listens on a Unix stream socket, handles each client connection on its
own thread and routes every mutation through the single writer queue.

Shutdown (SIGTERM/SIGINT or a Stop request) sets one stop event; the
accept loop notices it, connection workers finish, the writer drains
its queue and the storage engine is closed.
"""

from __future__ import annotations

import os
import signal
import socket
import threading
from pathlib import Path

from loguru import logger

from histdb import __version__
from histdb.config.models import HistdbConfig
from histdb.core.exceptions import (
    DaemonAlreadyRunningError,
    HistdbError,
    HostNotFoundError,
    InvalidTimestampError,
    ProtocolError,
    RunningCommandNotFoundError,
    StorageError,
    ValidationError,
)
from histdb.core.types import ExitCode, FinishOutcome, StartOutcome
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
    ResponseStatus,
    StartCommand,
    Stop,
    encode_response,
    new_session_id,
    read_request,
)
from histdb.daemon.writer import WriterQueue, WriterStoppedError
from histdb.persistence.engine import StorageEngine
from histdb.query.engine import QueryEngine
from histdb.session.machine import SessionStateMachine

ACCEPT_POLL_INTERVAL = 0.2
CLIENT_TIMEOUT = 10.0
LISTEN_BACKLOG = 128

_START_STATUS = {
    StartOutcome.RECORDED: ResponseStatus.OK,
    StartOutcome.IGNORED: ResponseStatus.IGNORED,
    StartOutcome.DISABLED: ResponseStatus.DISABLED,
}

_FINISH_STATUS = {
    FinishOutcome.COMMITTED: ResponseStatus.OK,
    FinishOutcome.NOT_FOUND: ResponseStatus.NOT_FOUND,
    FinishOutcome.DISABLED: ResponseStatus.DISABLED,
}


class HistoryDaemon:
    """
    The history daemon service.

    Owns the storage engine, the state machine, the query engine and the
    writer queue; connection workers reach them only through this object.

    Usage:
        daemon = HistoryDaemon(config)
        exit_code = daemon.serve_forever()
    """

    def __init__(self, config: HistdbConfig, storage: StorageEngine | None = None):
        self.config = config
        self.socket_path = Path(config.socket_path)
        self.hostname = config.resolve_hostname()

        self.storage = storage or StorageEngine.open(config.data_dir)
        self.machine = SessionStateMachine(
            self.storage,
            ignore_space=config.ignore_space,
            finish_before_start=config.finish_before_start,
        )
        self.queries = QueryEngine(self.storage, self.hostname)
        self.writer = WriterQueue(on_fatal=self._on_fatal)

        self.stopping = threading.Event()
        self._fatal: StorageError | None = None
        self._server: socket.socket | None = None
        self._accept_thread: threading.Thread | None = None
        self._workers: set[threading.Thread] = set()
        self._workers_lock = threading.Lock()
        self._shutdown_lock = threading.Lock()
        self._shut_down = False

    # =========================================================================
    # Lifecycle
    # =========================================================================

    @property
    def exit_code(self) -> ExitCode:
        return ExitCode.STORAGE_FAILURE if self._fatal is not None else ExitCode.SUCCESS

    def bind(self) -> None:
        """Create the runtime directory and listen on the socket."""
        runtime_dir = self.socket_path.parent
        runtime_dir.mkdir(parents=True, exist_ok=True)
        os.chmod(runtime_dir, 0o700)

        if self.socket_path.exists():
            if _socket_alive(self.socket_path):
                raise DaemonAlreadyRunningError(
                    f"A histdb daemon is already listening on {self.socket_path}",
                    {"socket_path": str(self.socket_path)},
                )
            logger.info(f"🧹 Removing stale socket {self.socket_path}")
            self.socket_path.unlink()

        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        try:
            server.bind(str(self.socket_path))
            os.chmod(self.socket_path, 0o600)
            server.listen(LISTEN_BACKLOG)
            server.settimeout(ACCEPT_POLL_INTERVAL)
        except OSError:
            server.close()
            raise
        self._server = server
        logger.info(f"🌐 Listening on {self.socket_path} as host {self.hostname}")

    def _bind_or_close(self) -> None:
        try:
            self.bind()
        except Exception:
            self._shut_down = True
            self.storage.close()
            raise

    def start(self) -> None:
        """Bind and serve on a background thread."""
        self._bind_or_close()
        self.writer.start()
        self._accept_thread = threading.Thread(
            target=self._accept_loop, name="histdb-accept", daemon=True
        )
        self._accept_thread.start()

    def serve_forever(self, handle_signals: bool = True) -> ExitCode:
        """Serve until stopped, then shut down. Returns the process exit code."""
        if handle_signals:
            self._install_signal_handlers()
        self._bind_or_close()
        self.writer.start()
        try:
            self._accept_loop()
        finally:
            self.shutdown()
        return self.exit_code

    def request_stop(self) -> None:
        """Ask the daemon to stop. Repeated calls are no-ops."""
        if self.stopping.is_set():
            return
        self.stopping.set()
        logger.info("🔒 Stop requested")

    def wait(self, timeout: float | None = None) -> bool:
        """Wait for the daemon started with ``start`` to stop and shut it down."""
        if not self.stopping.wait(timeout):
            return False
        self.shutdown()
        return True

    def shutdown(self) -> None:
        """
        Stop accepting, finish open connections, drain the writer and close
        storage. Idempotent.
        """
        self.request_stop()
        with self._shutdown_lock:
            if self._shut_down:
                return
            self._shut_down = True

            if self._accept_thread is not None and self._accept_thread is not threading.current_thread():
                self._accept_thread.join()

            if self._server is not None:
                self._server.close()
                self._server = None

            with self._workers_lock:
                workers = list(self._workers)
            for worker in workers:
                if worker is not threading.current_thread():
                    worker.join(CLIENT_TIMEOUT)

            self.writer.stop()
            self.storage.close()

            try:
                self.socket_path.unlink()
            except FileNotFoundError:
                pass

        if self._fatal is not None:
            logger.critical(f"💀 Daemon stopped after a storage failure: {self._fatal}")
        else:
            logger.info("Daemon stopped")

    def _install_signal_handlers(self) -> None:
        def handle(signum, _frame):
            logger.info(f"Received signal {signal.Signals(signum).name}")
            self.request_stop()

        signal.signal(signal.SIGTERM, handle)
        signal.signal(signal.SIGINT, handle)

    def _on_fatal(self, error: StorageError) -> None:
        if self._fatal is None:
            self._fatal = error
        self.request_stop()

    # =========================================================================
    # Connections
    # =========================================================================

    def _accept_loop(self) -> None:
        server = self._server
        if server is None:
            raise RuntimeError("Daemon socket is not bound")

        while not self.stopping.is_set():
            try:
                conn, _ = server.accept()
            except socket.timeout:
                continue
            except OSError as e:
                if self.stopping.is_set():
                    break
                logger.warning(f"⚠️ Accept failed: {e}")
                continue

            worker = threading.Thread(
                target=self._serve_connection, args=(conn,), name="histdb-conn", daemon=True
            )
            with self._workers_lock:
                self._workers.add(worker)
            worker.start()

    def _serve_connection(self, conn: socket.socket) -> None:
        try:
            with conn:
                conn.settimeout(CLIENT_TIMEOUT)
                try:
                    request = read_request(conn)
                except ValidationError as e:
                    logger.info(f"Rejecting invalid request: {e.message}")
                    self._send(conn, Response(status=ResponseStatus.INVALID, message=e.message))
                    return
                except ProtocolError as e:
                    logger.warning(f"⚠️ Rejecting connection: {e.message}")
                    self._send(conn, Response.error(e.message))
                    return
                except OSError as e:
                    logger.debug(f"Client connection failed while reading: {e}")
                    return

                self._send(conn, self.dispatch(request))
        finally:
            with self._workers_lock:
                self._workers.discard(threading.current_thread())

    def _send(self, conn: socket.socket, response: Response) -> None:
        try:
            frame = encode_response(response)
        except ProtocolError as e:
            logger.warning(f"⚠️ Response not sent: {e.message}")
            frame = encode_response(Response(
                status=ResponseStatus.INVALID,
                message=f"Result too large to send ({e.message}); use a limit or a narrower filter",
            ))
        try:
            conn.sendall(frame)
        except (BrokenPipeError, ConnectionResetError):
            logger.debug("Client disconnected before the response was sent")
        except OSError as e:
            logger.debug(f"Could not send response: {e}")

    # =========================================================================
    # Dispatch
    # =========================================================================

    def dispatch(self, request: Request) -> Response:
        """Handle one decoded request."""
        try:
            match request:
                case StartCommand():
                    outcome = self.writer.call(
                        self.machine.on_start,
                        request.session_id,
                        request.command,
                        Path(request.pwd),
                        request.hostname,
                        request.user,
                        request.time_start,
                    )
                    return Response(status=_START_STATUS[outcome], message=outcome.value)

                case FinishCommand():
                    result = self.writer.call(
                        self.machine.on_finish,
                        request.session_id,
                        request.result,
                        request.time_finished,
                    )
                    if result.outcome == FinishOutcome.NOT_FOUND:
                        missing = RunningCommandNotFoundError(str(request.session_id))
                        return Response(status=ResponseStatus.NOT_FOUND, message=missing.message)
                    return Response(status=_FINISH_STATUS[result.outcome], message=result.outcome.value)

                case NewSession():
                    return Response(session_id=new_session_id())

                case Query():
                    result = self.queries.run(request.filter)
                    return Response(entries=result.entries, stats=result.stats, hosts=result.hosts)

                case CurrentlyRunning():
                    running = self.machine.current(request.session_id)
                    if running is None:
                        missing = RunningCommandNotFoundError(str(request.session_id))
                        return Response(status=ResponseStatus.NOT_FOUND, message=missing.message)
                    return Response(running=running)

                case DisableSession():
                    self.writer.call(self.machine.disable, request.session_id)
                    return Response(message="disabled")

                case EnableSession():
                    enabled = self.writer.call(self.machine.enable, request.session_id)
                    return Response(message="enabled" if enabled else "not disabled")

                case ListHosts():
                    return Response(hosts=sorted(self.storage.list_hosts()))

                case Ping():
                    return Response(message=__version__)

                case Stop():
                    self.request_stop()
                    return Response(message="stopping")

        except InvalidTimestampError as e:
            return Response(status=ResponseStatus.INVALID, message=e.message)
        except HostNotFoundError as e:
            return Response(status=ResponseStatus.NOT_FOUND, message=e.message)
        except ValidationError as e:
            return Response(status=ResponseStatus.INVALID, message=e.message)
        except StorageError as e:
            return Response.error(e.message)
        except WriterStoppedError:
            return Response.error("Daemon is stopping")
        except HistdbError as e:
            logger.warning(f"⚠️ {type(request).__name__} failed: {e.message}")
            return Response.error(e.message)

        return Response.error(f"Unsupported request {type(request).__name__}")


def _socket_alive(path: Path) -> bool:
    client = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    client.settimeout(1.0)
    try:
        client.connect(str(path))
    except OSError:
        return False
    finally:
        client.close()
    return True
