"""
histdb Daemon - Single writer queue.

Every mutation of the host logs and the in-flight registry runs on one
dedicated thread, in submission order. Connection workers submit a job
and wait on its future; the writer never touches client sockets.
Once a job raises StorageError, every later job fails with that error
without running.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable
from concurrent.futures import Future
from typing import Any, TypeVar

from loguru import logger

from histdb.core.exceptions import StorageError

T = TypeVar("T")

DEFAULT_MAX_PENDING = 10_000

_STOP = object()


class WriterStoppedError(RuntimeError):
    """A job was submitted after the writer stopped accepting work."""


class WriterQueue:
    """
    FIFO job queue consumed by a single writer thread.

    Usage:
        writer = WriterQueue(on_fatal=daemon.fail)
        writer.start()

        entry = writer.call(machine.on_finish, session_id, 0, now)

        # Drains every job submitted so far, then joins the thread
        writer.stop()
    """

    def __init__(
        self,
        on_fatal: Callable[[StorageError], None] | None = None,
        max_pending: int = DEFAULT_MAX_PENDING,
        name: str = "histdb-writer",
    ):
        """
        Initialize the writer.

        Args:
            on_fatal: Called on the writer thread when a job raises StorageError.
            max_pending: Queue bound; submitters block while it is full.
            name: Writer thread name.
        """
        self._queue: queue.Queue = queue.Queue(maxsize=max_pending)
        self._on_fatal = on_fatal
        self._name = name
        self._thread: threading.Thread | None = None
        self._lock = threading.Lock()
        self._accepting = False
        self._applied = 0
        self._failure: StorageError | None = None

    @property
    def applied(self) -> int:
        """Number of jobs executed so far."""
        return self._applied

    @property
    def failure(self) -> StorageError | None:
        """The storage error that halted writing, if any."""
        return self._failure

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        with self._lock:
            if self._thread is not None:
                return
            self._accepting = True
            self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
            self._thread.start()
        logger.debug("Writer thread started")

    def submit(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> Future[T]:
        """
        Queue a job. Blocks while the queue is full.

        Raises:
            WriterStoppedError: the writer is not accepting jobs.
        """
        future: Future[T] = Future()
        with self._lock:
            if not self._accepting:
                raise WriterStoppedError("writer is not accepting jobs")
            self._queue.put((future, fn, args, kwargs))
        return future

    def call(self, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Submit a job and wait for its result; re-raises its exception."""
        return self.submit(fn, *args, **kwargs).result()

    def stop(self, timeout: float | None = None) -> None:
        """Stop accepting jobs, run every queued job, then join. Idempotent."""
        with self._lock:
            if not self._accepting:
                thread = self._thread
            else:
                self._accepting = False
                self._queue.put(_STOP)
                thread = self._thread

        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            logger.debug(f"Writer thread stopped after {self._applied} job(s)")

    def _run(self) -> None:
        while True:
            job = self._queue.get()
            if job is _STOP:
                return

            future, fn, args, kwargs = job
            if not future.set_running_or_notify_cancel():
                continue
            if self._failure is not None:
                # Nothing is written after a failed write.
                future.set_exception(self._failure)
                continue

            try:
                result = fn(*args, **kwargs)
            except StorageError as e:
                self._failure = e
                future.set_exception(e)
                logger.critical(f"❌ Write failed: {e}")
                if self._on_fatal is not None:
                    self._on_fatal(e)
            except Exception as e:
                future.set_exception(e)
            else:
                future.set_result(result)
            finally:
                self._applied += 1
