"""Synchronized reporter — one funnel for concurrent workers' output and errors.

Workers share two logical destinations: a result stream (stdout) that
carries the final machine-readable line, and a diagnostic stream
(stderr) for everything else.  Each ``emit`` call is queued whole and
written by a single pump thread per destination, so one call's bytes
are never split by another's.  The queue is bounded by ``buffer_len``.

Errors travel a separate channel with rendezvous semantics: a producer
calling ``report_error`` blocks until the registered consumer has taken
its error, counted it and handled it.  Nothing is dropped and nothing
piles up unseen.
"""

from __future__ import annotations

import logging
import queue
import sys
import threading
from collections.abc import Callable
from enum import Enum
from typing import TextIO

from hznpkg.models.outcome import DelegateError

logger = logging.getLogger(__name__)

OUTPUT_INFO_PREFIX = "[INFO]"
OUTPUT_DEBUG_PREFIX = "[DEBUG]"
OUTPUT_ERROR_PREFIX = "[ERROR]"


class Stream(str, Enum):
    """Logical destinations a reporter writes to."""

    OUT = "out"
    ERR = "err"


class _StreamPump:
    """Writes queued text chunks to one destination from a dedicated thread."""

    def __init__(self, name: str, destination: TextIO, buffer_len: int) -> None:
        self._destination = destination
        self._queue: queue.Queue[str | None] = queue.Queue(maxsize=buffer_len)
        self._lock = threading.Lock()
        self.last_error: Exception | None = None
        self._thread = threading.Thread(
            target=self._run, name=f"hznpkg-reporter-{name}", daemon=True
        )
        self._thread.start()

    def put(self, text: str) -> None:
        self._queue.put(text)

    def _run(self) -> None:
        while True:
            text = self._queue.get()
            try:
                if text is None:
                    return
                with self._lock:
                    self._destination.write(text)
                    self._destination.flush()
            except (OSError, ValueError) as exc:
                # Destination closed; keep draining so emitters never block.
                self.last_error = exc
            finally:
                self._queue.task_done()

    def drain(self) -> None:
        self._queue.join()

    def close(self) -> None:
        self._queue.put(None)
        self._thread.join()


class SynchronizedReporter:
    """Serializes output from many workers and aggregates their errors.

    Parameters
    ----------
    out:
        Destination for the result stream.  Defaults to ``sys.stdout``.
    err:
        Destination for the diagnostic stream.  Defaults to ``sys.stderr``.
    buffer_len:
        Maximum number of queued, unwritten ``emit`` calls per stream.
    """

    def __init__(
        self,
        out: TextIO | None = None,
        err: TextIO | None = None,
        *,
        buffer_len: int = 256,
    ) -> None:
        if buffer_len < 1:
            raise ValueError("buffer_len must be at least 1")
        self._pumps = {
            Stream.OUT: _StreamPump("out", out or sys.stdout, buffer_len),
            Stream.ERR: _StreamPump("err", err or sys.stderr, buffer_len),
        }
        self._errors: queue.Queue[tuple[DelegateError, threading.Event] | None] = (
            queue.Queue()
        )
        self._count_lock = threading.Lock()
        self._delegate_error_count = 0
        self._consumer: threading.Thread | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Output
    # ------------------------------------------------------------------

    def emit(self, stream: Stream, text: str) -> None:
        """Queue *text* for *stream*; it is written without interleaving.

        Raises ``RuntimeError`` once the reporter is closed.
        """
        if self._closed:
            raise RuntimeError("Reporter is closed")
        self._pumps[Stream(stream)].put(text)

    def info(self, message: str) -> None:
        self.emit(Stream.ERR, f"{OUTPUT_INFO_PREFIX} {message}\n")

    def error(self, message: str) -> None:
        self.emit(Stream.ERR, f"{OUTPUT_ERROR_PREFIX} {message}\n")

    def result(self, line: str) -> None:
        self.emit(Stream.OUT, f"{line}\n")

    def flush(self) -> None:
        """Block until everything emitted so far has been written."""
        for pump in self._pumps.values():
            pump.drain()

    # ------------------------------------------------------------------
    # Errors
    # ------------------------------------------------------------------

    @property
    def delegate_error_count(self) -> int:
        """Number of errors the consumer has received so far."""
        with self._count_lock:
            return self._delegate_error_count

    @property
    def has_error_consumer(self) -> bool:
        return self._consumer is not None

    def register_error_consumer(self, handler: Callable[[DelegateError], None]) -> None:
        """Install the single handler that receives every reported error.

        The handler runs serially on a dedicated thread for the rest of
        the reporter's life.  The error count is incremented before the
        handler is invoked.
        """
        if self._consumer is not None:
            raise RuntimeError("An error consumer is already registered")
        self._consumer = threading.Thread(
            target=self._consume,
            args=(handler,),
            name="hznpkg-reporter-errors",
            daemon=True,
        )
        self._consumer.start()

    def report_error(self, is_user_error: bool, is_breaking: bool, message: str) -> None:
        """Hand an error to the consumer and wait until it has been handled.

        Raises ``RuntimeError`` once the reporter is closed.
        """
        if self._closed:
            raise RuntimeError("Reporter is closed")
        received = threading.Event()
        error = DelegateError(
            is_user_error=is_user_error, is_breaking=is_breaking, message=message
        )
        self._errors.put((error, received))
        received.wait()

    def _consume(self, handler: Callable[[DelegateError], None]) -> None:
        while True:
            item = self._errors.get()
            if item is None:
                return
            error, received = item
            with self._count_lock:
                self._delegate_error_count += 1
            try:
                handler(error)
            except Exception:
                logger.exception("Error consumer failed while handling: %s", error.message)
            finally:
                received.set()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def close(self) -> None:
        """Flush both streams and stop the reporter's threads."""
        if self._closed:
            return
        self._closed = True
        if self._consumer is not None:
            self._errors.put(None)
            self._consumer.join()
        for pump in self._pumps.values():
            pump.close()

    def __enter__(self) -> SynchronizedReporter:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ReporterLogHandler(logging.Handler):
    """Logging handler that routes records to a reporter's diagnostic stream.

    Records are formatted with the ``[LEVEL] message`` prefixes operators
    already grep for, one ``emit`` per record.
    """

    def __init__(self, reporter: SynchronizedReporter, level: int = logging.NOTSET) -> None:
        super().__init__(level)
        self._reporter = reporter
        self.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._reporter.emit(Stream.ERR, self.format(record) + "\n")
        except Exception:
            self.handleError(record)
