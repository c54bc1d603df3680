"""Server lifecycle state management."""

import logging
import socket
import threading
import time
from typing import Optional

from static_server.domain.correlation_id import CorrelationLoggerAdapter

LIFECYCLE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.lifecycle"), {}
)


class ServerLifecycle:
    """Tracks draining state, live worker threads and the first fatal error."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._stop_event = threading.Event()
        self._workers: set[threading.Thread] = set()
        self._idle_sockets: set[socket.socket] = set()
        self._failure: Optional[BaseException] = None

    def is_draining(self) -> bool:
        """True once shutdown has begun; accept loops and workers wind down."""
        return self._stop_event.is_set()

    @property
    def failure(self) -> Optional[BaseException]:
        with self._lock:
            return self._failure

    def register_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.add(thread)

    def cleanup_worker(self, thread: threading.Thread) -> None:
        with self._lock:
            self._workers.discard(thread)

    def active_worker_count(self) -> int:
        with self._lock:
            return len(self._workers)

    def mark_idle(self, client_socket: socket.socket) -> None:
        """Record a keep-alive connection waiting for its next request."""
        with self._lock:
            self._idle_sockets.add(client_socket)

    def mark_busy(self, client_socket: socket.socket) -> None:
        with self._lock:
            self._idle_sockets.discard(client_socket)

    def begin_draining(self) -> None:
        """Stop accepting new connections and let in-flight requests finish.

        Idle keep-alive connections have their read side shut down so the
        workers blocked on them return at once.
        """
        if self._stop_event.is_set():
            return
        self._stop_event.set()
        with self._lock:
            idle_sockets = list(self._idle_sockets)
        for client_socket in idle_sockets:
            try:
                client_socket.shutdown(socket.SHUT_RD)
            except OSError:
                pass
        LIFECYCLE_LOGGER.info(
            "Beginning graceful shutdown",
            extra={"event": "draining_started", "idle_connections": len(idle_sockets)},
        )

    def fail(self, error: BaseException) -> None:
        """Record an unrecoverable error and stop the server.

        Only the first error is kept; the CLI exits with status 1 once the
        accept loops have stopped.
        """
        with self._lock:
            if self._failure is None:
                self._failure = error
        LIFECYCLE_LOGGER.critical(
            "Fatal error while serving",
            extra={"event": "fatal_error", "error_type": type(error).__name__},
            exc_info=(type(error), error, error.__traceback__),
        )
        self.begin_draining()

    def wait_until_stopped(self, timeout: Optional[float] = None) -> bool:
        return self._stop_event.wait(timeout)

    def wait_for_workers(self, timeout: float) -> bool:
        """Wait for all worker threads to complete within the timeout."""
        deadline = time.monotonic() + timeout
        while True:
            with self._lock:
                self._workers = {w for w in self._workers if w.is_alive()}
                active_workers = list(self._workers)
            if not active_workers:
                return True
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                LIFECYCLE_LOGGER.warning(
                    "Shutdown timeout exceeded",
                    extra={
                        "event": "shutdown_timeout",
                        "remaining_workers": len(active_workers),
                    },
                )
                return False
            for worker in active_workers:
                worker.join(timeout=min(0.1, remaining))
                if time.monotonic() >= deadline:
                    break
