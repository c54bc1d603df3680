"""Process-wide shutdown coordination triggered by termination signals."""

import atexit
import logging
import os
import signal
import threading
from typing import Callable, Optional, Protocol

from static_server.domain.correlation_id import CorrelationLoggerAdapter

SHUTDOWN_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.lifecycle.shutdown"), {}
)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class SignalSource(Protocol):
    """Something that can deliver termination signals and exit notifications."""

    def subscribe(self, signum: int, handler: Callable[[int], None]) -> None:
        ...

    def on_exit(self, handler: Callable[[], None]) -> None:
        ...


class ProcessSignalSource:
    """Delivers real OS signals and interpreter exit to subscribers."""

    def subscribe(self, signum: int, handler: Callable[[int], None]) -> None:
        signal.signal(signum, lambda received, _frame: handler(received))

    def on_exit(self, handler: Callable[[], None]) -> None:
        atexit.register(handler)


class ShutdownCoordinator:
    """Runs registered cleanup callbacks exactly once per process.

    The guard is a lock acquired without blocking and never released, so the
    first trigger wins even when it races another signal or a worker thread,
    and a signal handler interrupting ``trigger`` can never deadlock on it.
    """

    def __init__(
        self,
        signal_source: Optional[SignalSource] = None,
        force_exit: Callable[[int], None] = os._exit,
    ) -> None:
        self._signal_source = signal_source or ProcessSignalSource()
        self._force_exit = force_exit
        self._callbacks: list[Callable[[], None]] = []
        self._guard = threading.Lock()
        self._installed = False

    @property
    def triggered(self) -> bool:
        return self._guard.locked()

    def register(self, cleanup: Callable[[], None]) -> None:
        """Append a callback to run on shutdown."""
        self._callbacks.append(cleanup)

    def install(self) -> None:
        """Subscribe to SIGINT, SIGTERM and interpreter exit."""
        if self._installed:
            return
        self._installed = True
        for signum in SHUTDOWN_SIGNALS:
            self._signal_source.subscribe(signum, self._handle_signal)
        self._signal_source.on_exit(lambda: self.trigger("exit"))

    def _handle_signal(self, signum: int) -> None:
        if self.triggered:
            if signum == signal.SIGINT:
                SHUTDOWN_LOGGER.warning(
                    "Second interrupt received, exiting immediately",
                    extra={"event": "forced_exit", "signal": signum},
                )
                self._force_exit(0)
            return
        SHUTDOWN_LOGGER.info(
            "Received shutdown signal",
            extra={"event": "shutdown_signal", "signal": signal.Signals(signum).name},
        )
        self.trigger(signal.Signals(signum).name)

    def trigger(self, reason: str = "manual") -> bool:
        """Run every registered callback unless shutdown already started.

        Returns True for the call that actually ran the callbacks.
        """
        if not self._guard.acquire(blocking=False):
            return False

        SHUTDOWN_LOGGER.debug(
            "Running shutdown callbacks",
            extra={"event": "shutdown_started", "reason": reason},
        )
        for cleanup in list(self._callbacks):
            try:
                cleanup()
            except Exception as error:  # pylint: disable=broad-except
                SHUTDOWN_LOGGER.error(
                    "Shutdown callback failed",
                    extra={
                        "event": "shutdown_callback_error",
                        "error_type": type(error).__name__,
                    },
                    exc_info=True,
                )
        return True


_PROCESS_COORDINATOR: Optional[ShutdownCoordinator] = None
_PROCESS_COORDINATOR_LOCK = threading.Lock()


def get_shutdown_coordinator() -> ShutdownCoordinator:
    """Return the process-wide coordinator, installing it on first use."""
    global _PROCESS_COORDINATOR  # pylint: disable=global-statement
    with _PROCESS_COORDINATOR_LOCK:
        if _PROCESS_COORDINATOR is None:
            _PROCESS_COORDINATOR = ShutdownCoordinator()
            _PROCESS_COORDINATOR.install()
        return _PROCESS_COORDINATOR


def register_close_listener(cleanup: Callable[[], None]) -> None:
    """Register ``cleanup`` with the process-wide coordinator."""
    get_shutdown_coordinator().register(cleanup)
