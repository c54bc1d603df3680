"""Main connection acceptance loop."""

import logging
import socket
import threading

from static_server.bootstrap.config import SECURITY_HEADERS
from static_server.bootstrap.socket_factory import Listener
from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.endpoint import describe_endpoint
from static_server.domain.response_builders import draining_response
from static_server.pipeline.io import send_response
from static_server.transport.context import WorkerContext
from static_server.transport.worker import handle_client

ACCEPT_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.transport.accept"), {}
)


def _reject_while_draining(client_socket: socket.socket) -> None:
    try:
        send_response(client_socket, draining_response(SECURITY_HEADERS))
    except OSError:
        pass
    client_socket.close()


def accept_connections(listener: Listener, context: WorkerContext) -> None:
    """Hand each accepted connection to its own worker thread.

    Returns once the listener is closed or the lifecycle stops.
    """
    lifecycle = context.lifecycle
    while not listener.closed:
        try:
            client_socket, client_address = listener.accept()
        except socket.timeout:
            if lifecycle.is_draining():
                break
            continue
        except OSError as error:
            if listener.closed or lifecycle.is_draining():
                break
            ACCEPT_LOGGER.error(
                "Socket accept failed",
                extra={
                    "event": "accept_error",
                    "error_type": type(error).__name__,
                    "errno": error.errno,
                },
            )
            continue

        if lifecycle.is_draining():
            _reject_while_draining(client_socket)
            continue

        if ACCEPT_LOGGER.logger.isEnabledFor(logging.DEBUG):
            ACCEPT_LOGGER.debug(
                "Client connection accepted",
                extra={"event": "client_accepted", "client": str(client_address)},
            )
        thread = threading.Thread(
            target=handle_client,
            args=(client_socket, client_address, context),
            daemon=True,
        )
        thread.start()

    ACCEPT_LOGGER.debug(
        "Accept loop stopped",
        extra={"event": "accept_loop_stopped", "endpoint": describe_endpoint(listener.endpoint)},
    )


def start_accept_thread(listener: Listener, context: WorkerContext) -> threading.Thread:
    """Run the accept loop for one listener on a daemon thread."""
    thread = threading.Thread(
        target=accept_connections,
        args=(listener, context),
        name=f"accept-{describe_endpoint(listener.endpoint)}",
        daemon=True,
    )
    thread.start()
    return thread
