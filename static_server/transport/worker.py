"""Worker thread logic for handling individual client connections."""

import logging
import socket
import ssl
import threading
from typing import Any, Optional

from static_server.bootstrap.config import MAX_BODY_BYTES, SECURITY_HEADERS
from static_server.domain.correlation_id import (
    CorrelationLoggerAdapter,
    correlation_scope,
)
from static_server.domain.http_types import HttpRequest
from static_server.domain.response_builders import (
    bad_request_response,
    draining_response,
    entity_too_large_response,
    forbidden_response,
)
from static_server.domain.sandbox import ForbiddenPath
from static_server.pipeline.io import receive_request, send_response
from static_server.pipeline.request_pipeline import format_client_address, serve_request
from static_server.pipeline.validation import RequestEntityTooLarge
from static_server.transport.context import WorkerContext

WORKER_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.transport.worker"), {}
)

TRANSPORT_ERRORS = (ConnectionError, TimeoutError, ssl.SSLError, UnicodeDecodeError)


def _read_request_with_validation(
    client_socket: socket.socket, buffer: bytes, client: str
) -> tuple[Optional[HttpRequest], bytes, bool]:
    """Read a request from the socket while enforcing size and path limits."""
    try:
        request, buffer = receive_request(client_socket, buffer)
    except RequestEntityTooLarge:
        WORKER_LOGGER.warning(
            "Request size exceeded limit",
            extra={"event": "body_size_exceeded", "client": client, "limit": MAX_BODY_BYTES},
        )
        send_response(client_socket, entity_too_large_response(SECURITY_HEADERS))
        return None, b"", True
    except ForbiddenPath:
        WORKER_LOGGER.warning(
            "Forbidden path access attempt",
            extra={"event": "forbidden_path", "client": client},
        )
        send_response(client_socket, forbidden_response(None, None, SECURITY_HEADERS))
        return None, b"", True
    except ValueError:
        WORKER_LOGGER.warning(
            "Malformed request received",
            extra={"event": "malformed_request", "client": client},
        )
        send_response(client_socket, bad_request_response(None, None, SECURITY_HEADERS))
        return None, b"", True

    if request is None:
        if WORKER_LOGGER.logger.isEnabledFor(logging.DEBUG):
            WORKER_LOGGER.debug(
                "Client disconnected during request",
                extra={"event": "client_disconnected", "client": client},
            )
        return None, buffer, True
    return request, buffer, False


def _complete_handshake(client_socket: socket.socket, client: str) -> bool:
    if not isinstance(client_socket, ssl.SSLSocket):
        return True
    try:
        client_socket.do_handshake()
    except (ssl.SSLError, OSError) as error:
        WORKER_LOGGER.warning(
            "TLS handshake failed",
            extra={
                "event": "tls_handshake_failed",
                "client": client,
                "error_type": type(error).__name__,
            },
        )
        return False
    return True


def _close_client(client_socket: socket.socket, client: str) -> None:
    try:
        client_socket.shutdown(socket.SHUT_WR)
    except OSError:
        pass
    client_socket.close()
    WORKER_LOGGER.debug("Socket closed", extra={"event": "socket_closed", "client": client})


def _wait_for_next_request(client_socket: socket.socket, context: WorkerContext) -> bytes:
    """Block until the client starts sending its next request.

    Returns the first bytes received, or b"" when the client hung up or the
    server began draining.
    """
    lifecycle = context.lifecycle
    lifecycle.mark_idle(client_socket)
    try:
        if lifecycle.is_draining():
            return b""
        return client_socket.recv(4096)
    finally:
        lifecycle.mark_busy(client_socket)


def _serve_connection(
    client_socket: socket.socket, client_address: Any, context: WorkerContext, client: str
) -> None:
    buffer = b""
    served = 0
    while True:
        with correlation_scope():
            if context.lifecycle.is_draining():
                # Keep-alive connections that already got an answer just close.
                if not served:
                    send_response(client_socket, draining_response(SECURITY_HEADERS))
                return
            if not buffer:
                buffer = _wait_for_next_request(client_socket, context)
                if not buffer:
                    if not served and context.lifecycle.is_draining():
                        send_response(client_socket, draining_response(SECURITY_HEADERS))
                    return
            request, buffer, should_terminate = _read_request_with_validation(
                client_socket, buffer, client
            )
            if should_terminate or request is None:
                return
            served += 1
            if serve_request(client_socket, request, client_address, context):
                return


def handle_client(
    client_socket: socket.socket,
    client_address: Any,
    context: WorkerContext,
) -> None:
    """Process requests on a client socket until the connection is closed.

    Transport failures end the connection; anything else stops the server.
    """
    current_thread = threading.current_thread()
    lifecycle = context.lifecycle
    lifecycle.register_worker(current_thread)
    client = format_client_address(client_address)
    if context.config is not None:
        client_socket.settimeout(context.config.socket_timeout)

    try:
        if _complete_handshake(client_socket, client):
            _serve_connection(client_socket, client_address, context, client)
    except TRANSPORT_ERRORS as error:
        WORKER_LOGGER.error(
            "Error handling client connection",
            extra={
                "event": "connection_error",
                "client": client,
                "error_type": type(error).__name__,
            },
        )
    except Exception as error:  # pylint: disable=broad-except
        lifecycle.fail(error)
    finally:
        lifecycle.cleanup_worker(current_thread)
        _close_client(client_socket, client)
