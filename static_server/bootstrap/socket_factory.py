"""Listening socket creation for every endpoint kind, with optional TLS."""

import argparse
import errno
import logging
import os
import socket
import ssl
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from static_server.domain.addresses import BoundAddress, SocketAddress
from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.endpoint import (
    EndpointSpec,
    NamedPipeEndpoint,
    PortEndpoint,
    UnixSocketEndpoint,
    describe_endpoint,
)

SOCKET_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.bootstrap.socket"), {}
)

ACCEPT_TIMEOUT_SECONDS = 0.5
LISTEN_BACKLOG = 511
ADDRESS_IN_USE_ERRNOS = {
    code
    for code in (errno.EADDRINUSE, getattr(errno, "WSAEADDRINUSE", None))
    if code is not None
}


class BindFailure(Exception):
    """Raised when a listening socket cannot be created for an endpoint."""

    def __init__(self, message: str, endpoint: Optional[EndpointSpec] = None) -> None:
        super().__init__(message)
        self.endpoint = endpoint


class AddressInUse(BindFailure):
    """Raised when the endpoint is already bound by another listener."""


@dataclass(frozen=True)
class TlsSettings:
    """Certificate material for HTTPS listeners."""

    cert_path: str
    key_path: str
    passphrase_path: Optional[str] = None

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> Optional["TlsSettings"]:
        if not (args.ssl_cert and args.ssl_key):
            return None
        return cls(args.ssl_cert, args.ssl_key, args.ssl_pass)


def create_tls_context(settings: TlsSettings) -> ssl.SSLContext:
    """Load the certificate chain, raising BindFailure when it is unusable."""
    try:
        password = None
        if settings.passphrase_path:
            password = Path(settings.passphrase_path).read_text(encoding="utf-8").strip()
        tls_context = ssl.SSLContext(ssl.PROTOCOL_TLS_SERVER)
        tls_context.load_cert_chain(settings.cert_path, settings.key_path, password)
    except (ssl.SSLError, OSError) as error:
        SOCKET_LOGGER.critical(
            "Failed to load TLS certificates",
            extra={"event": "tls_error", "error_type": type(error).__name__},
        )
        raise BindFailure(f"Failed to load TLS certificates: {error}") from error
    return tls_context


class Listener:
    """A bound, listening socket and the endpoint it serves."""

    def __init__(
        self,
        server_socket: socket.socket,
        endpoint: EndpointSpec,
        tls: bool = False,
        unix_path: Optional[str] = None,
    ) -> None:
        self.socket = server_socket
        self.endpoint = endpoint
        self.tls = tls
        self._unix_path = unix_path
        self._closed = threading.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    def bound_address(self) -> BoundAddress:
        """Address the kernel actually assigned, with the real port."""
        return SocketAddress.from_socket(self.socket)

    def accept(self) -> tuple[socket.socket, object]:
        """Accept one client; raises socket.timeout when the poll interval passes."""
        return self.socket.accept()

    def close(self) -> None:
        """Stop accepting connections; safe to call more than once."""
        if self._closed.is_set():
            return
        self._closed.set()
        self.socket.close()
        if self._unix_path:
            try:
                os.unlink(self._unix_path)
            except FileNotFoundError:
                pass
        SOCKET_LOGGER.debug(
            "Listener closed",
            extra={"event": "listener_closed", "endpoint": describe_endpoint(self.endpoint)},
        )


def _bind_error(error: OSError, endpoint: EndpointSpec) -> BindFailure:
    message = f"Failed to listen on {describe_endpoint(endpoint)}: {error}"
    if error.errno in ADDRESS_IN_USE_ERRNOS:
        return AddressInUse(message, endpoint)
    return BindFailure(message, endpoint)


def _bind_tcp(endpoint: PortEndpoint) -> socket.socket:
    if endpoint.host is None:
        if socket.has_dualstack_ipv6():
            return socket.create_server(
                ("", endpoint.port),
                family=socket.AF_INET6,
                backlog=LISTEN_BACKLOG,
                dualstack_ipv6=True,
            )
        return socket.create_server(("", endpoint.port), backlog=LISTEN_BACKLOG)

    family, _, _, _, sockaddr = socket.getaddrinfo(
        endpoint.host,
        endpoint.port,
        type=socket.SOCK_STREAM,
        flags=socket.AI_PASSIVE,
    )[0]
    return socket.create_server(sockaddr, family=family, backlog=LISTEN_BACKLOG)


def _bind_unix(endpoint: UnixSocketEndpoint) -> socket.socket:
    if not hasattr(socket, "AF_UNIX"):
        raise BindFailure("UNIX domain sockets are not supported on this platform", endpoint)
    server_socket = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    try:
        server_socket.bind(endpoint.path)
        server_socket.listen(LISTEN_BACKLOG)
    except OSError:
        server_socket.close()
        raise
    return server_socket


def create_listener(
    endpoint: EndpointSpec, tls_context: Optional[ssl.SSLContext] = None
) -> Listener:
    """Bind and listen on ``endpoint``.

    Raises AddressInUse when another socket holds the address and BindFailure
    for every other failure.
    """
    if isinstance(endpoint, NamedPipeEndpoint):
        raise BindFailure(
            f"Windows named pipes cannot be served by this server: {endpoint.path}",
            endpoint,
        )
    try:
        if isinstance(endpoint, UnixSocketEndpoint):
            server_socket = _bind_unix(endpoint)
        else:
            server_socket = _bind_tcp(endpoint)
    except OSError as error:
        raise _bind_error(error, endpoint) from error

    server_socket.settimeout(ACCEPT_TIMEOUT_SECONDS)
    if tls_context is not None:
        # The handshake runs on the worker thread, not in accept().
        server_socket = tls_context.wrap_socket(
            server_socket, server_side=True, do_handshake_on_connect=False
        )
    unix_path = endpoint.path if isinstance(endpoint, UnixSocketEndpoint) else None
    return Listener(server_socket, endpoint, tls_context is not None, unix_path)
