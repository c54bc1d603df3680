"""Bind listeners, falling back to an ephemeral port when the requested one is taken."""

import logging
import ssl
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from static_server.bootstrap.socket_factory import (
    AddressInUse,
    BindFailure,
    Listener,
    create_listener,
)
from static_server.domain.addresses import describe_address, get_network_address
from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.endpoint import EndpointSpec, PortEndpoint, describe_endpoint
from static_server.lifecycle.shutdown import ShutdownCoordinator
from static_server.transport.accept_loop import start_accept_thread
from static_server.transport.context import WorkerContext

STARTUP_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.bootstrap.startup"), {}
)

# The requested endpoint, then the ephemeral fallback.
MAX_BIND_ATTEMPTS = 2


@dataclass(frozen=True)
class BoundServerInfo:
    """Where a listener ended up, for the banner and the clipboard."""

    local_url: Optional[str]
    network_url: Optional[str]
    requested_port: Optional[int] = None


@dataclass
class StartedServer:
    listener: Listener
    info: BoundServerInfo
    thread: threading.Thread


def _can_switch(endpoint: EndpointSpec, port_switching: bool) -> bool:
    return (
        port_switching
        and isinstance(endpoint, PortEndpoint)
        and not endpoint.is_ephemeral
    )


def bind_with_fallback(
    endpoint: EndpointSpec,
    requested_port: Optional[int] = None,
    *,
    port_switching: bool = True,
    tls_context: Optional[ssl.SSLContext] = None,
) -> tuple[Listener, Optional[int]]:
    """Bind ``endpoint`` and return the listener with the port it replaced.

    A TCP port that is already in use is swapped for an OS-assigned one
    unless ``port_switching`` is off; ``requested_port`` keeps the first
    port that was asked for.
    """
    candidate = endpoint
    for _ in range(MAX_BIND_ATTEMPTS):
        STARTUP_LOGGER.debug(
            "Binding endpoint",
            extra={"event": "bind_attempt", "endpoint": describe_endpoint(candidate)},
        )
        try:
            return create_listener(candidate, tls_context), requested_port
        except AddressInUse:
            if not _can_switch(candidate, port_switching):
                raise
            if requested_port is None:
                requested_port = candidate.port
            STARTUP_LOGGER.warning(
                "Requested port is in use, picking another",
                extra={"event": "port_collision", "requested_port": candidate.port},
            )
            candidate = PortEndpoint(0)
    raise BindFailure(
        f"Could not bind {describe_endpoint(endpoint)} after {MAX_BIND_ATTEMPTS} attempts",
        endpoint,
    )


def start_server(
    endpoint: EndpointSpec,
    context: WorkerContext,
    shutdown: ShutdownCoordinator,
    requested_port: Optional[int] = None,
    *,
    port_switching: bool = True,
    tls_context: Optional[ssl.SSLContext] = None,
    network_address: Callable[[], Optional[str]] = get_network_address,
) -> StartedServer:
    """Bind ``endpoint``, register its shutdown hook and start accepting.

    Raises BindFailure when the endpoint cannot be served.
    """
    # pylint: disable=too-many-arguments
    listener, requested_port = bind_with_fallback(
        endpoint,
        requested_port,
        port_switching=port_switching,
        tls_context=tls_context,
    )
    shutdown.register(listener.close)

    scheme = "https" if listener.tls else "http"
    local_url, network_url = describe_address(
        listener.bound_address(), scheme, network_address
    )
    info = BoundServerInfo(local_url, network_url, requested_port)
    STARTUP_LOGGER.info(
        "Server listening for connections",
        extra={
            "event": "server_listening",
            "endpoint": describe_endpoint(listener.endpoint),
            "local_url": local_url,
            "network_url": network_url,
            "requested_port": requested_port,
            "tls": listener.tls,
        },
    )
    thread = start_accept_thread(listener, context)
    return StartedServer(listener, info, thread)
