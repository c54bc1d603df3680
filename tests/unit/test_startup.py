"""Unit tests for binding listeners and the port fallback."""

import logging
import os
import socket
from pathlib import Path
from unittest.mock import patch

import pytest

from static_server.bootstrap.config import StaticConfig
from static_server.bootstrap.socket_factory import AddressInUse, BindFailure
from static_server.bootstrap.startup import (
    MAX_BIND_ATTEMPTS,
    bind_with_fallback,
    start_server,
)
from static_server.domain.endpoint import (
    NamedPipeEndpoint,
    PortEndpoint,
    UnixSocketEndpoint,
)
from static_server.handlers.file_handler import FileHandler
from static_server.lifecycle.shutdown import ShutdownCoordinator
from static_server.lifecycle.state import ServerLifecycle
from static_server.transport.context import WorkerContext


class NullSignalSource:
    """Signal source that never delivers anything."""

    def subscribe(self, signum, handler):
        pass

    def on_exit(self, handler):
        pass


@pytest.fixture(name="context")
def fixture_context(tmp_path: Path) -> WorkerContext:
    """Worker context serving an empty temporary directory."""
    static_config = StaticConfig(root_directory=tmp_path)
    return WorkerContext(
        static_config=static_config,
        file_handler=FileHandler(static_config),
        lifecycle=ServerLifecycle(),
    )


@pytest.fixture(name="shutdown")
def fixture_shutdown():
    """Coordinator whose callbacks run at the end of each test."""
    coordinator = ShutdownCoordinator(NullSignalSource(), force_exit=lambda code: None)
    yield coordinator
    coordinator.trigger("test_teardown")


@pytest.fixture(name="occupied_port")
def fixture_occupied_port():
    """Hold a listening socket on 127.0.0.1 for the duration of a test."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as holder:
        holder.bind(("127.0.0.1", 0))
        holder.listen(1)
        yield holder.getsockname()[1]


def _no_network():
    return None


def test_start_server_binds_free_port(context, shutdown):
    """A free port is used as-is with no provenance."""
    server = start_server(
        PortEndpoint(0, "127.0.0.1"), context, shutdown, network_address=_no_network
    )

    port = server.listener.bound_address().port
    assert server.info.local_url == f"http://127.0.0.1:{port}"
    assert server.info.network_url is None
    assert server.info.requested_port is None
    assert server.thread.is_alive()


def test_start_server_falls_back_when_port_in_use(context, shutdown, occupied_port, caplog):
    """An occupied port is swapped for an ephemeral one and remembered."""
    caplog.set_level(logging.WARNING)

    server = start_server(
        PortEndpoint(occupied_port, "127.0.0.1"),
        context,
        shutdown,
        network_address=_no_network,
    )

    assert server.info.requested_port == occupied_port
    assert server.listener.endpoint == PortEndpoint(0)
    assert server.listener.bound_address().port != occupied_port
    assert any(getattr(r, "event", None) == "port_collision" for r in caplog.records)


def test_start_server_keeps_caller_requested_port(context, shutdown, occupied_port):
    """An existing requested_port is not overwritten by a later collision."""
    server = start_server(
        PortEndpoint(occupied_port, "127.0.0.1"),
        context,
        shutdown,
        requested_port=1234,
        network_address=_no_network,
    )

    assert server.info.requested_port == 1234


def test_start_server_without_port_switching_fails(context, shutdown, occupied_port):
    """--no-port-switching turns a collision into a fatal bind failure."""
    with pytest.raises(BindFailure):
        start_server(
            PortEndpoint(occupied_port, "127.0.0.1"),
            context,
            shutdown,
            port_switching=False,
        )


def test_start_server_registers_listener_close(context, shutdown):
    """Triggering shutdown closes the listener and stops its accept loop."""
    server = start_server(
        PortEndpoint(0, "127.0.0.1"), context, shutdown, network_address=_no_network
    )

    shutdown.trigger("test")
    server.thread.join(timeout=5)

    assert server.listener.closed
    assert not server.thread.is_alive()


def test_start_server_logs_listening_event(context, shutdown, caplog):
    """The bound URL is logged once the listener is up."""
    caplog.set_level(logging.INFO)

    server = start_server(
        PortEndpoint(0, "127.0.0.1"), context, shutdown, network_address=_no_network
    )

    record = next(
        r for r in caplog.records if getattr(r, "event", None) == "server_listening"
    )
    assert record.local_url == server.info.local_url
    assert record.tls is False


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="UNIX sockets unavailable")
def test_start_server_on_unix_socket(context, shutdown, tmp_path):
    """UNIX sockets report their path and remove it on close."""
    socket_path = str(tmp_path / "s.sock")

    server = start_server(UnixSocketEndpoint(socket_path), context, shutdown)

    assert server.info.local_url == socket_path
    assert server.info.network_url is None
    assert os.path.exists(socket_path)

    server.listener.close()
    assert not os.path.exists(socket_path)


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="UNIX sockets unavailable")
def test_unix_socket_in_use_is_not_retried(context, shutdown, tmp_path):
    """Only TCP ports fall back; a taken socket path is fatal."""
    socket_path = str(tmp_path / "s.sock")
    start_server(UnixSocketEndpoint(socket_path), context, shutdown)

    with pytest.raises(AddressInUse):
        start_server(UnixSocketEndpoint(socket_path), context, shutdown)


def test_named_pipe_is_rejected(context, shutdown):
    """Named pipes cannot be served through the socket layer."""
    with pytest.raises(BindFailure):
        start_server(NamedPipeEndpoint("\\\\.\\pipe\\serve"), context, shutdown)


def test_bind_with_fallback_gives_up_after_max_attempts():
    """The retry loop is bounded even if every bind collides."""
    with patch(
        "static_server.bootstrap.startup.create_listener",
        side_effect=AddressInUse("in use"),
    ) as create:
        with pytest.raises(AddressInUse):
            bind_with_fallback(PortEndpoint(3000))

    assert create.call_count == MAX_BIND_ATTEMPTS
    assert create.call_args_list[-1].args[0] == PortEndpoint(0)


def test_bind_with_fallback_propagates_permission_errors():
    """Bind failures other than a collision are not retried."""
    with patch(
        "static_server.bootstrap.startup.create_listener",
        side_effect=BindFailure("permission denied"),
    ) as create:
        with pytest.raises(BindFailure):
            bind_with_fallback(PortEndpoint(80))

    assert create.call_count == 1
