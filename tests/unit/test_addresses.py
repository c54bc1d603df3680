"""Unit tests for local and network URL reporting."""

import socket
from types import SimpleNamespace
from unittest.mock import patch

from static_server.domain.addresses import (
    SocketAddress,
    describe_address,
    get_network_address,
)


def _interface(family, address):
    return SimpleNamespace(family=family, address=address)


def test_describe_address_for_unix_path():
    """String addresses are socket paths with no network URL."""
    assert describe_address("/tmp/serve.sock") == ("/tmp/serve.sock", None)


def test_describe_address_maps_unspecified_ipv6_to_localhost():
    """The dual-stack wildcard is shown as localhost."""
    bound = SocketAddress("::", 3000, "IPv6")

    local_url, network_url = describe_address(bound, network_address=lambda: "10.0.0.5")

    assert local_url == "http://localhost:3000"
    assert network_url == "http://10.0.0.5:3000"


def test_describe_address_brackets_ipv6_literals():
    """Specific IPv6 addresses are wrapped in brackets."""
    bound = SocketAddress("::1", 8080, "IPv6")

    local_url, network_url = describe_address(bound, network_address=lambda: None)

    assert local_url == "http://[::1]:8080"
    assert network_url is None


def test_describe_address_uses_ipv4_verbatim_with_https():
    """IPv4 hosts are not bracketed and the scheme is configurable."""
    bound = SocketAddress("127.0.0.1", 4443, "IPv4")

    local_url, network_url = describe_address(
        bound, "https", network_address=lambda: "192.168.1.2"
    )

    assert local_url == "https://127.0.0.1:4443"
    assert network_url == "https://192.168.1.2:4443"


def test_get_network_address_returns_first_external_ipv4():
    """Loopback and IPv6 entries are skipped in enumeration order."""
    interfaces = {
        "lo": [_interface(socket.AF_INET, "127.0.0.1")],
        "eth0": [
            _interface(socket.AF_INET6, "fe80::1"),
            _interface(socket.AF_INET, "192.168.0.10"),
        ],
        "eth1": [_interface(socket.AF_INET, "10.0.0.7")],
    }
    with patch(
        "static_server.domain.addresses.psutil.net_if_addrs", return_value=interfaces
    ):
        assert get_network_address() == "192.168.0.10"


def test_get_network_address_returns_none_without_external_interface():
    """Only loopback interfaces means no network URL."""
    interfaces = {"lo": [_interface(socket.AF_INET, "127.0.0.1")]}
    with patch(
        "static_server.domain.addresses.psutil.net_if_addrs", return_value=interfaces
    ):
        assert get_network_address() is None


def test_socket_address_from_bound_socket():
    """Bound TCP sockets report address, port and family."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
        sock.bind(("127.0.0.1", 0))
        bound = SocketAddress.from_socket(sock)

    assert isinstance(bound, SocketAddress)
    assert bound.address == "127.0.0.1"
    assert bound.port > 0
    assert bound.family == "IPv4"
