"""Local and network URL discovery for bound listeners."""

import ipaddress
import socket
from dataclasses import dataclass
from typing import Callable, Optional, Tuple, Union

import psutil

IPV6_UNSPECIFIED = "::"


@dataclass(frozen=True)
class SocketAddress:
    """Address a TCP listener is bound to."""

    address: str
    port: int
    family: str

    @classmethod
    def from_socket(cls, sock: socket.socket) -> Union["SocketAddress", str]:
        """Return the bound address, or the path for UNIX domain sockets."""
        if getattr(socket, "AF_UNIX", None) is not None and sock.family == socket.AF_UNIX:
            return sock.getsockname()
        sockname = sock.getsockname()
        family = "IPv6" if sock.family == socket.AF_INET6 else "IPv4"
        return cls(sockname[0], sockname[1], family)


BoundAddress = Union[SocketAddress, str]


def _is_internal(address: str) -> bool:
    try:
        return ipaddress.ip_address(address).is_loopback
    except ValueError:
        return True


def get_network_address() -> Optional[str]:
    """Return the first non-loopback IPv4 address in interface order."""
    for addresses in psutil.net_if_addrs().values():
        for details in addresses:
            if details.family == socket.AF_INET and not _is_internal(details.address):
                return details.address
    return None


def display_host(bound: SocketAddress) -> str:
    # IPv6 literals are bracketed in URLs (RFC 2732).
    if bound.address == IPV6_UNSPECIFIED:
        return "localhost"
    if bound.family == "IPv6":
        return f"[{bound.address}]"
    return bound.address


def describe_address(
    bound: BoundAddress,
    scheme: str = "http",
    network_address: Callable[[], Optional[str]] = get_network_address,
) -> Tuple[Optional[str], Optional[str]]:
    """Return ``(local_url, network_url)`` for a bound listener address."""
    if isinstance(bound, str):
        return bound, None
    if not bound.port:
        return None, None

    local_url = f"{scheme}://{display_host(bound)}:{bound.port}"
    ip = network_address()
    network_url = f"{scheme}://{ip}:{bound.port}" if ip else None
    return local_url, network_url
