"""Listen endpoint types and the parser for ``--listen`` targets."""

import urllib.parse
from dataclasses import dataclass
from typing import Optional, Union

DEFAULT_TCP_PORT = 3000
DEFAULT_TCP_HOST = "localhost"
NAMED_PIPE_PREFIX = "\\\\.\\"
MAX_PORT = 65535


class InvalidEndpoint(ValueError):
    """Raised when a listen target cannot be turned into an endpoint."""


@dataclass(frozen=True)
class PortEndpoint:
    """A TCP port, optionally bound to a specific host."""

    port: int
    host: Optional[str] = None

    def __post_init__(self) -> None:
        if isinstance(self.port, bool) or not isinstance(self.port, int):
            raise TypeError(f"Port must be an integer, got {self.port!r}")
        if not 0 <= self.port <= MAX_PORT:
            raise ValueError(f"Port out of range: {self.port}")

    @property
    def is_ephemeral(self) -> bool:
        return self.port == 0


@dataclass(frozen=True)
class NamedPipeEndpoint:
    """A Windows named pipe such as ``\\\\.\\pipe\\name``."""

    path: str


@dataclass(frozen=True)
class UnixSocketEndpoint:
    """A UNIX domain socket path."""

    path: str


EndpointSpec = Union[PortEndpoint, NamedPipeEndpoint, UnixSocketEndpoint]


def _parse_port(raw: str) -> PortEndpoint:
    port = int(raw)
    if port > MAX_PORT:
        raise InvalidEndpoint(f"Port out of range: {raw}")
    return PortEndpoint(port)


def _parse_tcp(raw: str, parsed: urllib.parse.SplitResult) -> PortEndpoint:
    try:
        port = parsed.port
    except ValueError as exc:
        raise InvalidEndpoint(f"Invalid TCP endpoint: {raw}") from exc
    return PortEndpoint(
        DEFAULT_TCP_PORT if port is None else port,
        parsed.hostname or DEFAULT_TCP_HOST,
    )


def parse_endpoint(raw: str) -> EndpointSpec:
    """Parse a bare port number or a ``tcp:``, ``unix:`` or ``pipe:`` URI.

    Bare digits become a :class:`PortEndpoint` without a host. URIs are
    dispatched on their scheme:

    * ``pipe:\\\\.\\name`` yields a :class:`NamedPipeEndpoint`; the remainder
      must carry the Windows named pipe prefix.
    * ``unix:/path`` yields a :class:`UnixSocketEndpoint`; the path must not
      be empty.
    * ``tcp://[host][:port]`` yields a :class:`PortEndpoint`, defaulting to
      ``localhost:3000``.

    Anything else raises :class:`InvalidEndpoint`.
    """
    value = raw.strip()
    if value.isascii() and value.isdigit():
        return _parse_port(value)

    try:
        parsed = urllib.parse.urlsplit(value)
    except ValueError as exc:
        raise InvalidEndpoint(f"Invalid --listen endpoint: {raw}") from exc

    scheme = f"{parsed.scheme}:" if parsed.scheme else "undefined"
    if scheme == "pipe:":
        pipe = value[len("pipe:") :]
        if not pipe.startswith(NAMED_PIPE_PREFIX):
            raise InvalidEndpoint(f"Invalid Windows named pipe endpoint: {raw}")
        return NamedPipeEndpoint(pipe)
    if scheme == "unix:":
        if not parsed.path:
            raise InvalidEndpoint(f"Invalid UNIX domain socket endpoint: {raw}")
        return UnixSocketEndpoint(parsed.path)
    if scheme == "tcp:":
        return _parse_tcp(raw, parsed)
    raise InvalidEndpoint(f"Unknown --listen endpoint scheme (protocol): {scheme}")


def describe_endpoint(endpoint: EndpointSpec) -> str:
    """Render an endpoint for log messages."""
    if isinstance(endpoint, PortEndpoint):
        if endpoint.host is None:
            return str(endpoint.port)
        return f"{endpoint.host}:{endpoint.port}"
    return endpoint.path
