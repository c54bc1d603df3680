"""Server configuration and CLI argument parsing."""

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from static_server.domain.endpoint import (
    EndpointSpec,
    InvalidEndpoint,
    PortEndpoint,
    parse_endpoint,
)

VERSION = "1.0.0"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value is not None else default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.lower() in {"1", "true", "yes", "on"}


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    return value if value else default


MAX_BODY_BYTES = _env_int("STATIC_SERVER_MAX_BODY_BYTES", 1024 * 1024)
DEFAULT_SOCKET_TIMEOUT = _env_int("STATIC_SERVER_SOCKET_TIMEOUT", 60)
DEFAULT_SHUTDOWN_GRACE_SECONDS = _env_int("STATIC_SERVER_SHUTDOWN_GRACE_SECONDS", 10)
DEFAULT_LOG_JSON = _env_bool("STATIC_SERVER_LOG_JSON", True)

HEADER_DELIMITER = b"\r\n\r\n"
ALLOWED_METHODS = {"GET", "HEAD", "OPTIONS"}

SECURITY_HEADERS = {
    "X-Content-Type-Options": "nosniff",
}


@dataclass
class ServerConfig:
    """Transport settings: socket timeouts and the shutdown grace period."""

    socket_timeout: int
    shutdown_grace_seconds: int


@dataclass(frozen=True)
class StaticConfig:
    """Read-only settings shared by every request handler."""

    root_directory: Path
    etag_enabled: bool = True
    symlinks_allowed: Optional[bool] = None
    single_page: bool = False
    directory_listing: bool = True
    cors_enabled: bool = False
    compression_enabled: bool = True
    request_logging: bool = True
    custom_headers: tuple = field(default_factory=tuple)


def default_endpoint() -> PortEndpoint:
    """Port from ``$PORT``, else 3000, on every interface."""
    return PortEndpoint(_env_int("PORT", 3000))


def _endpoint_argument(raw: str) -> EndpointSpec:
    try:
        return parse_endpoint(raw)
    except InvalidEndpoint as error:
        raise argparse.ArgumentTypeError(str(error)) from error


def parse_cli_args(argv: list[str]) -> argparse.Namespace:
    """Return parsed CLI arguments for server configuration."""
    parser = argparse.ArgumentParser(
        prog="static-server",
        description="Serve a static directory over HTTP",
    )
    parser.add_argument(
        "directory", nargs="?", default=".", help="Directory to serve (default: .)"
    )
    parser.add_argument(
        "-v", "--version", action="version", version=f"%(prog)s {VERSION}"
    )
    parser.add_argument(
        "-l",
        "-p",
        "--listen",
        dest="listen",
        action="append",
        type=_endpoint_argument,
        metavar="URI",
        help="Endpoint to listen on: a port, tcp://host:port, unix:/path or pipe:\\\\.\\name",
    )
    parser.add_argument("-c", "--config", help="Path to a serve.json-style config file")
    parser.add_argument(
        "-s", "--single", action="store_true", help="Rewrite missing paths to index.html"
    )
    parser.add_argument(
        "-d", "--debug", action="store_true", help="Show debug information"
    )
    parser.add_argument(
        "-n",
        "--no-clipboard",
        dest="clipboard",
        action="store_false",
        help="Do not copy the local address to the clipboard",
    )
    parser.add_argument(
        "-u",
        "--no-compression",
        dest="compression",
        action="store_false",
        help="Do not compress responses",
    )
    parser.add_argument(
        "--no-etag", dest="etag", action="store_false", help="Send Last-Modified only"
    )
    parser.add_argument(
        "-S", "--symlinks", action="store_true", help="Resolve symlinks instead of 404"
    )
    parser.add_argument(
        "-C", "--cors", action="store_true", help="Allow cross-origin requests"
    )
    parser.add_argument(
        "--no-port-switching",
        dest="port_switching",
        action="store_false",
        help="Fail instead of picking a free port when the requested one is in use",
    )
    parser.add_argument(
        "-L",
        "--no-request-logging",
        dest="request_logging",
        action="store_false",
        help="Do not log incoming requests",
    )
    parser.add_argument("--ssl-cert", help="Path to the TLS certificate")
    parser.add_argument("--ssl-key", help="Path to the TLS private key")
    parser.add_argument("--ssl-pass", help="Path to a file holding the key passphrase")

    default_log_level = _env_str("STATIC_SERVER_LOG_LEVEL", "INFO").upper()
    default_destination = _env_str("STATIC_SERVER_LOG_DESTINATION", "stdout")
    parser.add_argument(
        "--log-level",
        default=default_log_level,
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        type=str.upper,
    )
    parser.add_argument(
        "--log-destination",
        default=default_destination,
        help="stdout or a file path",
    )
    parser.add_argument(
        "--log-format",
        default="json" if DEFAULT_LOG_JSON else "text",
        choices=["json", "text"],
    )
    parser.add_argument(
        "--socket-timeout",
        type=int,
        default=DEFAULT_SOCKET_TIMEOUT,
        help="Socket timeout in seconds for request processing",
    )
    parser.add_argument(
        "--shutdown-grace-seconds",
        type=int,
        default=DEFAULT_SHUTDOWN_GRACE_SECONDS,
        help="Grace period in seconds for in-flight requests on shutdown",
    )
    args = parser.parse_args(argv)
    if not args.listen:
        args.listen = [default_endpoint()]
    if args.debug:
        args.log_level = "DEBUG"
    return args


def _header_rules(raw_rules: Any) -> tuple:
    """Flatten serve.json ``headers`` rules into ``(glob, name, value)`` triples."""
    rules = []
    for rule in raw_rules or []:
        source = rule.get("source")
        if not source:
            continue
        for header in rule.get("headers", []):
            if "key" in header and "value" in header:
                rules.append((source, str(header["key"]), str(header["value"])))
    return tuple(rules)


def build_static_config(
    args: argparse.Namespace, file_config: dict[str, Any]
) -> StaticConfig:
    """Merge CLI flags over the configuration file section."""
    symlinks = file_config.get("symlinks")
    return StaticConfig(
        root_directory=Path(file_config.get("public", args.directory)).resolve(),
        etag_enabled=args.etag and file_config.get("etag", True) is not False,
        symlinks_allowed=True if args.symlinks else symlinks,
        single_page=args.single or bool(file_config.get("renderSingle", False)),
        directory_listing=file_config.get("directoryListing", True) is not False,
        cors_enabled=args.cors,
        compression_enabled=args.compression,
        request_logging=args.request_logging,
        custom_headers=_header_rules(file_config.get("headers")),
    )
