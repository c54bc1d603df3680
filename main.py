"""Static file server: serve a directory over HTTP on one or more endpoints."""

import logging
import sys
from pathlib import Path
from typing import Optional

from static_server.bootstrap.banner import format_banner
from static_server.bootstrap.clipboard import copy_to_clipboard, should_copy
from static_server.bootstrap.config import (
    SECURITY_HEADERS,
    ServerConfig,
    build_static_config,
    parse_cli_args,
)
from static_server.bootstrap.config_files import ConfigParseError, load_configuration
from static_server.bootstrap.logging_setup import configure_logging
from static_server.bootstrap.socket_factory import (
    BindFailure,
    TlsSettings,
    create_tls_context,
)
from static_server.bootstrap.startup import StartedServer, start_server
from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.endpoint import describe_endpoint
from static_server.handlers.file_handler import FileHandler
from static_server.lifecycle.shutdown import (
    get_shutdown_coordinator,
    register_close_listener,
)
from static_server.lifecycle.state import ServerLifecycle
from static_server.security.cors import CorsConfig
from static_server.transport.context import WorkerContext

SERVER_LOGGER = CorrelationLoggerAdapter(logging.getLogger("static_server.main"), {})

STOP_POLL_SECONDS = 0.5


def _stop(servers: list[StartedServer], config: ServerConfig, lifecycle: ServerLifecycle) -> None:
    for server in servers:
        server.listener.close()
        server.thread.join(timeout=1)
    SERVER_LOGGER.info(
        "Waiting for active connections to complete",
        extra={"event": "shutdown_waiting", "grace_seconds": config.shutdown_grace_seconds},
    )
    lifecycle.wait_for_workers(config.shutdown_grace_seconds)
    SERVER_LOGGER.info("Server shutdown complete", extra={"event": "server_stopped"})


def main(argv: Optional[list[str]] = None) -> None:
    """Parse arguments, bind every endpoint and serve until shut down."""
    args = parse_cli_args(sys.argv[1:] if argv is None else argv)
    configure_logging(args.log_level, args.log_destination, args.log_format == "json")

    present_directory = Path.cwd()
    try:
        file_config = load_configuration(
            present_directory, present_directory / args.directory, args.config
        )
    except ConfigParseError as error:
        SERVER_LOGGER.error(
            str(error), extra={"event": "config_error", "config_file": args.config}
        )
        sys.exit(1)

    static_config = build_static_config(args, file_config)
    config = ServerConfig(
        socket_timeout=args.socket_timeout,
        shutdown_grace_seconds=args.shutdown_grace_seconds,
    )
    cors_config = CorsConfig() if static_config.cors_enabled else None
    lifecycle = ServerLifecycle()
    context = WorkerContext(
        static_config=static_config,
        file_handler=FileHandler(static_config, cors_config, SECURITY_HEADERS),
        lifecycle=lifecycle,
        config=config,
        cors_config=cors_config,
    )

    register_close_listener(lifecycle.begin_draining)
    shutdown = get_shutdown_coordinator()

    SERVER_LOGGER.info(
        "Starting static server",
        extra={
            "event": "server_starting",
            "directory": str(static_config.root_directory),
            "endpoint": ", ".join(describe_endpoint(endpoint) for endpoint in args.listen),
            "log_destination": args.log_destination,
            "log_level": args.log_level,
        },
    )

    servers: list[StartedServer] = []
    try:
        tls_settings = TlsSettings.from_args(args)
        tls_context = create_tls_context(tls_settings) if tls_settings else None
        for endpoint in args.listen:
            server = start_server(
                endpoint,
                context,
                shutdown,
                port_switching=args.port_switching,
                tls_context=tls_context,
            )
            servers.append(server)

            copied = False
            if server.info.local_url and should_copy(args.clipboard):
                copied = copy_to_clipboard(server.info.local_url)
            print(format_banner(server.info, copied), flush=True)
    except BindFailure as error:
        SERVER_LOGGER.critical(
            str(error),
            extra={"event": "bind_failed", "error_type": type(error).__name__},
        )
        shutdown.trigger("bind_failed")
        _stop(servers, config, lifecycle)
        sys.exit(1)

    while not lifecycle.wait_until_stopped(STOP_POLL_SECONDS):
        pass
    shutdown.trigger("stopped")
    _stop(servers, config, lifecycle)
    if lifecycle.failure is not None:
        sys.exit(1)


if __name__ == "__main__":
    main()
