"""Per-request orchestration: log, dispatch, compress, send."""

import logging
import socket
import time
from typing import Any

from static_server.bootstrap.config import ALLOWED_METHODS, SECURITY_HEADERS
from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.http_types import HttpRequest, HttpResponse
from static_server.pipeline.compression import apply_compression
from static_server.pipeline.io import send_response
from static_server.pipeline.validation import validate_request
from static_server.security.cors import is_preflight_request, preflight_response
from static_server.transport.context import WorkerContext

PIPELINE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.pipeline.request"), {}
)

IPV4_MAPPED_PREFIX = "::ffff:"


def format_client_address(client_address: Any) -> str:
    """Render the peer address for logs, unwrapping IPv4-mapped IPv6."""
    host = client_address[0] if isinstance(client_address, tuple) else client_address
    if not host:
        return "unknown"
    return str(host).removeprefix(IPV4_MAPPED_PREFIX)


def _dispatch(request: HttpRequest, context: WorkerContext) -> HttpResponse:
    if request.method == "OPTIONS":
        response = preflight_response(request, context.cors_config, SECURITY_HEADERS)
        if not is_preflight_request(request):
            response.headers["Allow"] = ", ".join(sorted(ALLOWED_METHODS))
        return response

    validation_response = validate_request(
        request, ALLOWED_METHODS, context.cors_config, SECURITY_HEADERS
    )
    if validation_response is not None:
        return validation_response
    return context.file_handler.handle(request)


def serve_request(
    client_socket: socket.socket,
    request: HttpRequest,
    client_address: Any,
    context: WorkerContext,
) -> bool:
    """Answer one parsed request and return whether the connection must close.

    Errors raised by the file handler propagate to the caller unchanged.
    """
    started = time.perf_counter()
    client = format_client_address(client_address)
    log_requests = context.static_config.request_logging
    if log_requests:
        PIPELINE_LOGGER.info(
            "Request received",
            extra={
                "event": "request_received",
                "client": client,
                "method": request.method,
                "route": request.target,
            },
        )

    response = _dispatch(request, context)
    if context.static_config.compression_enabled:
        response = apply_compression(request, response)
    bytes_out = send_response(client_socket, response)

    if log_requests:
        PIPELINE_LOGGER.info(
            "Request completed",
            extra={
                "event": "request_completed",
                "client": client,
                "method": request.method,
                "route": request.target,
                "status_code": response.status,
                "duration_ms": round((time.perf_counter() - started) * 1000, 2),
                "bytes_out": bytes_out,
            },
        )
    return response.close_connection
