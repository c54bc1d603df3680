"""HTTP Input/Output operations."""

import logging
import socket
import urllib.parse
from typing import Optional, Tuple

from static_server.bootstrap.config import HEADER_DELIMITER, MAX_BODY_BYTES
from static_server.domain.correlation_id import (
    CorrelationLoggerAdapter,
    get_correlation_id,
    set_correlation_id,
)
from static_server.domain.http_types import HttpRequest, HttpResponse
from static_server.domain.sandbox import ForbiddenPath
from static_server.pipeline.validation import RequestEntityTooLarge

IO_LOGGER = CorrelationLoggerAdapter(logging.getLogger("static_server.io"), {})

MAX_HEADER_BYTES = 64 * 1024
BODYLESS_STATUSES = {204, 304}


def parse_headers(lines: list[str]) -> dict[str, str]:
    """Convert raw header lines into a lowercase-keyed dictionary."""
    parsed = {}
    for line in lines:
        name, separator, value = line.partition(":")
        if separator and name and name == name.strip():
            parsed[name.lower()] = value.strip()
    return parsed


def parse_request_line(request_line: str) -> Tuple[str, str, str]:
    """Return the method, decoded path and raw query of a request line."""
    try:
        method, target, version = request_line.split(" ", 2)
    except ValueError as exc:
        raise ValueError("Invalid request line") from exc
    if not version.startswith("HTTP/"):
        raise ValueError("Invalid HTTP version")

    parsed_target = urllib.parse.urlsplit(target)
    path = urllib.parse.unquote(parsed_target.path)
    if ".." in path.split("/"):
        raise ForbiddenPath
    return method, path, parsed_target.query


def determine_content_length(headers: dict[str, str]) -> int:
    """Validate and return the declared Content-Length for the request."""
    if "transfer-encoding" in headers:
        raise ValueError("Chunked request bodies are not supported")
    header_value = headers.get("content-length")
    if header_value is None:
        return 0
    try:
        content_length = int(header_value)
    except ValueError as exc:
        raise ValueError("Invalid Content-Length") from exc
    if content_length < 0:
        raise ValueError("Negative Content-Length")
    if content_length > MAX_BODY_BYTES:
        raise RequestEntityTooLarge
    return content_length


def receive_request(
    client_socket: socket.socket, buffer: bytes
) -> Tuple[Optional[HttpRequest], bytes]:
    """Read bytes from the socket until a complete request is available."""
    while HEADER_DELIMITER not in buffer:
        if len(buffer) > MAX_HEADER_BYTES:
            raise RequestEntityTooLarge
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        buffer += chunk

    header_block, remainder = buffer.split(HEADER_DELIMITER, 1)
    header_lines = header_block.decode("latin-1").split("\r\n")
    method, path, query = parse_request_line(header_lines[0])
    headers = parse_headers(header_lines[1:])
    incoming_correlation_id = headers.get("x-request-id")
    if incoming_correlation_id:
        set_correlation_id(incoming_correlation_id)
    content_length = determine_content_length(headers)

    while len(remainder) < content_length:
        chunk = client_socket.recv(4096)
        if not chunk:
            return None, b""
        remainder += chunk

    body = remainder[:content_length]
    leftover = remainder[content_length:]
    IO_LOGGER.debug("Parsed request", extra={"method": method, "route": path})
    return HttpRequest(method, path, headers, body, query), leftover


def _close_iterator(response: HttpResponse) -> None:
    close = getattr(response.body_iter, "close", None)
    if close is not None:
        close()


def send_response(client_socket: socket.socket, response: HttpResponse) -> int:
    """Serialize and send the HTTP response; return the body bytes written."""
    headers = dict(response.headers)

    correlation_id = get_correlation_id()
    if correlation_id:
        headers["X-Request-ID"] = correlation_id

    if response.status not in BODYLESS_STATUSES:
        if response.use_chunked:
            headers["Transfer-Encoding"] = "chunked"
        elif response.body_iter is not None:
            headers["Content-Length"] = str(response.content_length)
        else:
            headers["Content-Length"] = str(len(response.body))
    if response.close_connection:
        headers["Connection"] = "close"
    header_lines = [response.status_line]
    header_lines.extend(f"{name}: {value}" for name, value in headers.items())
    header_block = "\r\n".join(header_lines).encode("latin-1") + HEADER_DELIMITER

    bytes_out = 0
    if response.omit_body or response.status in BODYLESS_STATUSES:
        client_socket.sendall(header_block)
        _close_iterator(response)
    elif response.body_iter is not None:
        client_socket.sendall(header_block)
        try:
            for chunk in response.body_iter:
                if not chunk:
                    continue
                if response.use_chunked:
                    client_socket.sendall(f"{len(chunk):X}\r\n".encode() + chunk + b"\r\n")
                else:
                    client_socket.sendall(chunk)
                bytes_out += len(chunk)
            if response.use_chunked:
                client_socket.sendall(b"0\r\n\r\n")
        finally:
            _close_iterator(response)
    else:
        client_socket.sendall(header_block + response.body)
        bytes_out = len(response.body)
    IO_LOGGER.debug(
        "Sent response",
        extra={"status_code": response.status, "bytes_out": bytes_out},
    )
    return bytes_out
