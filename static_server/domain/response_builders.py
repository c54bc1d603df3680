"""Pure HTTP response builders."""

from typing import Iterable, Optional

from static_server.domain.http_types import HttpRequest, HttpResponse, should_close
from static_server.security.cors import CorsConfig, apply_cors_headers


def _wants_close(request: Optional[HttpRequest]) -> bool:
    return should_close(request.headers) if request is not None else True


def error_response(
    status: int,
    message: str,
    request: Optional[HttpRequest],
    cors_config: Optional[CorsConfig],
    security_headers: dict[str, str],
) -> HttpResponse:
    """Plain-text error page; requests that never parsed close the connection."""
    headers = {"Content-Type": "text/plain; charset=utf-8", **security_headers}
    if request is not None:
        apply_cors_headers(headers, request, cors_config)
    response = HttpResponse(status, headers, message.encode(), _wants_close(request))
    if request is not None and request.method == "HEAD":
        response.omit_body = True
    return response


def not_found_response(
    request: HttpRequest, cors_config, security_headers: dict[str, str]
) -> HttpResponse:
    return error_response(
        404, "The requested path could not be found", request, cors_config, security_headers
    )


def forbidden_response(
    request: Optional[HttpRequest], cors_config, security_headers: dict[str, str]
) -> HttpResponse:
    return error_response(403, "Forbidden", request, cors_config, security_headers)


def bad_request_response(
    request: Optional[HttpRequest], cors_config, security_headers: dict[str, str]
) -> HttpResponse:
    return error_response(400, "Bad Request", request, cors_config, security_headers)


def entity_too_large_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 413 response that always closes the connection."""
    return HttpResponse(413, security_headers.copy(), b"", True)


def method_not_allowed_response(
    request: HttpRequest,
    cors_config,
    security_headers: dict[str, str],
    allowed_methods: Iterable[str],
) -> HttpResponse:
    """Produce a 405 response enumerating the supported HTTP methods."""
    headers = {"Allow": ", ".join(sorted(allowed_methods)), **security_headers}
    apply_cors_headers(headers, request, cors_config)
    return HttpResponse(405, headers, b"", should_close(request.headers))


def redirect_response(
    location: str, request: HttpRequest, cors_config, security_headers: dict[str, str]
) -> HttpResponse:
    headers = {"Location": location, **security_headers}
    apply_cors_headers(headers, request, cors_config)
    return HttpResponse(301, headers, b"", should_close(request.headers))


def not_modified_response(
    request: HttpRequest, headers: dict[str, str]
) -> HttpResponse:
    return HttpResponse(304, headers, b"", should_close(request.headers))


def range_not_satisfiable_response(
    request: HttpRequest, size: int, headers: dict[str, str]
) -> HttpResponse:
    headers = {**headers, "Content-Range": f"bytes */{size}"}
    return HttpResponse(416, headers, b"", should_close(request.headers))


def draining_response(security_headers: dict[str, str]) -> HttpResponse:
    """Produce a 503 response indicating the server is draining."""
    headers = {"Connection": "close", **security_headers}
    return HttpResponse(503, headers, b"draining", True)


def internal_error_response(
    request: HttpRequest, cors_config, security_headers: dict[str, str]
) -> HttpResponse:
    """Produce a 500 response for filesystem faults the handler cannot map."""
    return error_response(
        500, "Internal Server Error", request, cors_config, security_headers
    )
