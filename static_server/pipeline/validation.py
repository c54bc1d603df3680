"""Request validation utilities for the static server."""

from typing import Optional

from static_server.domain.http_types import HttpRequest, HttpResponse
from static_server.domain.response_builders import (
    bad_request_response,
    forbidden_response,
    method_not_allowed_response,
)


class RequestEntityTooLarge(Exception):
    """Raised when request headers or body exceed configured limits."""


def enforce_allowed_method(
    request: HttpRequest,
    allowed_methods: set[str],
    cors_config,
    security_headers: dict[str, str],
) -> Optional[HttpResponse]:
    if request.method in allowed_methods:
        return None
    return method_not_allowed_response(
        request, cors_config, security_headers, allowed_methods
    )


def enforce_safe_path(
    request: HttpRequest, cors_config, security_headers: dict[str, str]
) -> Optional[HttpResponse]:
    """Reject relative targets, NUL bytes and parent-directory segments."""
    if not request.path.startswith("/") or "\x00" in request.path:
        return bad_request_response(request, cors_config, security_headers)
    if ".." in request.path.split("/"):
        return forbidden_response(request, cors_config, security_headers)
    return None


def validate_request(
    request: HttpRequest,
    allowed_methods: set[str],
    cors_config,
    security_headers: dict[str, str],
) -> Optional[HttpResponse]:
    """Return an error response when the request fails validation checks."""
    method_error = enforce_allowed_method(
        request, allowed_methods, cors_config, security_headers
    )
    if method_error is not None:
        return method_error
    return enforce_safe_path(request, cors_config, security_headers)
