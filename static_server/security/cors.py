"""CORS (Cross-Origin Resource Sharing) headers for static responses."""

from dataclasses import dataclass
from typing import Optional

from static_server.domain.http_types import HttpRequest, HttpResponse, should_close


@dataclass(frozen=True)
class CorsConfig:
    """CORS policy applied when the server runs with ``--cors``."""

    allowed_origins: tuple[str, ...] = ("*",)
    allowed_methods: tuple[str, ...] = ("GET", "HEAD", "OPTIONS")
    allowed_headers: tuple[str, ...] = ("*",)
    expose_headers: tuple[str, ...] = ("Content-Length", "Content-Range", "ETag")
    max_age: int = 86400


def is_preflight_request(request: HttpRequest) -> bool:
    return (
        request.method == "OPTIONS"
        and "access-control-request-method" in request.headers
    )


def determine_allowed_origin(
    origin: Optional[str], cors_config: CorsConfig
) -> Optional[str]:
    if "*" in cors_config.allowed_origins:
        return "*"
    if origin and origin in cors_config.allowed_origins:
        return origin
    return None


def apply_cors_headers(
    headers: dict[str, str],
    request: HttpRequest,
    cors_config: Optional[CorsConfig],
) -> None:
    """Add Access-Control-* headers to a response when CORS is enabled."""
    if cors_config is None:
        return

    allowed_origin = determine_allowed_origin(request.headers.get("origin"), cors_config)
    if allowed_origin is None:
        return
    headers["Access-Control-Allow-Origin"] = allowed_origin
    if allowed_origin != "*":
        headers.setdefault("Vary", "Origin")
    if cors_config.expose_headers:
        headers["Access-Control-Expose-Headers"] = ", ".join(cors_config.expose_headers)


def preflight_response(
    request: HttpRequest,
    cors_config: Optional[CorsConfig],
    security_headers: dict[str, str],
) -> HttpResponse:
    """Answer a CORS preflight with 204 and the allowed methods and headers."""
    headers = {**security_headers}
    if cors_config is not None:
        apply_cors_headers(headers, request, cors_config)
        if "Access-Control-Allow-Origin" in headers:
            headers["Access-Control-Allow-Methods"] = ", ".join(
                cors_config.allowed_methods
            )
            requested = request.headers.get("access-control-request-headers")
            if "*" in cors_config.allowed_headers and requested:
                headers["Access-Control-Allow-Headers"] = requested
            else:
                headers["Access-Control-Allow-Headers"] = ", ".join(
                    cors_config.allowed_headers
                )
            headers["Access-Control-Max-Age"] = str(cors_config.max_age)

    return HttpResponse(204, headers, b"", should_close(request.headers))
