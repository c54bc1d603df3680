"""Shared HTTP type definitions to avoid circular imports."""

from dataclasses import dataclass
from http import HTTPStatus
from typing import Iterable, Optional


@dataclass
class HttpRequest:
    """Represents a parsed HTTP request."""

    method: str
    path: str
    headers: dict[str, str]
    body: bytes = b""
    query: str = ""

    @property
    def target(self) -> str:
        return f"{self.path}?{self.query}" if self.query else self.path


@dataclass
class HttpResponse:
    """Represents an HTTP response to be sent to a client.

    ``body_iter`` replaces ``body`` for streamed payloads; ``content_length``
    is then the declared length, or None to fall back to chunked encoding.
    ``omit_body`` keeps the headers of a GET while sending nothing (HEAD).
    """

    status: int
    headers: dict[str, str]
    body: bytes
    close_connection: bool
    body_iter: Optional[Iterable[bytes]] = None
    content_length: Optional[int] = None
    omit_body: bool = False

    @property
    def status_line(self) -> str:
        try:
            phrase = HTTPStatus(self.status).phrase
        except ValueError:
            phrase = ""
        return f"HTTP/1.1 {self.status} {phrase}".rstrip()

    @property
    def use_chunked(self) -> bool:
        return self.body_iter is not None and self.content_length is None


def should_close(headers: dict[str, str]) -> bool:
    """Determine whether the connection should be closed after responding."""
    return headers.get("connection", "").lower() == "close"
