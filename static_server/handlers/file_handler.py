"""File serving handlers."""

import errno
import hashlib
import logging
import mimetypes
import os
import posixpath
import threading
import urllib.parse
from email.utils import formatdate, parsedate_to_datetime
from fnmatch import fnmatch
from pathlib import Path
from typing import Iterator, Optional

from static_server.bootstrap.config import SECURITY_HEADERS, StaticConfig
from static_server.domain.correlation_id import CorrelationLoggerAdapter
from static_server.domain.http_types import HttpRequest, HttpResponse, should_close
from static_server.domain.response_builders import (
    forbidden_response,
    internal_error_response,
    not_found_response,
    not_modified_response,
    range_not_satisfiable_response,
    redirect_response,
)
from static_server.domain.sandbox import (
    ForbiddenPath,
    SymlinkNotAllowed,
    resolve_sandbox_path,
)
from static_server.handlers.directory_listing import render_listing, render_listing_json
from static_server.security.cors import CorsConfig, apply_cors_headers

FILE_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.handlers.file"), {}
)

INDEX_DOCUMENT = "index.html"
STREAM_CHUNK_SIZE = 65536
CHARSET_TYPES = {"application/javascript", "application/json", "image/svg+xml"}
MISSING_ERRNOS = {errno.ENOENT, errno.ENOTDIR, errno.ENAMETOOLONG, errno.ELOOP}


class RangeNotSatisfiable(Exception):
    """Raised when a byte range lies entirely outside the file."""


def _read_chunks(file_handle, remaining: Optional[int]) -> Iterator[bytes]:
    with file_handle:
        while remaining is None or remaining > 0:
            size = STREAM_CHUNK_SIZE if remaining is None else min(STREAM_CHUNK_SIZE, remaining)
            chunk = file_handle.read(size)
            if not chunk:
                break
            if remaining is not None:
                remaining -= len(chunk)
            yield chunk


def stream_file(
    filepath: Path, start: int = 0, length: Optional[int] = None
) -> Iterator[bytes]:
    """Yield ``length`` bytes of the file from ``start`` in fixed-size chunks.

    The file is opened eagerly; only the reads are deferred.
    """
    if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
        FILE_LOGGER.debug(
            "File streaming started",
            extra={"event": "file_streaming_started", "path": filepath.as_posix()},
        )
    file_handle = open(filepath, "rb")  # pylint: disable=consider-using-with
    file_handle.seek(start)
    return _read_chunks(file_handle, length)


def content_type_for_path(filepath: Path) -> str:
    mime_type, _ = mimetypes.guess_type(filepath.as_posix())
    if mime_type is None:
        return "application/octet-stream"
    if mime_type.startswith("text/") or mime_type in CHARSET_TYPES:
        return f"{mime_type}; charset=utf-8"
    return mime_type


def parse_range(header: str, size: int) -> Optional[tuple[int, int]]:
    """Return the inclusive ``(start, end)`` of a single ``bytes=`` range.

    Unsupported or malformed headers yield None so the full entity is sent.
    """
    unit, _, spec = header.partition("=")
    if unit.strip().lower() != "bytes" or "," in spec:
        return None
    start_raw, separator, end_raw = spec.strip().partition("-")
    if not separator:
        return None
    try:
        if not start_raw:
            suffix = int(end_raw)
            if suffix <= 0 or size == 0:
                raise RangeNotSatisfiable
            return max(size - suffix, 0), size - 1
        start = int(start_raw)
        end = int(end_raw) if end_raw else size - 1
    except ValueError:
        return None
    if start >= size:
        raise RangeNotSatisfiable
    if end < start:
        return None
    return start, min(end, size - 1)


def glob_slash(source: str) -> str:
    """Normalise a header-rule source so it always starts with ``/``."""
    return posixpath.normpath(posixpath.join("/", source))


def matches_source(source: str, path: str) -> bool:
    negate = source.startswith("!")
    pattern = glob_slash(source[1:] if negate else source)
    # "**/" also matches zero directories.
    matched = fnmatch(path, pattern) or fnmatch(path, pattern.replace("/**/", "/"))
    return matched != negate


class EtagCache:
    """SHA-1 entity tags keyed by path and invalidated by mtime or size."""

    def __init__(self) -> None:
        self._entries: dict[Path, tuple[int, int, str]] = {}
        self._lock = threading.Lock()

    def get(self, path: Path, stat: os.stat_result) -> str:
        with self._lock:
            cached = self._entries.get(path)
        if cached and cached[0] == stat.st_mtime_ns and cached[1] == stat.st_size:
            return cached[2]
        digest = hashlib.sha1()
        with open(path, "rb") as file_handle:
            for chunk in iter(lambda: file_handle.read(STREAM_CHUNK_SIZE), b""):
                digest.update(chunk)
        etag = f'"{digest.hexdigest()}"'
        with self._lock:
            self._entries[path] = (stat.st_mtime_ns, stat.st_size, etag)
        return etag


def _etag_matches(header: str, etag: Optional[str]) -> bool:
    if etag is None:
        return False
    candidates = [value.strip() for value in header.split(",")]
    return "*" in candidates or any(
        candidate.removeprefix("W/") == etag for candidate in candidates
    )


def _not_modified_since(header: str, mtime: float) -> bool:
    try:
        since = parsedate_to_datetime(header)
    except (TypeError, ValueError):
        return False
    return int(mtime) <= since.timestamp()


class FileHandler:
    """Map requests onto the served directory."""

    def __init__(
        self,
        config: StaticConfig,
        cors_config: Optional[CorsConfig] = None,
        security_headers: Optional[dict[str, str]] = None,
    ):
        self.config = config
        self.cors_config = cors_config
        self.security_headers = (
            SECURITY_HEADERS if security_headers is None else security_headers
        )
        self._etags = EtagCache()

    def handle(self, request: HttpRequest) -> HttpResponse:
        """Answer a GET or HEAD request from the served directory.

        Filesystem errors are answered here: missing or unusable names as
        not found, permission errors as 403 and anything else as 500.
        """
        try:
            return self._resolve_and_serve(request)
        except OSError as error:
            return self._filesystem_error(request, error)

    def _filesystem_error(self, request: HttpRequest, error: OSError) -> HttpResponse:
        """Map an OS error from serving a path to 404, 403 or 500."""
        if error.errno in MISSING_ERRNOS:
            try:
                return self._missing(request)
            except OSError:
                return not_found_response(request, self.cors_config, self.security_headers)
        FILE_LOGGER.warning(
            "Filesystem error while serving",
            extra={
                "event": "filesystem_error",
                "path": request.path,
                "error_type": type(error).__name__,
                "errno": error.errno,
            },
        )
        if error.errno in (errno.EACCES, errno.EPERM):
            return forbidden_response(request, self.cors_config, self.security_headers)
        return internal_error_response(request, self.cors_config, self.security_headers)

    def _resolve_and_serve(self, request: HttpRequest) -> HttpResponse:
        root = self.config.root_directory
        try:
            resolved = resolve_sandbox_path(
                root, request.path, bool(self.config.symlinks_allowed)
            )
        except ForbiddenPath:
            FILE_LOGGER.warning(
                "Forbidden path access blocked",
                extra={"event": "forbidden_path", "path": request.path},
            )
            return forbidden_response(request, self.cors_config, self.security_headers)
        except SymlinkNotAllowed:
            FILE_LOGGER.info(
                "Symlink not served",
                extra={"event": "symlink_blocked", "path": request.path},
            )
            return self._missing(request)

        if resolved.is_dir():
            return self._directory(request, resolved)
        if resolved.is_file():
            return self._file(request, resolved)
        return self._missing(request)

    def _directory(self, request: HttpRequest, resolved: Path) -> HttpResponse:
        if not request.path.endswith("/"):
            location = urllib.parse.quote(request.path) + "/"
            if request.query:
                location = f"{location}?{request.query}"
            return redirect_response(
                location, request, self.cors_config, self.security_headers
            )
        index = resolved / INDEX_DOCUMENT
        if index.is_file():
            return self._file(request, index)
        if not self.config.directory_listing:
            return self._missing(request)

        if "application/json" in request.headers.get("accept", ""):
            body = render_listing_json(resolved, request.path)
            content_type = "application/json; charset=utf-8"
        else:
            body = render_listing(resolved, request.path)
            content_type = "text/html; charset=utf-8"
        headers = {"Content-Type": content_type, **self.security_headers}
        apply_cors_headers(headers, request, self.cors_config)
        response = HttpResponse(200, headers, body, should_close(request.headers))
        response.omit_body = request.method == "HEAD"
        return response

    def _missing(self, request: HttpRequest) -> HttpResponse:
        if self.config.single_page:
            index = self.config.root_directory / INDEX_DOCUMENT
            if index.is_file():
                return self._file(request, index)
        FILE_LOGGER.info(
            "File not found",
            extra={"event": "file_not_found", "path": request.path, "method": request.method},
        )
        return not_found_response(request, self.cors_config, self.security_headers)

    def _headers_for(self, request: HttpRequest, path: Path, stat: os.stat_result) -> dict[str, str]:
        headers = {
            "Content-Type": content_type_for_path(path),
            "Last-Modified": formatdate(stat.st_mtime, usegmt=True),
            "Accept-Ranges": "bytes",
            **self.security_headers,
        }
        if self.config.etag_enabled:
            headers["ETag"] = self._etags.get(path, stat)
        for source, name, value in self.config.custom_headers:
            if matches_source(source, request.path):
                headers[name] = value
        apply_cors_headers(headers, request, self.cors_config)
        return headers

    def _file(self, request: HttpRequest, path: Path) -> HttpResponse:
        stat = path.stat()
        headers = self._headers_for(request, path, stat)

        if_none_match = request.headers.get("if-none-match")
        if if_none_match is not None:
            if _etag_matches(if_none_match, headers.get("ETag")):
                return not_modified_response(request, headers)
        elif "if-modified-since" in request.headers:
            if _not_modified_since(request.headers["if-modified-since"], stat.st_mtime):
                return not_modified_response(request, headers)

        status = 200
        start, length = 0, stat.st_size
        range_header = request.headers.get("range")
        if range_header:
            try:
                byte_range = parse_range(range_header, stat.st_size)
            except RangeNotSatisfiable:
                FILE_LOGGER.info(
                    "Range not satisfiable",
                    extra={"event": "range_not_satisfiable", "path": path.as_posix()},
                )
                return range_not_satisfiable_response(request, stat.st_size, headers)
            if byte_range is not None:
                start, end = byte_range
                length = end - start + 1
                status = 206
                headers["Content-Range"] = f"bytes {start}-{end}/{stat.st_size}"

        if FILE_LOGGER.logger.isEnabledFor(logging.DEBUG):
            FILE_LOGGER.debug(
                "File read started",
                extra={"event": "file_read_started", "path": path.as_posix()},
            )
        if request.method == "HEAD":
            return HttpResponse(
                status,
                headers,
                b"",
                should_close(request.headers),
                body_iter=iter(()),
                content_length=length,
                omit_body=True,
            )
        return HttpResponse(
            status,
            headers,
            b"",
            should_close(request.headers),
            body_iter=stream_file(path, start, length),
            content_length=length,
        )
