"""Unit tests for the file-serving handler."""

import errno
import json
import os
from email.utils import formatdate
from pathlib import Path
from unittest.mock import patch

import pytest

from static_server.bootstrap.config import StaticConfig
from static_server.domain.http_types import HttpRequest
from static_server.handlers.file_handler import (
    FileHandler,
    RangeNotSatisfiable,
    content_type_for_path,
    matches_source,
    parse_range,
)
from static_server.security.cors import CorsConfig


def _get(path, method="GET", **headers):
    return HttpRequest(method, path, {k.replace("_", "-"): v for k, v in headers.items()})


def _body(response):
    if response.body_iter is not None:
        return b"".join(response.body_iter)
    return response.body


@pytest.fixture(name="handler")
def fixture_handler(site_directory: Path) -> FileHandler:
    """Handler with default settings over the shared test site."""
    return FileHandler(StaticConfig(root_directory=site_directory))


def _handler(site_directory: Path, **overrides) -> FileHandler:
    return FileHandler(StaticConfig(root_directory=site_directory, **overrides))


def test_serves_file_with_metadata(handler, site_directory):
    """Files carry type, length, validators and range support."""
    response = handler.handle(_get("/docs/guide.txt"))

    assert response.status == 200
    assert response.headers["Content-Type"] == "text/plain; charset=utf-8"
    assert response.headers["Accept-Ranges"] == "bytes"
    assert response.headers["ETag"].startswith('"')
    assert "Last-Modified" in response.headers
    assert response.content_length == len("guide\n")
    assert _body(response) == (site_directory / "docs" / "guide.txt").read_bytes()


def test_root_serves_index(handler):
    """Directory requests prefer index.html."""
    response = handler.handle(_get("/"))

    assert response.status == 200
    assert _body(response) == b"<h1>home</h1>\n"


def test_directory_without_slash_redirects(handler):
    """Directory URLs are normalised with a trailing slash."""
    response = handler.handle(HttpRequest("GET", "/docs", {}, query="a=1"))

    assert response.status == 301
    assert response.headers["Location"] == "/docs/?a=1"


def test_directory_listing_html(handler):
    """Directories without an index get an escaped HTML listing."""
    response = handler.handle(_get("/docs/"))

    assert response.status == 200
    assert response.headers["Content-Type"].startswith("text/html")
    assert b'href="/docs/guide.txt"' in response.body
    assert b'href="/"' in response.body


def test_directory_listing_json(handler):
    """Clients asking for JSON get a machine-readable listing."""
    response = handler.handle(_get("/docs/", accept="application/json"))

    listing = json.loads(response.body)
    assert listing["directory"] == "/docs/"
    assert {"base": "guide.txt", "relative": "/docs/guide.txt", "type": "file"} in listing[
        "files"
    ]


def test_directory_listing_disabled(site_directory):
    """Without listings, index-less directories are not found."""
    handler = _handler(site_directory, directory_listing=False)

    assert handler.handle(_get("/docs/")).status == 404


def test_missing_file_is_not_found(handler):
    """Unknown paths produce a 404."""
    assert handler.handle(_get("/nope.txt")).status == 404


def test_single_page_fallback(site_directory):
    """Missing paths serve the root index in single-page mode."""
    handler = _handler(site_directory, single_page=True)

    response = handler.handle(_get("/app/route"))

    assert response.status == 200
    assert _body(response) == b"<h1>home</h1>\n"


def test_traversal_is_forbidden(handler):
    """Parent segments cannot escape the served directory."""
    assert handler.handle(_get("/../etc/passwd")).status == 403


def test_symlinks_hidden_by_default(site_directory, tmp_path):
    """Symlinks answer 404 unless explicitly allowed."""
    outside = tmp_path / "outside.txt"
    outside.write_text("secret", encoding="utf-8")
    (site_directory / "link.txt").symlink_to(outside)

    assert _handler(site_directory).handle(_get("/link.txt")).status == 404

    allowed = _handler(site_directory, symlinks_allowed=True).handle(_get("/link.txt"))
    assert allowed.status == 200
    assert _body(allowed) == b"secret"


def test_if_none_match_returns_not_modified(handler):
    """A matching entity tag short-circuits to 304."""
    etag = handler.handle(_get("/index.html")).headers["ETag"]

    response = handler.handle(_get("/index.html", if_none_match=etag))

    assert response.status == 304
    assert response.headers["ETag"] == etag


def test_etag_changes_with_content(handler, site_directory):
    """Rewriting a file invalidates the cached tag."""
    target = site_directory / "index.html"
    first = handler.handle(_get("/index.html")).headers["ETag"]
    target.write_text("<h1>changed content</h1>\n", encoding="utf-8")

    assert handler.handle(_get("/index.html")).headers["ETag"] != first


def test_if_modified_since_returns_not_modified(site_directory):
    """Last-Modified validation works when ETags are disabled."""
    handler = _handler(site_directory, etag_enabled=False)
    target = site_directory / "index.html"
    since = formatdate(os.stat(target).st_mtime + 60, usegmt=True)

    response = handler.handle(_get("/index.html", if_modified_since=since))

    assert response.status == 304
    assert "ETag" not in response.headers


def test_range_request_returns_partial_content(handler):
    """A single byte range yields 206 with Content-Range."""
    response = handler.handle(_get("/data.bin", range="bytes=10-19"))

    assert response.status == 206
    assert response.headers["Content-Range"] == "bytes 10-19/256"
    assert response.content_length == 10
    assert _body(response) == bytes(range(10, 20))


def test_unsatisfiable_range(handler):
    """Ranges past the end of the file answer 416."""
    response = handler.handle(_get("/data.bin", range="bytes=500-"))

    assert response.status == 416
    assert response.headers["Content-Range"] == "bytes */256"


def test_head_omits_body(handler):
    """HEAD keeps the GET headers without sending content."""
    response = handler.handle(_get("/app.js", method="HEAD"))

    assert response.status == 200
    assert response.omit_body
    assert response.content_length > 0


def test_cors_headers_added_when_enabled(site_directory):
    """Every response allows any origin under --cors."""
    handler = FileHandler(StaticConfig(root_directory=site_directory), CorsConfig())

    assert handler.handle(_get("/index.html")).headers[
        "Access-Control-Allow-Origin"
    ] == "*"
    assert handler.handle(_get("/missing")).headers["Access-Control-Allow-Origin"] == "*"


def test_custom_headers_match_sources(site_directory):
    """Configured headers apply to files whose path matches the glob."""
    handler = _handler(
        site_directory,
        custom_headers=(("**/*.js", "Cache-Control", "max-age=60"),),
    )

    assert handler.handle(_get("/app.js")).headers["Cache-Control"] == "max-age=60"
    assert "Cache-Control" not in handler.handle(_get("/index.html")).headers


@pytest.mark.parametrize(
    ("header", "expected"),
    [
        ("bytes=0-9", (0, 9)),
        ("bytes=90-", (90, 99)),
        ("bytes=-5", (95, 99)),
        ("bytes=50-500", (50, 99)),
        ("bytes=0-1,5-6", None),
        ("items=0-1", None),
        ("bytes=9-0", None),
        ("bytes=a-b", None),
    ],
)
def test_parse_range(header, expected):
    """Single ranges are clamped; anything else is ignored."""
    assert parse_range(header, 100) == expected


@pytest.mark.parametrize("header", ["bytes=100-", "bytes=500-", "bytes=500-600"])
def test_parse_range_unsatisfiable(header):
    """Starts beyond the entity raise, open-ended or not."""
    with pytest.raises(RangeNotSatisfiable):
        parse_range(header, 100)


def test_matches_source_supports_negation():
    """A leading ! inverts the match."""
    assert matches_source("*.css", "/site.css")
    assert not matches_source("!*.css", "/site.css")
    assert matches_source("!*.css", "/app.js")


def test_content_type_defaults_to_octet_stream():
    """Unknown extensions are served as binary."""
    assert content_type_for_path(Path("blob.unknownext")) == "application/octet-stream"
    assert content_type_for_path(Path("a.html")) == "text/html; charset=utf-8"


def test_overlong_name_is_not_found(handler):
    """Names longer than the filesystem allows are plain 404s."""
    response = handler.handle(_get("/" + "a" * 300))

    assert response.status == 404


def test_overlong_name_falls_back_to_index_in_single_page_mode(site_directory):
    """The single-page fallback also covers unusable names."""
    handler = _handler(site_directory, single_page=True)

    response = handler.handle(_get("/" + "a" * 300))

    assert response.status == 200
    assert _body(response) == b"<h1>home</h1>\n"


@pytest.mark.parametrize("etag_enabled", [True, False])
def test_permission_denied_is_forbidden(site_directory, caplog, etag_enabled):
    """Unreadable files answer 403 instead of escaping the handler."""
    handler = _handler(site_directory, etag_enabled=etag_enabled)
    denied = PermissionError(errno.EACCES, "Permission denied")

    with patch("static_server.handlers.file_handler.open", side_effect=denied, create=True):
        response = handler.handle(_get("/docs/guide.txt"))

    assert response.status == 403
    record = next(r for r in caplog.records if getattr(r, "event", None) == "filesystem_error")
    assert record.errno == errno.EACCES


def test_other_filesystem_errors_answer_500(handler):
    """Unexpected I/O failures become a 500 response."""
    failure = OSError(errno.EIO, "Input/output error")

    with patch("static_server.handlers.file_handler.open", side_effect=failure, create=True):
        response = handler.handle(_get("/docs/guide.txt"))

    assert response.status == 500
    assert response.headers["X-Content-Type-Options"] == "nosniff"
