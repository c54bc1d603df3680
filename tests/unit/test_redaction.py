"""Unit tests for sensitive data redaction."""

import pytest

from static_server.bootstrap.logging_setup import redact_sensitive


@pytest.mark.parametrize(
    "value",
    [
        "Authorization: Bearer token123",
        "api_key=secret",
        "api-key=secret",
        "Password: mypass",
        "client_secret=abc123",
        "Signature: abc",
        "TOKEN=abc",
        "0123456789abcdef0123456789abcdef",
        "YWJjZGVmZ2hpamtsbW5vcHFyc3R1dnd4eXo=",
    ],
)
def test_redacts_credential_like_values(value):
    """Credential markers and long opaque strings are replaced."""
    assert redact_sensitive(value) == "[REDACTED]"


@pytest.mark.parametrize(
    "value",
    ["127.0.0.1", "GET", "user_id=123", "short_hex=abc123", "ConnectionResetError"],
)
def test_keeps_ordinary_values(value):
    """Everyday log values pass through untouched."""
    assert redact_sensitive(value) == value


def test_redact_empty_and_none():
    """Empty values are returned as-is."""
    assert redact_sensitive("") == ""
    assert redact_sensitive(None) is None
