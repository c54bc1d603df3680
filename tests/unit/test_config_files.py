"""Unit tests for configuration file discovery."""

import json
import logging
from pathlib import Path

import pytest

from static_server.bootstrap.config_files import ConfigParseError, load_configuration


def _write(path: Path, payload) -> None:
    path.write_text(json.dumps(payload), encoding="utf-8")


def test_no_configuration_files(tmp_path):
    """Without files only the resolved public directory is returned."""
    assert load_configuration(tmp_path, tmp_path) == {"public": "."}


def test_serve_json_wins_over_fallbacks(tmp_path):
    """serve.json takes precedence over now.json and package.json."""
    _write(tmp_path / "serve.json", {"cleanUrls": False})
    _write(tmp_path / "package.json", {"static": {"trailingSlash": True}})

    config = load_configuration(tmp_path, tmp_path)

    assert config["cleanUrls"] is False
    assert "trailingSlash" not in config


def test_now_json_static_section_is_deprecated(tmp_path, caplog):
    """now.json settings are read from now.static with a warning."""
    caplog.set_level(logging.WARNING)
    _write(tmp_path / "now.json", {"now": {"static": {"directoryListing": False}}})

    config = load_configuration(tmp_path, tmp_path)

    assert config["directoryListing"] is False
    assert any(getattr(r, "event", None) == "config_deprecated" for r in caplog.records)


def test_package_json_without_static_is_skipped(tmp_path):
    """package.json files that carry no static section are ignored."""
    _write(tmp_path / "package.json", {"name": "site"})

    assert load_configuration(tmp_path, tmp_path) == {"public": "."}


def test_explicit_config_must_exist(tmp_path):
    """A missing --config file is an error."""
    with pytest.raises(ConfigParseError, match="Could not read configuration"):
        load_configuration(tmp_path, tmp_path, "custom.json")


def test_explicit_config_is_used_first(tmp_path):
    """--config is tried before serve.json."""
    _write(tmp_path / "custom.json", {"etag": False})
    _write(tmp_path / "serve.json", {"etag": True})

    assert load_configuration(tmp_path, tmp_path, "custom.json")["etag"] is False


@pytest.mark.parametrize("contents", ["{not json", "[1, 2]"])
def test_invalid_json_is_reported(tmp_path, contents):
    """Unparseable files and non-object documents are refused."""
    (tmp_path / "serve.json").write_text(contents, encoding="utf-8")

    with pytest.raises(ConfigParseError, match="as JSON"):
        load_configuration(tmp_path, tmp_path)


def test_public_is_relative_to_working_directory(tmp_path):
    """public resolves against the served directory, then the cwd."""
    served = tmp_path / "app"
    (served / "dist").mkdir(parents=True)
    _write(served / "serve.json", {"public": "dist"})

    config = load_configuration(tmp_path, served)

    assert Path(config["public"]) == Path("app") / "dist"
