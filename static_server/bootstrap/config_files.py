"""Discovery and parsing of serve.json-style configuration files."""

import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

from static_server.domain.correlation_id import CorrelationLoggerAdapter

CONFIG_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.bootstrap.config"), {}
)

CONFIG_FILES = ("serve.json", "now.json", "package.json")
DEPRECATED_CONFIG_FILES = {"now.json", "package.json"}


class ConfigParseError(Exception):
    """Raised when a configuration file cannot be read or is not a JSON object."""


def _read_json(location: Path, required: bool) -> Optional[dict[str, Any]]:
    try:
        raw_contents = location.read_text(encoding="utf-8")
    except FileNotFoundError as error:
        if not required:
            return None
        raise ConfigParseError(
            f"Could not read configuration from file {location}: {error}"
        ) from error
    except OSError as error:
        raise ConfigParseError(
            f"Could not read configuration from file {location}: {error}"
        ) from error

    try:
        parsed = json.loads(raw_contents)
    except json.JSONDecodeError as error:
        raise ConfigParseError(f"Could not parse {location} as JSON: {error}") from error
    if not isinstance(parsed, dict):
        raise ConfigParseError(
            f"Could not parse {location} as JSON: configuration is not an object"
        )
    return parsed


def _static_section(file_name: str, parsed: dict[str, Any]) -> Optional[dict[str, Any]]:
    # now.json keeps settings under now.static, package.json under static.
    if file_name == "now.json":
        now = parsed.get("now")
        section = now.get("static") if isinstance(now, dict) else None
    elif file_name == "package.json":
        section = parsed.get("static")
    else:
        section = parsed
    return section if isinstance(section, dict) and section else None


def load_configuration(
    present_directory: Path,
    directory_to_serve: Path,
    config_path: Optional[str] = None,
) -> dict[str, Any]:
    """Return the first usable configuration section for ``directory_to_serve``.

    An explicit ``config_path`` is tried first and must exist; the default
    files are optional. ``public`` is resolved against the served directory
    and then made relative to ``present_directory``.
    """
    files = list(CONFIG_FILES)
    if config_path:
        files.insert(0, config_path)

    config: dict[str, Any] = {}
    for file_name in files:
        location = (directory_to_serve / file_name).resolve()
        parsed = _read_json(location, required=file_name == config_path)
        if parsed is None:
            continue
        section = _static_section(Path(file_name).name, parsed)
        if section is None:
            continue

        config.update(section)
        CONFIG_LOGGER.debug(
            "Configuration loaded",
            extra={"event": "config_loaded", "config_file": str(location)},
        )
        if file_name in DEPRECATED_CONFIG_FILES:
            CONFIG_LOGGER.warning(
                "The config files now.json and package.json are deprecated. "
                "Please use serve.json.",
                extra={"event": "config_deprecated", "config_file": file_name},
            )
        break

    public = config.get("public")
    target = directory_to_serve / public if public else directory_to_serve
    config["public"] = os.path.relpath(target.resolve(), present_directory.resolve())
    return config
