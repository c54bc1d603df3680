"""Copy text to the system clipboard using the platform's command-line tool."""

import logging
import os
import shutil
import subprocess
import sys
from typing import Optional

from static_server.domain.correlation_id import CorrelationLoggerAdapter

CLIPBOARD_LOGGER = CorrelationLoggerAdapter(
    logging.getLogger("static_server.bootstrap.clipboard"), {}
)

CLIPBOARD_COMMANDS = (
    ["pbcopy"],
    ["wl-copy"],
    ["xclip", "-selection", "clipboard"],
    ["xsel", "--clipboard", "--input"],
    ["clip"],
)
PRODUCTION_ENV_VARS = ("NODE_ENV", "STATIC_SERVER_ENV")


def _clipboard_command() -> Optional[list[str]]:
    for command in CLIPBOARD_COMMANDS:
        if shutil.which(command[0]):
            return command
    return None


def should_copy(enabled: bool, stream=None) -> bool:
    """Copy only for interactive, non-production runs."""
    stream = stream if stream is not None else sys.stdout
    if not enabled or not stream.isatty():
        return False
    return all(os.getenv(name) != "production" for name in PRODUCTION_ENV_VARS)


def copy_to_clipboard(text: str) -> bool:
    """Copy text with the platform clipboard tool; False when none is usable."""
    command = _clipboard_command()
    if command is None:
        CLIPBOARD_LOGGER.debug(
            "No clipboard tool available", extra={"event": "clipboard_unavailable"}
        )
        return False
    try:
        subprocess.run(command, input=text.encode(), check=True, timeout=5)
    except (OSError, subprocess.SubprocessError) as error:
        CLIPBOARD_LOGGER.warning(
            "Cannot copy server address to clipboard",
            extra={"event": "clipboard_failed", "error_type": type(error).__name__},
        )
        return False
    return True
