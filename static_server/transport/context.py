"""Context object shared across worker threads."""

from dataclasses import dataclass
from typing import Optional

from static_server.bootstrap.config import ServerConfig, StaticConfig
from static_server.handlers.file_handler import FileHandler
from static_server.lifecycle.state import ServerLifecycle
from static_server.security.cors import CorsConfig


@dataclass
class WorkerContext:
    """Dependencies shared across handler threads."""

    static_config: StaticConfig
    file_handler: FileHandler
    lifecycle: ServerLifecycle
    config: Optional[ServerConfig] = None
    cors_config: Optional[CorsConfig] = None
