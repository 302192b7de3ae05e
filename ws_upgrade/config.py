# config.py

import os
import socket
from dataclasses import dataclass, field
from typing import Any, List, Optional


def _env_float(name: str) -> Optional[float]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return None
    return float(value)


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


WS_HOST = os.getenv("WS_HOST", "0.0.0.0")
WS_PORT = int(os.getenv("WS_PORT", "8000"))
WS_PORT_UPPER_BOUND = int(os.getenv("WS_PORT_UPPER_BOUND", "10000"))
WS_BACKLOG = int(os.getenv("WS_BACKLOG", "5"))
WS_TIMEOUT = _env_float("WS_TIMEOUT")  # None -> socket default
WS_FRAGMENT_SIZE = int(os.getenv("WS_FRAGMENT_SIZE", "4096"))
WS_MAX_REQUEST_BYTES = int(os.getenv("WS_MAX_REQUEST_BYTES", "8192"))
WS_VALIDATE_KEY = _env_flag("WS_VALIDATE_KEY", True)


@dataclass
class ServerConfig:
    """Configuration for the listening socket and the opening handshake."""

    port: int = WS_PORT
    timeout: Optional[float] = WS_TIMEOUT
    fragment_size: int = WS_FRAGMENT_SIZE
    logger: Any = None
    # Read by the framing layer, not by the handshake
    filter: List[str] = field(default_factory=lambda: ["text", "binary"])
    return_obj: bool = False
    host: str = WS_HOST
    port_upper_bound: int = WS_PORT_UPPER_BOUND
    backlog: int = WS_BACKLOG
    max_request_bytes: int = WS_MAX_REQUEST_BYTES
    validate_key: bool = WS_VALIDATE_KEY

    def __post_init__(self):
        if self.timeout is None:
            self.timeout = socket.getdefaulttimeout()
        if not (1 <= self.port <= 65535):
            raise ValueError("Port must be between 1 and 65535")
        if not (1 <= self.port_upper_bound <= 65536):
            raise ValueError("Port upper bound must be between 1 and 65536")
        if self.timeout is not None and self.timeout < 0:
            raise ValueError("Timeout cannot be negative")
        if self.fragment_size <= 0:
            raise ValueError("Fragment size must be positive")
        if self.max_request_bytes <= 0:
            raise ValueError("Max request bytes must be positive")
        if self.backlog < 0:
            raise ValueError("Backlog cannot be negative")
