# logs.py

from typing import Any

from loguru import logger


def resolve_logger(candidate: Any = None) -> Any:
    """Return the injected logger, or loguru's logger when none is set."""
    return logger if candidate is None else candidate
