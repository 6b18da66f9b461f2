import logging
import os
import sys
from typing import Optional

_DEFAULT_LOGGER_NAME = "plan_sync"
_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def _resolve_level(level: Optional[str]) -> int:
    raw_level = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    resolved = logging.getLevelName(raw_level)
    if isinstance(resolved, int):
        return resolved
    return logging.INFO


def setup_logger(name: str = _DEFAULT_LOGGER_NAME, level: Optional[str] = None) -> logging.Logger:
    """Configure the service logger once and return it.

    Repeated calls reuse the existing handler so reloads under uvicorn do not
    duplicate every line.
    """
    logger = logging.getLogger(name)
    logger.setLevel(_resolve_level(level))
    if not any(getattr(handler, "_plan_sync_handler", False) for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(_LOG_FORMAT))
        handler._plan_sync_handler = True  # type: ignore[attr-defined]
        logger.addHandler(handler)
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    if not name:
        return logging.getLogger(_DEFAULT_LOGGER_NAME)
    if name.startswith(_DEFAULT_LOGGER_NAME):
        return logging.getLogger(name)
    return logging.getLogger(f"{_DEFAULT_LOGGER_NAME}.{name}")
