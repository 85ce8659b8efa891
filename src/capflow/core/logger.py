"""Logging utilities."""

import logging
import sys
from typing import Any, Optional

from .abstractions import ILogSink

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}


def get_logger(name: Optional[str] = None, level: int = logging.INFO) -> logging.Logger:
    """Get a configured logger instance.

    Args:
        name: Logger name (defaults to this module)
        level: Logging level

    Returns:
        Configured logger
    """
    logger = logging.getLogger(name or __name__)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        logger.setLevel(level)
    return logger


def level_from_name(name: str) -> int:
    """Map a level name ("info", "WARNING", ...) to a logging level."""
    try:
        return _LEVELS[name.lower()]
    except KeyError:
        raise ValueError(f"Unknown log level: {name}") from None


class LoggingSink(ILogSink):
    """ILogSink backed by a standard library logger."""

    def __init__(self, logger: Optional[logging.Logger] = None):
        self.logger = logger or logging.getLogger("capflow")

    def log(self, level: str, message: str, **fields: Any) -> None:
        lvl = _LEVELS.get(level.lower(), logging.INFO)
        if not self.logger.isEnabledFor(lvl):
            return
        if fields:
            rendered = " ".join(f"{k}={v}" for k, v in fields.items())
            message = f"{message} {rendered}"
        self.logger.log(lvl, message)
