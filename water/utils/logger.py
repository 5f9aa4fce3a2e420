"""Logging configuration."""

import logging
from typing import Optional

ROOT_LOGGER = "water"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get a configured logger instance."""
    logger = logging.getLogger(name or ROOT_LOGGER)
    root = logging.getLogger(ROOT_LOGGER)

    # Only configure the package logger once; children propagate to it
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    return logger


def configure_logging(verbose: bool = False, quiet: bool = False) -> int:
    """Set the package log level from CLI flags and return it."""
    if quiet:
        level = logging.ERROR
    elif verbose:
        level = logging.DEBUG
    else:
        level = logging.INFO

    root = get_logger(ROOT_LOGGER)
    root.setLevel(level)
    root.debug(f"Logging configured (verbose={verbose}, quiet={quiet}, level={logging.getLevelName(level)})")
    return level
