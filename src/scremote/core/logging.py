"""Logging setup."""

from __future__ import annotations

import logging
import sys
from typing import Optional, Union

from scremote.core.config import get_settings


def setup_logging(level: Optional[Union[int, str]] = None) -> logging.Logger:
    """
    Configure logging for scremote.

    Args:
        level: Log level; defaults to DEBUG when settings.debug is set,
            otherwise settings.log_level.

    Returns:
        The package logger.
    """
    settings = get_settings()
    if level is None:
        level = logging.DEBUG if settings.debug else settings.log_level
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    formatter = logging.Formatter(
        fmt="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)

    logger = logging.getLogger("scremote")
    logger.setLevel(level)
    # Replace any existing handlers to avoid duplicate logs
    logger.handlers.clear()
    logger.addHandler(console_handler)

    # Reduce noise from third-party libraries
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)

    return logger
