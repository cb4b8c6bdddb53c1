"""Loguru sink configuration.

Stdout belongs to the protocol layer that hosts this package, so every log
line goes to stderr.
"""

from __future__ import annotations

import os
import sys

from loguru import logger

LOG_LEVEL_ENV = "NOTE_INDEX_LOG_LEVEL"
DEFAULT_LOG_LEVEL = "INFO"
LOG_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
)


def configure_logging(level: str | None = None) -> int:
    """Replace loguru's default sink with a stderr sink.

    The level comes from ``level``, then ``NOTE_INDEX_LOG_LEVEL``, then INFO.

    Returns:
        The loguru handler id of the new sink
    """
    resolved = (level or os.environ.get(LOG_LEVEL_ENV) or DEFAULT_LOG_LEVEL).upper()
    logger.remove()
    return logger.add(sys.stderr, level=resolved, format=LOG_FORMAT)
