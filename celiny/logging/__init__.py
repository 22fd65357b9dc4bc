"""Logging utilities for Celiny.

Runtime modules log through ``logging.getLogger(__name__)``; this package only
owns the one-time root configuration so scripts, tests and embedding
applications share a format and a level taken from ``CELINY_LOG_LEVEL``.
"""

from __future__ import annotations

import logging
import os
import sys
from typing import Optional

DEFAULT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "CELINY_LOG_LEVEL"


def resolve_log_level(level: Optional[str] = None) -> int:
    """Map a level name (or the environment) to a ``logging`` level constant."""

    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").strip().upper()
    value = logging.getLevelName(name)
    return value if isinstance(value, int) else logging.INFO


def setup_logging(level: Optional[str] = None) -> None:
    """Configure the root logger once with a stdout stream handler."""

    logging.basicConfig(
        level=resolve_log_level(level),
        format=DEFAULT_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def get_logger(name: str, level: Optional[str] = None) -> logging.Logger:
    """Return a named logger at the configured level."""

    logger = logging.getLogger(name)
    logger.setLevel(resolve_log_level(level))
    return logger


__all__ = [
    "DEFAULT_FORMAT",
    "LOG_LEVEL_ENV",
    "get_logger",
    "resolve_log_level",
    "setup_logging",
]
