"""Logging setup for the BFF.

All loggers live under the ``aad_session_bff`` namespace so a single
``configure_logging`` call controls the whole package.
"""

from __future__ import annotations

import logging
import sys

ROOT_LOGGER_NAME = "aad_session_bff"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"

_configured = False


def configure_logging(level: str = "info") -> None:
    """Attach a stdout handler to the package logger.

    Safe to call more than once; only the level is updated on later calls.
    """
    global _configured
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if _configured:
        return
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    _configured = True


def get_logger(name: str) -> logging.Logger:
    """Return a child logger, e.g. ``get_logger("auth")`` -> ``aad_session_bff.auth``."""
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def preview(token: str | None, length: int = 12) -> str:
    """Truncated form of a credential, safe to put in a log line."""
    if not token:
        return "<none>"
    return token[:length] + "..." if len(token) > length else token
