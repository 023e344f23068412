"""Logging setup shared by the client services and the reference backend."""

from __future__ import annotations

import logging
import sys
from typing import Optional

from dmsync.config import get_settings

LOGGER_NAMESPACE = "dmsync"
LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class LoggingConfig:
    """Configure the dmsync logger tree once per process."""

    _configured = False

    def __init__(self, level: Optional[str] = None) -> None:
        if LoggingConfig._configured:
            return
        settings = get_settings()
        resolved = (level or settings.log_level or "INFO").upper()
        root = logging.getLogger(LOGGER_NAMESPACE)
        root.setLevel(getattr(logging, resolved, logging.INFO))
        if not root.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(LOG_FORMAT))
            root.addHandler(handler)
        LoggingConfig._configured = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Return a logger under the dmsync namespace, configuring logging on first use."""
    LoggingConfig()
    if not name:
        return logging.getLogger(LOGGER_NAMESPACE)
    if name.startswith(LOGGER_NAMESPACE):
        return logging.getLogger(name)
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")
