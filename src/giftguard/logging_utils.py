"""Shared logging utilities.

Usage:

  from giftguard.logging_utils import get_logger
  logger = get_logger(__name__)
  logger.info("hello")

The first call configures the ``giftguard`` logger hierarchy from settings
(console, plus a rotating file when ``LOG_FILE`` is set). Later calls do not add
duplicate handlers.
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path

from giftguard.config import get_settings

_CONFIG_LOCK = threading.Lock()
_CONFIGURED = False

ROOT_LOGGER = "giftguard"


def _parse_level(level: str) -> int:
    text = (level or "").strip()
    if not text:
        return logging.INFO
    if text.isdigit():
        return int(text)
    return getattr(logging, text.upper(), logging.INFO)


def _configure_once() -> None:
    global _CONFIGURED
    if _CONFIGURED:
        return

    with _CONFIG_LOCK:
        if _CONFIGURED:
            return

        settings = get_settings()
        level = _parse_level(settings.log_level)
        fmt = logging.Formatter(settings.log_format)

        root = logging.getLogger(ROOT_LOGGER)
        root.setLevel(level)

        if not root.handlers:
            console = logging.StreamHandler(stream=sys.stdout)
            console.setLevel(level)
            console.setFormatter(fmt)
            root.addHandler(console)

            if settings.log_file:
                logfile = Path(settings.log_file)
                logfile.parent.mkdir(parents=True, exist_ok=True)
                file_handler = RotatingFileHandler(
                    logfile,
                    maxBytes=5 * 1024 * 1024,
                    backupCount=5,
                    encoding="utf-8",
                    delay=True,
                )
                file_handler.setLevel(level)
                file_handler.setFormatter(fmt)
                root.addHandler(file_handler)

        _CONFIGURED = True


def get_logger(name: str) -> logging.Logger:
    """Return a logger under the configured ``giftguard`` hierarchy."""

    _configure_once()
    return logging.getLogger(name)
