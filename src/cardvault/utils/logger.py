"""Application-wide logger writing to platformdirs user_log_dir.

Every record passes through :class:`RedactingFilter` before it reaches the
file, so a card number or an encoded key pasted into a message never lands
on disk.
"""

from __future__ import annotations

import logging
import logging.handlers
import re
from pathlib import Path

from platformdirs import user_log_dir

_APP_NAME = "cardvault"
_LOG_FILE = "cardvault.log"
_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
_BACKUP_COUNT = 3

_REDACTIONS = (
    # 13 to 19 digits, optionally grouped with spaces or dashes
    (re.compile(r"(?<!\d)\d(?:[ -]?\d){12,18}(?!\d)"), "[CARD]"),
    # base64 or hex runs the size of a key, salt or ciphertext
    (re.compile(r"[A-Za-z0-9+/]{40,}={0,2}"), "[REDACTED]"),
)

_logger: logging.Logger | None = None


def redact(text: str) -> str:
    for pattern, replacement in _REDACTIONS:
        text = pattern.sub(replacement, text)
    return text


class RedactingFilter(logging.Filter):
    """Rewrites each record's message with :func:`redact` applied."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        cleaned = redact(message)
        if cleaned != message:
            record.msg = cleaned
            record.args = None
        return True


def get_logger() -> logging.Logger:
    """Return the singleton application logger, initialising it on first call."""
    global _logger
    if _logger is not None:
        return _logger

    log_dir = Path(user_log_dir(_APP_NAME))
    log_dir.mkdir(parents=True, exist_ok=True)

    handler = logging.handlers.RotatingFileHandler(
        log_dir / _LOG_FILE,
        maxBytes=_MAX_BYTES,
        backupCount=_BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(
        logging.Formatter(
            fmt="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
            datefmt="%Y-%m-%dT%H:%M:%S",
        )
    )
    handler.addFilter(RedactingFilter())

    logger = logging.getLogger(_APP_NAME)
    logger.setLevel(logging.DEBUG)
    if not logger.handlers:
        logger.addHandler(handler)
    logger.propagate = False

    _logger = logger
    return _logger


def get_child_logger(name: str) -> logging.Logger:
    """Return a named child of the application logger (e.g. ``sync``).

    Safe to call at import time: records reach the log file once
    :func:`get_logger` has attached the handler.
    """
    return logging.getLogger(f"{_APP_NAME}.{name}")
