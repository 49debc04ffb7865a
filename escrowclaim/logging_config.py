"""
Logging configuration for escrowclaim.

Call setup_logging() once at process start (the CLI does this); every module
gets its logger with logging.getLogger(__name__).

    from escrowclaim.logging_config import setup_logging, get_logger

    setup_logging("DEBUG", log_file="logs/escrowclaim.log")
    logger = get_logger(__name__)

Never log ledger secrets, raw claim credentials or cipher keys. Account ids,
public identities, fingerprint prefixes and transfer references are fine.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

# =============================================================================
# Configuration
# =============================================================================

MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB per file
BACKUP_COUNT = 5

DEFAULT_LOG_LEVEL = "INFO"

LOG_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-30s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

CONSOLE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-20s | %(message)s"
CONSOLE_DATE_FORMAT = "%H:%M:%S"

ROOT_LOGGER = "escrowclaim"

_handlers = []


# =============================================================================
# Setup
# =============================================================================


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    stream=None,
) -> logging.Logger:
    """
    Configure the escrowclaim logger tree.

    Args:
        level:    DEBUG / INFO / WARNING / ERROR. Defaults to LOG_LEVEL env
                  var or INFO.
        log_file: optional path for a rotating file handler
        stream:   console stream, stderr by default

    Calling again replaces the handlers installed by the previous call.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", DEFAULT_LOG_LEVEL)
    log_level = getattr(logging, str(level).upper(), logging.INFO)

    reset_logging()
    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(log_level)

    # === Console Handler ===
    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setLevel(log_level)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT, CONSOLE_DATE_FORMAT))
    logger.addHandler(console_handler)
    _handlers.append(console_handler)

    # === File Handler ===
    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=MAX_LOG_SIZE,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, DATE_FORMAT))
        logger.addHandler(file_handler)
        _handlers.append(file_handler)

    logger.debug("Logging initialized at %s", logging.getLevelName(log_level))
    return logger


def reset_logging() -> None:
    """Remove the handlers installed by setup_logging() and clear the level."""
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in _handlers:
        logger.removeHandler(handler)
        handler.close()
    _handlers.clear()
    logger.setLevel(logging.NOTSET)


def get_logger(name: str) -> logging.Logger:
    """Same as logging.getLogger(name); kept for symmetry with setup_logging."""
    return logging.getLogger(name)
