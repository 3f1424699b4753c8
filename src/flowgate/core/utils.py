"""Utility functions shared by the flowgate service and CLI."""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from typing import Optional

LOGGER_NAME = "flowgate"


def _get_log_level(level: Optional[str] = None) -> int:
    """Resolve a level name, falling back to FLOWGATE_LOG_LEVEL then INFO.

    Supports: DEBUG, INFO, WARNING, ERROR (case-insensitive).
    """
    level_str = (level or os.environ.get("FLOWGATE_LOG_LEVEL", "INFO")).upper()
    level_map = {
        "DEBUG": logging.DEBUG,
        "INFO": logging.INFO,
        "WARNING": logging.WARNING,
        "ERROR": logging.ERROR,
        "CRITICAL": logging.CRITICAL,
    }
    return level_map.get(level_str, logging.INFO)


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 5,
) -> logging.Logger:
    """Configure the ``flowgate`` logger hierarchy.

    Every module logs through ``logging.getLogger(__name__)``, so configuring
    the package logger once covers the router, engines and webhook handler.

    Args:
        level: Console log level; defaults to FLOWGATE_LOG_LEVEL or INFO
        log_file: Optional file that captures everything at DEBUG, rotated by size
        max_bytes: Maximum file size before rotation
        backup_count: Number of backup files to keep

    Returns:
        Configured package logger
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)

    # Clear any existing handlers to avoid duplicates
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(_get_log_level(level))
    console_handler.setFormatter(
        logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
    )
    logger.addHandler(console_handler)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=max_bytes, backupCount=backup_count, mode="a"
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)

    logger.debug("Logging initialized (file=%s)", log_file)
    return logger


def log_workflow_event(
    logger: logging.Logger, step: str, status: str, details: Optional[str] = None
) -> None:
    """Log a structured workflow event.

    Args:
        logger: Logger instance to use
        step: Workflow step name (e.g., "refinement", "cascade", "rollup")
        status: Event status (e.g., "started", "completed", "failed")
        details: Optional additional details
    """
    message = f"[{step}] {status}"
    if details:
        message += f" - {details}"

    if status == "failed":
        logger.error(message)
    elif status in ("started", "completed", "skipped"):
        logger.info(message)
    else:
        logger.debug(message)
