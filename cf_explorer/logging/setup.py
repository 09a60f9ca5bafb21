"""Logging system setup: stderr plus an optional rotating file."""

import atexit
import logging
import logging.handlers
import queue
import sys
from pathlib import Path

from ..config import get_settings

APP_LOGGER_NAME = "cf_explorer"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging() -> logging.Logger:
    """Configure the package logger from settings.

    Safe to call more than once; existing handlers are replaced.
    """
    settings = get_settings()

    app_logger = logging.getLogger(APP_LOGGER_NAME)
    app_logger.setLevel(settings.logging.level)
    app_logger.propagate = False

    shutdown_logging()
    if app_logger.hasHandlers():
        app_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setFormatter(formatter)
    app_logger.addHandler(stderr_handler)

    if not settings.logging.file_path:
        return app_logger

    # File writes go through a queue so cf calls never wait on disk
    try:
        log_path = Path(settings.logging.file_path).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_path, maxBytes=5 * 1024 * 1024, backupCount=3, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler.setLevel(settings.logging.level)

        log_queue: queue.Queue = queue.Queue(-1)
        queue_listener = logging.handlers.QueueListener(
            log_queue, file_handler, respect_handler_level=True
        )
        queue_listener.start()

        app_logger._queue_listener = queue_listener
        atexit.register(queue_listener.stop)

        app_logger.addHandler(logging.handlers.QueueHandler(log_queue))
        app_logger.debug(f"File logging configured at {log_path}")
    except OSError as e:
        app_logger.warning(f"Could not set up file logging: {e}")

    return app_logger


def shutdown_logging():
    """Stop the queue listener if it exists."""
    app_logger = logging.getLogger(APP_LOGGER_NAME)
    if hasattr(app_logger, "_queue_listener"):
        app_logger._queue_listener.stop()
        delattr(app_logger, "_queue_listener")
