"""
Centralized logging configuration for StorybookWeb.

Session checks, cost recalculations and purchase verifications can overlap
on Flask worker threads, so every log line carries the thread that wrote it.

Features:
    - Automatic thread name in all log messages
    - Console output (always enabled)
    - Rotating file logs (optional, for production)
    - Separate error log for ERROR/CRITICAL messages
    - A compact helper for logging remote API calls

Log Format:
    2026-10-19 10:15:30 [INFO    ] [MainThread] storybook_web.app - Starting application
    2026-10-19 10:15:31 [DEBUG   ] [Thread-3] storybook_web.core.api_client - GET /api/auth/me -> 200 (41 ms)
    2026-10-19 10:15:32 [INFO    ] [Thread-4] storybook_web.services.session_service - Session confirmed

Usage:
    # At application startup
    from logging_config import setup_logging, get_logger

    setup_logging(log_level=logging.INFO, enable_file_logging=True)

    # In modules
    logger = get_logger(__name__)
"""

import logging
import sys
import threading
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


APP_LOGGER_NAME = "storybook_web"

LOG_FORMAT = "%(asctime)s [%(levelname)-8s] [%(thread_name)s] %(name)s - %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
LOG_FILE_MAX_BYTES = 10 * 1024 * 1024
LOG_FILE_BACKUPS = 5


# =============================================================================
# THREAD CONTEXT FILTER
# =============================================================================

class ThreadContextFilter(logging.Filter):
    """Adds ``thread_name`` to every record for the format string."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.thread_name = threading.current_thread().name
        return True


# =============================================================================
# LOGGING SETUP
# =============================================================================

def setup_logging(
    app_name: str = APP_LOGGER_NAME,
    log_level: int = logging.INFO,
    log_dir: Optional[Path] = None,
    enable_file_logging: bool = True,
) -> logging.Logger:
    """
    Configure application logging with thread context.

    Args:
        app_name: Name of the root logger (default: "storybook_web")
        log_level: Minimum log level (default: INFO)
        log_dir: Directory for log files (default: ./logs relative to this file)
        enable_file_logging: Whether to write to log files (default: True)

    Returns:
        Configured root logger instance
    """
    app_logger = logging.getLogger(app_name)
    app_logger.setLevel(log_level)
    app_logger.propagate = False

    # Tests build several apps in one process
    app_logger.handlers.clear()

    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
    thread_filter = ThreadContextFilter()

    def attach(handler: logging.Handler, level: int) -> None:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        handler.addFilter(thread_filter)
        app_logger.addHandler(handler)

    attach(logging.StreamHandler(sys.stdout), log_level)

    if enable_file_logging:
        log_dir = log_dir or Path(__file__).parent / "logs"
        log_dir.mkdir(parents=True, exist_ok=True)

        app_log_file = log_dir / f"{app_name}.log"
        attach(_rotating_handler(app_log_file), log_level)
        attach(_rotating_handler(log_dir / f"{app_name}_error.log"), logging.ERROR)
        app_logger.info(f"File logging enabled: {app_log_file}")

    # urllib3 logs every connection at DEBUG; the API client logs its own calls
    logging.getLogger("urllib3").setLevel(max(log_level, logging.WARNING))

    app_logger.info(f"Logging configured at level {logging.getLevelName(log_level)}")
    return app_logger


def _rotating_handler(path: Path) -> RotatingFileHandler:
    return RotatingFileHandler(
        filename=path,
        maxBytes=LOG_FILE_MAX_BYTES,
        backupCount=LOG_FILE_BACKUPS,
        encoding="utf-8",
    )


# =============================================================================
# LOGGER FACTORY FUNCTIONS
# =============================================================================

def get_logger(name: str) -> logging.Logger:
    """
    Get a child logger under the application namespace.

    Example:
        # In services/session_service.py
        logger = get_logger(__name__)
        # Logger name: "storybook_web.services.session_service"
    """
    if not name.startswith(APP_LOGGER_NAME):
        name = f"{APP_LOGGER_NAME}.{name}"
    return logging.getLogger(name)


def log_api_call(
    logger: logging.Logger,
    method: str,
    path: str,
    status: int,
    elapsed_ms: float,
) -> None:
    """
    Log one remote API round trip.

    Status 0 means no response was received. Request and response bodies
    are never logged since they can carry credentials.
    """
    if status == 0:
        logger.warning(f"{method} {path} -> no response ({elapsed_ms:.0f} ms)")
    elif status >= 500:
        logger.error(f"{method} {path} -> {status} ({elapsed_ms:.0f} ms)")
    else:
        logger.debug(f"{method} {path} -> {status} ({elapsed_ms:.0f} ms)")


def set_thread_name(name: str) -> None:
    """
    Set the name of the current thread.

    This name appears in log messages in the [thread_name] field.
    """
    threading.current_thread().name = name
