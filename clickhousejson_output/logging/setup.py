"""
Logging setup for the ClickHouse JSON output.

Handlers are attached to the package logger, so every module logger
below it (clickhousejson_output.clickhouse.sender, .buffer.output, ...)
reaches them whatever log file name the caller picks. Chunks dropped
after a non-retryable ClickHouse response can also be written to a file
of their own so that data loss stays visible to operators.
"""

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Optional

PACKAGE_LOGGER_NAME = "clickhousejson_output"
DROPPED_LOGGER_NAME = f"{PACKAGE_LOGGER_NAME}.dropped"

LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"


def _file_handler_for(logger: logging.Logger, path: str) -> Optional[RotatingFileHandler]:
    path = os.path.abspath(path)
    for handler in logger.handlers:
        if isinstance(handler, RotatingFileHandler) and handler.baseFilename == path:
            return handler
    return None


def _add_file_handler(
    logger: logging.Logger,
    path: str,
    max_bytes: int,
    backup_count: int,
    fmt: str,
) -> RotatingFileHandler:
    handler = _file_handler_for(logger, path)
    if handler is None:
        handler = RotatingFileHandler(path, maxBytes=max_bytes, backupCount=backup_count)
        handler.setFormatter(logging.Formatter(fmt))
        logger.addHandler(handler)
    return handler


def setup_logging(
    name: str = PACKAGE_LOGGER_NAME,
    log_dir: str = "logs",
    level: Optional[str] = None,
    max_bytes: int = 10 * 1024 * 1024,
    backup_count: int = 5,
    console: bool = True,
    enable_dropped_chunk_log: bool = False,
) -> logging.Logger:
    """
    Route the package's log records to a rotating file and the console.

    Args:
        name: Base name of the log file, <log_dir>/<name>.log.
        log_dir: Directory for log files.
        level: Log level string (DEBUG, INFO, etc.). Defaults to LOG_LEVEL
               env var, then INFO.
        max_bytes: Max size per log file before rotation.
        backup_count: Number of rotated log files to keep.
        console: Also log to stderr.
        enable_dropped_chunk_log: Also write dropped-chunk errors to
            <log_dir>/dropped_chunks.log.

    Returns:
        The package logger. Calling again with the same arguments adds
        no handlers.
    """
    if level is None:
        level = os.getenv("LOG_LEVEL", "INFO")
    log_level = getattr(logging, level.upper(), logging.INFO)

    os.makedirs(log_dir, exist_ok=True)

    logger = logging.getLogger(PACKAGE_LOGGER_NAME)
    logger.setLevel(log_level)

    _add_file_handler(
        logger, os.path.join(log_dir, f"{name}.log"), max_bytes, backup_count, LOG_FORMAT
    )

    if console and not any(type(h) is logging.StreamHandler for h in logger.handlers):
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(console_handler)

    if enable_dropped_chunk_log:
        dropped = _add_file_handler(
            logging.getLogger(DROPPED_LOGGER_NAME),
            os.path.join(log_dir, "dropped_chunks.log"),
            max_bytes,
            backup_count,
            "%(asctime)s %(message)s",
        )
        dropped.setLevel(logging.ERROR)

    return logger
