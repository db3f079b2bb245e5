"""Logging setup for the worker process."""

from __future__ import annotations

import logging
import sys
from typing import Optional

LOGGER_NAME = "pagesmith_worker"
LOG_FORMAT = "[%(asctime)s] %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str | int = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """
    Configure the package logger with a console handler and an optional file handler.

    The logger does not propagate to the root logger, so calling this twice
    replaces the handlers instead of duplicating output.

    Parameters:
        level (str | int): Logging level name or number; unknown names fall back to INFO.
        log_file (str | None): Path of a log file to append to, if any.

    Returns:
        logging.Logger: The configured package logger.
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            resolved = logging.INFO
    else:
        resolved = level

    logger = logging.getLogger(LOGGER_NAME)
    logger.propagate = False
    logger.setLevel(resolved)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    return logger
