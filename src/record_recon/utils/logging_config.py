"""Logging configuration for the reconciliation engine."""

from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union
import logging

LOGGER_NAME = "record_recon"


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[Path] = None,
    log_format: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the ``record_recon`` logger.

    Args:
        level: Logging level, as a number or a name such as ``"DEBUG"``
        log_file: Optional path to a rotating log file that records everything
        log_format: Console format; the configured default when omitted

    Returns:
        The configured package logger

    Raises:
        ValueError: If ``level`` names no known level
    """
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown log level: {level}")
        level = resolved

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(
        logging.Formatter(log_format or "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    logger.addHandler(console_handler)

    # The file keeps debug detail even when the console is quieter
    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - "
                "%(filename)s:%(lineno)d - %(message)s"
            )
        )
        logger.addHandler(file_handler)
        logger.setLevel(logging.DEBUG)

    return logger
