"""Logger utility for structured logging."""

import logging
import os
import sys
from pathlib import Path


DEFAULT_LOGGER_NAME = "spotify_history_sync"


def setup_logger(name: str = DEFAULT_LOGGER_NAME, log_file: str = None) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Args:
        name: Logger name
        log_file: Optional path to log file. If None, logs to console only.

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)

    console_formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    file_formatter = logging.Formatter(
        '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    # Console handler (only one, even across repeated calls)
    if not any(_is_console_handler(h) for h in logger.handlers):
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    # File handler (optional)
    if log_file:
        log_path = Path(log_file)
        already_attached = any(
            isinstance(h, logging.FileHandler) and h.baseFilename == os.path.abspath(log_file)
            for h in logger.handlers
        )
        if not already_attached:
            log_path.parent.mkdir(parents=True, exist_ok=True)

            file_handler = logging.FileHandler(log_file, encoding='utf-8')
            file_handler.setLevel(logging.DEBUG)
            file_handler.setFormatter(file_formatter)
            logger.addHandler(file_handler)

    # File handlers record DEBUG, so the logger must let it through
    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        logger.setLevel(logging.DEBUG)

    return logger


def get_logger(name: str = DEFAULT_LOGGER_NAME) -> logging.Logger:
    """
    Get or create a logger instance with console output.

    Args:
        name: Logger name

    Returns:
        Logger instance with console handler
    """
    logger = logging.getLogger(name)

    # If logger doesn't have handlers yet, set up console output
    if not logger.handlers:
        logger.setLevel(logging.INFO)

        # Console handler for terminal output
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(logging.INFO)
        console_formatter = logging.Formatter(
            '%(message)s'  # Simple format for console
        )
        console_handler.setFormatter(console_formatter)
        logger.addHandler(console_handler)

    return logger


def _is_console_handler(handler: logging.Handler) -> bool:
    return isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler)
