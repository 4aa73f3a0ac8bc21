"""Logging configuration for the tunnel API, bridge relays and proof service."""

import logging
import sys

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s:%(funcName)s:%(lineno)d | %(message)s"

# Libraries whose INFO output duplicates our own request logging.
NOISY_LOGGERS = ("aiohttp.access", "asyncio")


def setup_logging(level: int | str = logging.INFO, *, stream=None) -> None:
    """
    Configure logging for the application.

    Args:
        level: Logging level name or number (default: INFO)
        stream: Output stream (default: stdout)
    """
    if isinstance(level, str):
        level = level.upper()

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream or sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S"))
    root_logger.addHandler(console_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """Get a module logger (name is typically __name__)."""
    return logging.getLogger(name)
