"""
Logging utilities.

Every ragchat logger hangs off the ``ragchat`` logger, which owns the one
stderr handler; module loggers only propagate to it.
"""

import logging
import sys

ROOT_LOGGER = 'ragchat'
LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _root_logger() -> logging.Logger:
    root = logging.getLogger(ROOT_LOGGER)

    if not root.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(handler)
        root.setLevel(logging.INFO)

    return root


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the given name.

    Names outside the ragchat tree (e.g. a script's ``__main__``) are
    placed under it so they share the package handler and level.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger propagating to the ``ragchat`` logger
    """
    _root_logger()

    if name != ROOT_LOGGER and not name.startswith(f'{ROOT_LOGGER}.'):
        name = f'{ROOT_LOGGER}.{name}'
    return logging.getLogger(name)


def set_log_level(level: int | str) -> None:
    """
    Set the log level of the ragchat logger tree.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    if isinstance(level, str):
        level = getattr(logging, level.upper())

    _root_logger().setLevel(level)
