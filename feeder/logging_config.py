"""Logging setup for feeder."""

import logging
import sys

LOGGER_NAME = "feeder"
LOG_FORMAT = "%(asctime)s %(levelname)-8s %(name)s: %(message)s"

logger = logging.getLogger(LOGGER_NAME)


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Attach a single stderr handler to the package logger.

    Calling this more than once replaces the previous handler rather than
    stacking duplicates.
    """
    resolved = logging.getLevelName(level.upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    logger.setLevel(resolved)
    logger.handlers = []
    logger.propagate = False

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(resolved)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)

    return logger
