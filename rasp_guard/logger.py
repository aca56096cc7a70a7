"""
Logging configuration for the RASP guard
"""

import logging
import sys
from typing import Optional

from .config import LoggingConfig


LOGGER_NAME = "rasp_guard"

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def setup_logger(config: Optional[LoggingConfig] = None) -> logging.Logger:
    """
    Configure the package logger from a LoggingConfig.

    Handlers installed by an earlier call are replaced, so a guard built later
    with a different config wins.
    """
    config = config or LoggingConfig()
    logger = logging.getLogger(LOGGER_NAME)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    if not config.enabled:
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return logger

    level = _LEVELS[config.level]
    logger.setLevel(level)
    logger.propagate = True

    if config.log_file:
        handler = logging.FileHandler(config.log_file, encoding="utf-8")
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(
        fmt="[%(asctime)s] %(levelname)s [%(name)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    ))
    logger.addHandler(handler)

    return logger
