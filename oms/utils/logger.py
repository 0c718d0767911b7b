"""
Logging for the OMS backend.

Every module logs through ``get_logger(<component>)`` so all records land
under the ``oms`` namespace and share one stdout handler. The level comes
from LOG_LEVEL (default INFO) and can be changed at runtime with
``configure_logging``.
"""
import logging
import os
import sys
from typing import Optional

ROOT_LOGGER_NAME = "oms"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logger = logging.getLogger(ROOT_LOGGER_NAME)


def configure_logging(level: Optional[str] = None) -> logging.Logger:
    """Attach the stdout handler once and set the namespace level."""
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    logger.setLevel(level)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(handler)
    for handler in logger.handlers:
        handler.setLevel(level)
    # uvicorn configures the root logger; keep records from printing twice
    logger.propagate = False
    return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Component logger, e.g. ``get_logger("cache")`` -> ``oms.cache``."""
    if name:
        return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
    return logger


configure_logging()
