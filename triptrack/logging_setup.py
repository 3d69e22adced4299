"""Logging setup driven by the ``logging`` config section."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

from triptrack.config import LoggingConfig

LOG_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"
LOG_FILENAME = "triptrack.log"


def configure_logging(config: LoggingConfig) -> logging.Logger:
    """Send package logs to stdout and ``<log_dir>/triptrack.log``."""
    level = logging.getLevelName(str(config.level).upper())
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {config.level}")

    log_dir = Path(config.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    formatter = logging.Formatter(LOG_FORMAT)
    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(formatter)
    file_handler = logging.FileHandler(log_dir / LOG_FILENAME, encoding="utf-8")
    file_handler.setFormatter(formatter)

    logger = logging.getLogger("triptrack")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.addHandler(stream_handler)
    logger.addHandler(file_handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger


__all__ = ["configure_logging"]
