"""Logging setup shared by the GUI and the transport worker.

Console output goes to stdout; a rotating file under the app data directory
keeps the last few megabytes for troubleshooting a test run afterwards.
"""

from __future__ import annotations

import logging
from logging.handlers import RotatingFileHandler
import os
import sys

from .storage_paths import get_app_data_dir


LOGGER_NAME = "frame_tester"
LOG_LEVEL_ENV_VAR = "FRAME_TESTER_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILENAME = "frame_tester.log"
MAX_LOG_SIZE = 1024 * 1024
BACKUP_COUNT = 3


def configure_logging(level: str | None = None, log_to_file: bool = True) -> logging.Logger:
    level_name = (level or os.environ.get(LOG_LEVEL_ENV_VAR, "INFO")).upper()
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_to_file:
        try:
            log_dir = get_app_data_dir() / "logs"
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = RotatingFileHandler(
                log_dir / LOG_FILENAME,
                maxBytes=MAX_LOG_SIZE,
                backupCount=BACKUP_COUNT,
                encoding="utf-8",
            )
            file_handler.setFormatter(formatter)
            logger.addHandler(file_handler)
        except OSError as exc:
            logger.warning("Could not set up file logging: %s", exc)

    logger.propagate = False
    return logger
