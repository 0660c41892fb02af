"""
Logging setup for the voice session bridge.

Everything the bridge logs goes through the single "voice_bridge" logger. Lifecycle
transitions are logged at INFO and per-frame audio at DEBUG, so production runs
at INFO keep one line per session event rather than fifty lines per second of call.
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from voice_bridge.config.constants import LOGGER_NAME

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_FILE_NAME = "voice_bridge.log"
MAX_LOG_SIZE = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5

# Third-party loggers that log every frame or request at INFO/DEBUG
NOISY_LOGGERS = ("websockets", "uvicorn.access")


def _file_handler(log_dir: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    log_dir.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        log_dir / LOG_FILE_NAME,
        maxBytes=MAX_LOG_SIZE,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.setFormatter(formatter)
    return handler


def configure_logging(level: Optional[str] = None, log_dir: Optional[str] = None) -> logging.Logger:
    """
    Configure the bridge logger with a console handler and a rotating file handler.

    Calling it again replaces the handlers instead of stacking them, so the
    launcher and the app module can both call it safely.

    Args:
        level: Level name; falls back to LOG_LEVEL, then INFO
        log_dir: Directory for the rotating log file; falls back to LOG_DIR, then ./logs

    Returns:
        logging.Logger: The configured bridge logger
    """
    level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    directory = Path(log_dir or os.getenv("LOG_DIR", "logs"))

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level_name, logging.INFO))
    for handler in logger.handlers[:]:
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(LOG_FORMAT)
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    try:
        logger.addHandler(_file_handler(directory, formatter))
    except OSError as e:
        logger.warning(f"File logging disabled, could not open {directory}: {e}")

    logger.propagate = False

    if logger.level > logging.DEBUG:
        for name in NOISY_LOGGERS:
            logging.getLogger(name).setLevel(logging.WARNING)

    logger.debug(f"Logging configured at {level_name}, file logs in {directory}")
    return logger
