"""Per-component loggers for the reminder delivery pipeline.

Every module asks for its own logger here. Records go to the console and to
a size-capped file under settings.LOG_DIR, at settings.LOG_LEVEL.
"""

import logging
from logging.handlers import RotatingFileHandler
import os
from typing import Optional

from config import settings

LOG_DIR = settings.LOG_DIR
os.makedirs(LOG_DIR, exist_ok=True)

LOG_FORMAT = '[%(asctime)s] %(levelname)s - %(name)s - %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'
MAX_LOG_BYTES = 10 * 1024 * 1024
LOG_BACKUPS = 5

TOKEN_PREVIEW_LENGTH = 20

NOISY_LOGGERS = ('httpx', 'httpcore', 'uvicorn', 'uvicorn.access', 'sqlalchemy')


def configured_level() -> int:
    """LOG_LEVEL as a logging constant; unknown names mean INFO."""
    level = logging.getLevelName(settings.LOG_LEVEL.upper())
    return level if isinstance(level, int) else logging.INFO


def setup_logger(name: str, log_file: str = 'pipeline.log') -> logging.Logger:
    """Logger for one component, writing to LOG_DIR/log_file and the console.

    Calling it again for the same name returns the existing logger untouched.
    """
    logger = logging.getLogger(name)
    if logger.handlers:
        return logger

    level = configured_level()
    logger.setLevel(level)
    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)

    handlers = [
        RotatingFileHandler(
            os.path.join(LOG_DIR, log_file),
            maxBytes=MAX_LOG_BYTES,
            backupCount=LOG_BACKUPS,
            encoding='utf-8'
        ),
        logging.StreamHandler(),
    ]
    for handler in handlers:
        handler.setLevel(level)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    return logger


def mask_token(token: Optional[str]) -> str:
    """Shorten a delivery token for log output."""
    if not token:
        return 'None'
    return token[:TOKEN_PREVIEW_LENGTH] + '...'


def configure_root_logger():
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


configure_root_logger()
