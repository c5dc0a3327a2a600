import logging
import os
from typing import Optional

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_LEVEL_ENV = "IMAGE_FOLDER_CLASSIFIER_LOG_LEVEL"


def setup_logger(name: str, level: Optional[int] = None) -> logging.Logger:
    """Set up a logger with the specified name and logging level.

    When no level is given, ``IMAGE_FOLDER_CLASSIFIER_LOG_LEVEL`` is consulted
    (e.g. ``DEBUG``) before falling back to INFO.
    """
    if level is None:
        level_name = os.environ.get(LOG_LEVEL_ENV, "INFO").upper()
        level = logging.getLevelName(level_name)
        if not isinstance(level, int):
            level = logging.INFO

    logger = logging.getLogger(name)
    logger.setLevel(level)

    ch = logging.StreamHandler()
    ch.setLevel(level)
    ch.setFormatter(logging.Formatter(LOG_FORMAT))

    # Avoid duplicate handlers when a module is imported more than once
    if not logger.hasHandlers():
        logger.addHandler(ch)

    return logger
