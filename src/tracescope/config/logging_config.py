"""
Logging configuration for tracescope.

Library modules only call logging.getLogger(__name__); handlers are attached
once, by the CLI (or by an embedding application), through setup_logging().
"""

import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, Union

from tracescope.config import settings


DETAILED_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(filename)s:%(lineno)d] - %(message)s"
SIMPLE_FORMAT = "%(asctime)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

ROOT_LOGGER_NAME = "tracescope"


def setup_logging(
    level: Union[int, str, None] = None,
    log_file: Optional[str] = None,
    detailed: bool = False,
) -> logging.Logger:
    """
    Attach a console handler (stderr) and, optionally, a rotating file
    handler to the package root logger.

    Args:
        level: Logging level; defaults to settings.LOG_LEVEL
        log_file: Optional path of a log file (rotated at 10 MB)
        detailed: Use the detailed format (includes file/line)

    Returns:
        The configured "tracescope" logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(DETAILED_FORMAT if detailed else SIMPLE_FORMAT, datefmt=DATE_FORMAT)

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            path,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(DETAILED_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(file_handler)

    return logger
