"""
Logging configuration for minifypix.

Uses loguru. Results meant for the user are printed by the CLI; log
records go to stderr and describe what the pipeline is doing.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger


CONSOLE_FORMAT = "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>"
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(level: str = "WARNING", log_file: Optional[Path] = None) -> None:
    """Configure logging once at startup.

    Args:
        level: Console log level
        log_file: Optional file that receives every DEBUG record
    """
    logger.remove()

    logger.add(
        sys.stderr,
        level=level,
        format=CONSOLE_FORMAT,
        colorize=True,
    )

    if log_file is not None:
        log_file = Path(log_file)
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format=FILE_FORMAT,
            enqueue=True,  # optimize calls log from worker threads
        )

    logger.debug("Logging initialized (level={})", level)


def get_logger(name: str):
    """Logger bound to a module name (typically __name__)."""
    return logger.bind(module=name)
