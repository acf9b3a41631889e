"""Logging configuration using loguru"""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import LOG_RETENTION, LOG_ROTATION

# Records logged outside a scrape have no domain bound
NO_DOMAIN = "-"

CONSOLE_FORMAT = (
    "<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | "
    "<cyan>{extra[domain]: <22}</cyan> | <level>{message}</level>"
)
FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[domain]} | "
    "{name}:{function}:{line} | {message}"
)


def domain_logger(domain: str):
    """Logger with the site's domain attached to every record"""
    return logger.bind(domain=domain)


def setup_logging(verbose: bool = False, log_file: Optional[Path] = None) -> None:
    """
    Configure loguru sinks for the recipe fetcher.

    Console output is compact and shows which site each line is about; the
    file sink keeps full timestamps and call sites at DEBUG level.

    Args:
        verbose: Enable debug-level console output (queue, cache and retry chatter)
        log_file: Optional file path for log output
    """
    logger.remove()
    logger.configure(extra={"domain": NO_DOMAIN})

    logger.add(
        sys.stdout,
        format=CONSOLE_FORMAT,
        level="DEBUG" if verbose else "INFO",
        colorize=True,
    )

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=FILE_FORMAT,
            level="DEBUG",
            rotation=LOG_ROTATION,
            retention=LOG_RETENTION,
            compression="zip",
            enqueue=True,
        )
        logger.info(f"Logging to file: {log_file}")
