"""
Logging setup for blobstore.

Library modules only create module loggers (logging.getLogger(__name__));
handlers are configured here, by applications and the CLI.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path


def setup_logging(
    log_dir: Path | None = None,
    console_level: int = logging.WARNING,
    file_level: int = logging.DEBUG,
) -> logging.Logger:
    """
    Setup blobstore logging.

    Args:
        log_dir: Directory for log files (no file logging if None)
        console_level: Minimum level for console output
        file_level: Minimum level for file output

    Returns:
        The configured logger
    """
    logger = logging.getLogger("blobstore")
    logger.setLevel(min(console_level, file_level) if log_dir else console_level)

    # Clear existing handlers
    logger.handlers = []

    console_handler = logging.StreamHandler()
    console_handler.setLevel(console_level)
    console_handler.setFormatter(logging.Formatter("[%(levelname)s] %(message)s"))
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir = log_dir.expanduser()
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"blobstore_{datetime.now().strftime('%Y%m%d')}.log"
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(file_level)
        file_handler.setFormatter(
            logging.Formatter(
                "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )
        logger.addHandler(file_handler)
        logger.info(f"Logging initialized. File: {log_file}")

    return logger
