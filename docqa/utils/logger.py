"""Loguru setup shared by the docqa CLI and the API server."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

_CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
_FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{line} - {message}"


def setup_logger(log_level: str = "INFO", log_file: Optional[str] = "logs/docqa.log") -> None:
    """
    Replace loguru's default sink.

    - Console (stderr): coloured, human-readable
    - File, when `log_file` is non-empty: rotating at 10 MB, zipped, kept 7 days
    """
    logger.remove()
    logger.add(sys.stderr, level=log_level, format=_CONSOLE_FORMAT, colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level=log_level,
            format=_FILE_FORMAT,
            rotation="10 MB",
            retention="7 days",
            compression="zip",
            enqueue=True,
        )

    logger.info(f"Logger initialised | level={log_level} | file={log_file or '-'}")
