"""Centralized Loguru logging configuration."""

from __future__ import annotations

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from loguru import logger

# Chatty client libraries: the long-poll loop issues a request every few seconds
DEFAULT_THIRD_PARTY_LEVELS: Dict[str, str] = {
    "httpx": "WARNING",
    "httpcore": "WARNING",
    "telegram": "WARNING",
    "openai": "WARNING",
}


class InterceptHandler(logging.Handler):
    """Forward stdlib logging records to Loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        level: object
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        logger.opt(depth=6, exception=record.exc_info).log(level, record.getMessage())


def configure_logging(
    log_file_prefix: str,
    logs_dir: str = "logs",
    console_level: str = "INFO",
    third_party_levels: Optional[Dict[str, str]] = None,
) -> str:
    """Configure a rotating file sink, a console sink and stdlib interception.

    Returns the path of the log file for this process.
    """
    log_path = Path(logs_dir)
    log_path.mkdir(parents=True, exist_ok=True)

    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    log_file = log_path / f"{log_file_prefix}_{timestamp}.log"

    logger.remove()
    logger.add(
        str(log_file),
        level="DEBUG",
        format="{time:YYYY-MM-DD HH:mm:ss} | {level:<8} | {name} | {message}",
        encoding="utf-8",
        rotation="50 MB",
        retention=10,
        enqueue=True,
    )
    logger.add(
        sys.stderr,
        level=console_level.upper(),
        format="{time:HH:mm:ss} | {level:<8} | {message}",
    )

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.DEBUG, force=True)

    levels = dict(DEFAULT_THIRD_PARTY_LEVELS)
    levels.update(third_party_levels or {})
    for logger_name, level_name in levels.items():
        level_value = getattr(logging, level_name.upper(), logging.INFO)
        logging.getLogger(logger_name).setLevel(level_value)

    return str(log_file)
