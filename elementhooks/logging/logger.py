from __future__ import annotations

import logging
import re
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

from elementhooks.config.schema import LoggingConfig

ROOT_LOGGER_NAME = "elementhooks"
_CONFIGURED = False


def configure_logging(config: LoggingConfig | None = None, *, force: bool = False) -> None:
    """Configure the shared package logger once."""
    global _CONFIGURED
    if _CONFIGURED and not force:
        return

    config = config or LoggingConfig()
    level = getattr(logging, config.level.upper(), logging.INFO)
    formatter = logging.Formatter(
        "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        "%Y-%m-%d %H:%M:%S",
    )

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(level)

    if config.file_path:
        log_path = Path(config.file_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_path,
            when="midnight",
            backupCount=config.retention_days,
            encoding="utf-8",
        )
        file_handler.suffix = "%Y-%m-%d.log"
        file_handler.extMatch = re.compile(r"^\d{4}-\d{2}-\d{2}\.log$")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    if config.stdout:
        stream_handler = logging.StreamHandler()
        stream_handler.setLevel(level)
        stream_handler.setFormatter(formatter)
        logger.addHandler(stream_handler)

    _CONFIGURED = True


def get_logger(name: str | None = None) -> logging.Logger:
    """Return a scoped package logger."""
    base = logging.getLogger(ROOT_LOGGER_NAME)
    if not name:
        return base
    if name == ROOT_LOGGER_NAME or name.startswith(f"{ROOT_LOGGER_NAME}."):
        return logging.getLogger(name)
    return base.getChild(name)
