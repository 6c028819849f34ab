"""Logging setup: human-readable text or one JSON object per line"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional


TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
EXTRA_FIELDS = ("operation", "playlist_id", "track_uri", "attempt", "duration")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging"""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        for name in EXTRA_FIELDS:
            if hasattr(record, name):
                log_data[name] = getattr(record, name)

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, ensure_ascii=False, default=str)


def _formatter(log_format: str) -> logging.Formatter:
    if log_format == "json":
        return JSONFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt="%H:%M:%S")


def setup_logging(
    log_level: str = "INFO",
    log_format: str = "text",
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """Setup logging configuration.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Format type (text or json)
        log_file: Optional log file path, rotated at 10MB

    Returns:
        The ``trackdrop`` package logger
    """
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(_formatter(log_format))
    handlers = [console_handler]

    if log_file:
        file_handler = RotatingFileHandler(
            log_file,
            maxBytes=10 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        file_handler.setFormatter(_formatter(log_format))
        handlers.append(file_handler)

    logging.basicConfig(level=log_level.upper(), handlers=handlers, force=True)

    # aiohttp access logging is noisy at DEBUG
    logging.getLogger("aiohttp").setLevel(max(logging.WARNING, logging.getLogger().level))

    return logging.getLogger("trackdrop")
