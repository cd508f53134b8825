"""Logging setup for the console and its append-only error log."""
from __future__ import annotations

import logging
import sys
from pathlib import Path
from typing import Optional

from .config import LoggingConfig


ERROR_LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"
_HANDLER_MARKER = "_entra_console_handler"


class ErrorLogFormatter(logging.Formatter):
    """Render ``[yyyy-MM-dd HH:mm:ss] ERROR: <message>`` followed by a details line."""

    def __init__(self) -> None:
        super().__init__(datefmt=ERROR_LOG_DATEFMT)

    def format(self, record: logging.LogRecord) -> str:
        timestamp = self.formatTime(record, self.datefmt)
        details = getattr(record, "details", None)
        if details is None and record.exc_info and record.exc_info[1] is not None:
            details = str(record.exc_info[1])
        return f"[{timestamp}] ERROR: {record.getMessage()}\nDetails: {details or ''}"


def build_error_log_handler(path: Path) -> logging.Handler:
    path.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(path, mode="a", encoding="utf-8")
    handler.setLevel(logging.ERROR)
    handler.setFormatter(ErrorLogFormatter())
    setattr(handler, _HANDLER_MARKER, True)
    return handler


def configure_logging(config: LoggingConfig, stream: Optional[object] = None) -> logging.Logger:
    """Install console and error-file handlers on the package logger.

    Calling this more than once replaces the handlers installed previously.
    """

    logger = logging.getLogger("entra_console")
    level = getattr(logging, config.level.upper(), logging.INFO)
    logger.setLevel(min(level, logging.ERROR))
    logger.propagate = False

    for handler in list(logger.handlers):
        if getattr(handler, _HANDLER_MARKER, False):
            logger.removeHandler(handler)
            handler.close()

    console = logging.StreamHandler(stream or sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    setattr(console, _HANDLER_MARKER, True)
    logger.addHandler(console)
    logger.addHandler(build_error_log_handler(config.error_log_file))
    return logger


__all__ = ["ErrorLogFormatter", "build_error_log_handler", "configure_logging"]
