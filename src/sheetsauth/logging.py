"""Logging configuration.

Production output is one JSON object per line using Cloud Logging field
names; development output is colored text on stderr. Call sites attach
context as ``logger.info("...", extra={...})`` and those fields become
top-level keys of the JSON entry.
"""

import json
import logging
import sys
import traceback
from typing import Any

from loguru import logger

_TEXT_FORMAT = (
    "<green>{time:HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
    "<level>{message}</level>"
)

# Loggers of the libraries this package drives
_LIBRARY_LOGGERS = ("httpx", "httpcore", "keyring")


def _severity(level_no: int) -> str:
    if level_no >= 50:
        return "CRITICAL"
    if level_no >= 40:
        return "ERROR"
    if level_no >= 30:
        return "WARNING"
    if level_no >= 20:
        return "INFO"
    return "DEBUG"


def _context(extra: dict[str, Any]) -> dict[str, Any]:
    """Flatten the nested `extra` dict and drop private keys."""
    fields: dict[str, Any] = {}
    for key, value in extra.items():
        if key == "extra" and isinstance(value, dict):
            fields.update(value)
        elif not key.startswith("_"):
            fields[key] = value
    return fields


def _cloud_entry(record: dict[str, Any]) -> dict[str, Any]:
    """Build the Cloud Logging entry for a loguru record."""
    entry: dict[str, Any] = {
        "severity": _severity(record["level"].no),
        "message": record["message"],
        "time": record["time"].isoformat(),
        **_context(record["extra"]),
    }

    if record["level"].no >= 40:
        entry["logging.googleapis.com/sourceLocation"] = {
            "file": record["file"].path,
            "line": str(record["line"]),
            "function": record["function"],
        }

    exc = record["exception"]
    if exc is not None and exc.type is not None:
        entry["exception"] = {
            "type": exc.type.__name__,
            "value": str(exc.value),
            "traceback": "".join(traceback.format_exception(exc.type, exc.value, exc.traceback)),
        }
    return entry


def _json_format(record: dict[str, Any]) -> str:
    # loguru formats the returned template, so the rendered JSON travels in extra
    record["extra"]["_json"] = json.dumps(_cloud_entry(record), default=str)
    return "{extra[_json]}\n"


def configure_logging(*, is_production: bool, log_level: str = "INFO") -> None:
    """Replace loguru's handlers for this process.

    Args:
        is_production: JSON lines on stdout if True, colored text on stderr
            otherwise.
        log_level: Minimum level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
    """
    if is_production:
        handler: dict[str, Any] = {
            "sink": sys.stdout,
            "format": _json_format,
            "colorize": False,
        }
    else:
        handler = {"sink": sys.stderr, "format": _TEXT_FORMAT, "colorize": True}

    # diagnose would print local variables, which can hold keys and tokens
    handler.update(level=log_level, backtrace=False, diagnose=False)
    logger.configure(handlers=[handler])

    _route_standard_logging(log_level)


class InterceptHandler(logging.Handler):
    """Forward standard library log records to loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        # Skip logging's own frames so loguru reports the real caller
        frame, depth = logging.currentframe(), 2
        while frame is not None and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _route_standard_logging(log_level: str) -> None:
    root = logging.getLogger()
    root.handlers = [InterceptHandler()]
    root.setLevel(log_level)

    for name in _LIBRARY_LOGGERS:
        library_logger = logging.getLogger(name)
        library_logger.handlers = []
        library_logger.propagate = True
        library_logger.setLevel(log_level)
