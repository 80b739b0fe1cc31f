"""Logging configuration.

Configures loguru to output JSON-formatted logs in production and
human-readable colored output in development. Logs always go to stderr or
an explicit sink: in stdio mode stdout carries the MCP protocol stream.
"""

import json
import logging
import sys
import traceback
from typing import Any, TextIO

from loguru import logger


def _json_serializer(record: dict[str, Any]) -> str:
    """Serialize a log record to a single JSON line.

    Additional fields from `extra` are included at the top level.
    """
    log_entry: dict[str, Any] = {
        "severity": record["level"].name,
        "message": record["message"],
        "time": record["time"].isoformat(),
        "logger": record["name"],
    }

    # Add location info for errors
    if record["level"].no >= 40:  # ERROR and above
        log_entry["sourceLocation"] = {
            "file": record["file"].path,
            "line": str(record["line"]),
            "function": record["function"],
        }

    if record["exception"] is not None:
        exc_info = record["exception"]
        tb_str = None
        if exc_info.traceback:
            tb_str = "".join(
                traceback.format_exception(exc_info.type, exc_info.value, exc_info.traceback)
            )
        log_entry["exception"] = {
            "type": exc_info.type.__name__ if exc_info.type else None,
            "value": str(exc_info.value) if exc_info.value else None,
            "traceback": tb_str,
        }

    extra = record.get("extra", {})
    for key, value in extra.items():
        # Skip internal loguru keys
        if not key.startswith("_"):
            log_entry[key] = value

    return json.dumps(log_entry, default=str)


def _json_sink(stream: TextIO):
    def sink(message: Any) -> None:
        stream.write(_json_serializer(message.record) + "\n")
        stream.flush()

    return sink


def configure_logging(
    *,
    is_production: bool,
    log_level: str = "INFO",
    stream: TextIO | None = None,
) -> None:
    """Configure loguru for the application.

    Args:
        is_production: If True, output JSON lines. If False, use
            human-readable colored output for development.
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        stream: Destination stream, stderr by default.
    """
    stream = stream or sys.stderr
    logger.remove()

    if is_production:
        logger.add(
            _json_sink(stream),
            level=log_level,
            format="{message}",  # Format is handled by the sink
            backtrace=False,
            diagnose=False,  # Don't include variable values in production
        )
    else:
        logger.add(
            stream,
            level=log_level,
            format=(
                "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level> {extra}"
                "{exception}"
            ),
            colorize=stream.isatty(),
            backtrace=True,
            diagnose=True,
        )

    _intercept_standard_logging(log_level)


def _intercept_standard_logging(log_level: str) -> None:
    """Route standard library logging (uvicorn, httpx, mcp) to loguru."""

    class InterceptHandler(logging.Handler):
        def emit(self, record: logging.LogRecord) -> None:
            try:
                level = logger.level(record.levelname).name
            except ValueError:
                level = record.levelno

            # Find caller from where the logged message originated
            frame, depth = logging.currentframe(), 2
            while frame and frame.f_code.co_filename == logging.__file__:
                frame = frame.f_back
                depth += 1

            logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())

    logging.basicConfig(handlers=[InterceptHandler()], level=log_level, force=True)

    for name in ["uvicorn", "uvicorn.error", "uvicorn.access", "httpx", "httpcore", "mcp"]:
        logging.getLogger(name).setLevel(log_level)
        logging.getLogger(name).handlers = [InterceptHandler()]
