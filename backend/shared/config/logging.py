"""
Structured logging for the comment feed.

Loggers accept keyword arguments as fields:

    logger.info("Connection joined", channel="room1", connection_id=masked)

Production renders one JSON object per line, everything else a compact
human-readable line. Both include the invocation's request id when one is
bound, so every line emitted while serving one trigger can be grouped.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from shared.config.settings import settings

# Attribute on LogRecord holding the keyword fields
FIELDS_ATTR = "extra_data"

# Keys written by StructuredFormatter that fields may not overwrite
_BASE_KEYS = ("timestamp", "level", "logger", "message", "request_id", "exception")


def _fields_of(record: logging.LogRecord) -> dict[str, Any]:
    return getattr(record, FIELDS_ATTR, None) or {}


def _request_id_of(record: logging.LogRecord) -> str | None:
    request_id = getattr(record, "request_id", None)
    if request_id and request_id != "-":
        return request_id
    return None


class StructuredFormatter(logging.Formatter):
    """One JSON object per record, fields flattened next to the message."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = _request_id_of(record)
        if request_id:
            log_data["request_id"] = request_id

        for key, value in _fields_of(record).items():
            if key in _BASE_KEYS:
                key = f"field_{key}"
            log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


class DevelopmentFormatter(logging.Formatter):
    """`12:00:01 INFO     [req-1234] comment_feed.membership: Connection joined channel=room1`"""

    def format(self, record: logging.LogRecord) -> str:
        parts = [
            datetime.fromtimestamp(record.created).strftime("%H:%M:%S"),
            f"{record.levelname:8}",
        ]
        request_id = _request_id_of(record)
        if request_id:
            parts.append(f"[{request_id[:8]}]")
        parts.append(f"{record.name}: {record.getMessage()}")
        parts.extend(f"{key}={value}" for key, value in _fields_of(record).items())

        line = " ".join(parts)
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


class StructuredLogger(logging.Logger):
    """Logger whose level methods take structured fields as keyword arguments."""

    def _log_fields(self, level: int, msg: str, args: tuple, fields: dict[str, Any]) -> None:
        if not self.isEnabledFor(level):
            return
        exc_info = fields.pop("exc_info", None)
        self._log(level, msg, args, exc_info=exc_info, extra={FIELDS_ATTR: fields or None})

    def debug(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log_fields(logging.DEBUG, msg, args, fields)

    def info(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log_fields(logging.INFO, msg, args, fields)

    def warning(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log_fields(logging.WARNING, msg, args, fields)

    def error(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log_fields(logging.ERROR, msg, args, fields)

    def critical(self, msg: str, *args: Any, **fields: Any) -> None:
        self._log_fields(logging.CRITICAL, msg, args, fields)


logging.setLoggerClass(StructuredLogger)


def setup_logging() -> None:
    """Install the stdout handler on the root logger. Call once at startup."""
    from shared.infrastructure.correlation import CorrelationIdFilter

    log_level = logging.DEBUG if settings.debug else logging.INFO

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(log_level)
    handler.addFilter(CorrelationIdFilter())
    if settings.environment == "production":
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(DevelopmentFormatter())

    root = logging.getLogger()
    root.setLevel(log_level)
    root.handlers.clear()
    root.addHandler(handler)

    # Push sends log every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def get_logger(name: str) -> StructuredLogger:
    """Logger for a module, e.g. `logger = get_logger(__name__)`."""
    return logging.getLogger(name)  # type: ignore


def mask_connection_id(connection_id: str | None) -> str:
    """
    Mask a connection identifier for logging.

    Connection ids double as push addresses, so only the first 6 characters
    are kept for correlation.
    """
    if not connection_id:
        return "<no-connection>"

    if len(connection_id) <= 6:
        return connection_id
    return f"{connection_id[:6]}..."
