"""
Structured Logging for Storage Operations

Every storage log line carries machine-readable fields (bucket, key,
operation, counts) next to its message:

    logger = StructuredLogger(__name__).with_extra(bucket="photos")
    logger.info("Bulk delete finished", prefix="cache/", deleted=12)

Output formats:
- JSON, one object per line, for log aggregation (ELK, Loki, CloudWatch)
- key=value text for terminals (the CLI default)

Fields naming credentials or SSE-C key material are masked in both formats.

Author: attachstore maintainers
License: MIT
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import IntEnum
from typing import Any, Iterator, Optional, TextIO


class LogLevel(IntEnum):
    """Log level enumeration."""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50


# Fields added by `StructuredLogger.context(...)` for the current task
_scope_fields: ContextVar[dict[str, Any]] = ContextVar("attachstore_log_scope", default={})

# Standard LogRecord attributes; anything else was passed through `extra`
_RECORD_ATTRS = frozenset(vars(logging.LogRecord("", 0, "", 0, "", (), None))) | {"message", "asctime"}

# Field name fragments whose values must never reach a log sink
_SECRET_MARKERS = ("customer_key", "secret_access_key", "session_token", "password")

_MASK = "***"

# Libraries that log every HTTP request at DEBUG
_NOISY_LOGGERS = ("botocore", "aiobotocore", "boto3", "aioboto3", "urllib3", "asyncio")


def _is_secret(name: str) -> bool:
    lowered = name.lower()
    return any(marker in lowered for marker in _SECRET_MARKERS) and not lowered.endswith("md5")


def _masked(fields: dict[str, Any]) -> dict[str, Any]:
    return {name: _MASK if _is_secret(name) else value for name, value in fields.items()}


def _record_fields(record: logging.LogRecord) -> dict[str, Any]:
    """Scope fields, then per-call fields, with secrets masked."""
    fields = dict(_scope_fields.get())
    fields.update(
        (name, value) for name, value in record.__dict__.items()
        if name not in _RECORD_ATTRS
    )
    return _masked(fields)


# =============================================================================
# FORMATTERS
# =============================================================================

class JsonFormatter(logging.Formatter):
    """
    One JSON object per record.

    `@timestamp`, `level`, `logger` and `message` come first; structured
    fields follow. Values JSON cannot encode are rendered with `str()`.
    """

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "@timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_record_fields(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class KeyValueFormatter(logging.Formatter):
    """
    Human-readable lines with the structured fields appended:

        2024-05-01 12:00:00 | INFO     | attachstore.storage.bulk | Bulk delete finished prefix=cache/ deleted=12
    """

    def __init__(self) -> None:
        super().__init__("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s", "%Y-%m-%d %H:%M:%S")

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        pairs = " ".join(f"{name}={value}" for name, value in self._pairs(record))
        if not pairs:
            return line
        head, sep, tail = line.partition("\n")
        return f"{head} {pairs}{sep}{tail}"

    @staticmethod
    def _pairs(record: logging.LogRecord) -> Iterator[tuple[str, Any]]:
        for name, value in _record_fields(record).items():
            if value is not None:
                yield name, value


# =============================================================================
# LOGGER
# =============================================================================

class StructuredLogger:
    """
    Thin wrapper over a stdlib logger that accepts fields as keywords.

    Levels are left to the logging configuration (see `setup_logging`), so
    applications embedding attachstore keep control of verbosity.
    """

    __slots__ = ("_logger", "_bound")

    def __init__(self, name: str) -> None:
        self._logger = logging.getLogger(name)
        self._bound: dict[str, Any] = {}

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.DEBUG, message, fields)

    def info(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.INFO, message, fields)

    def warning(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.WARNING, message, fields)

    def error(self, message: str, **fields: Any) -> None:
        self._emit(LogLevel.ERROR, message, fields)

    def _emit(self, level: LogLevel, message: str, fields: dict[str, Any]) -> None:
        if self._logger.isEnabledFor(level):
            self._logger.log(level, message, extra={**self._bound, **fields}, stacklevel=3)

    def with_extra(self, **fields: Any) -> StructuredLogger:
        """Logger for the same name that adds `fields` to every line."""
        child = StructuredLogger(self._logger.name)
        child._bound = {**self._bound, **fields}
        return child

    @staticmethod
    def context(**fields: Any) -> _LogScope:
        """Add `fields` to every line logged inside the `with` block."""
        return _LogScope(fields)


class _LogScope:
    __slots__ = ("_fields", "_token")

    def __init__(self, fields: dict[str, Any]) -> None:
        self._fields = fields
        self._token = None

    def __enter__(self) -> _LogScope:
        self._token = _scope_fields.set({**_scope_fields.get(), **self._fields})
        return self

    def __exit__(self, *exc_info: Any) -> None:
        if self._token is not None:
            _scope_fields.reset(self._token)
            self._token = None


# =============================================================================
# SETUP
# =============================================================================

def setup_logging(
    level: LogLevel = LogLevel.INFO,
    json_output: bool = True,
    stream: Optional[TextIO] = None,
) -> None:
    """
    Install a single root handler.

    Args:
        level: Minimum level for attachstore loggers
        json_output: JSON lines instead of key=value text
        stream: Output stream (default: stderr)
    """
    handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(JsonFormatter() if json_output else KeyValueFormatter())

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(level)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, LogLevel.WARNING))
