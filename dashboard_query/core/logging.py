"""
Logging for the dashboard query cache.

Every module logs through ``get_logger(__name__)`` into the
``dashboard_query`` logger tree. The package never configures the root
logger on import; applications opt in with ``configure_logging()``, which
attaches one handler to the package logger (plain text or one JSON object
per line).

Cache internals report through ``log_event`` at DEBUG level. Each event
carries its type, the query key it concerns and optional fields, both in
the message text and as record attributes for the JSON formatter.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from types import TracebackType
from typing import Any

PACKAGE_LOGGER = "dashboard_query"

TEXT_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_package_logger = logging.getLogger(PACKAGE_LOGGER)
_package_logger.addHandler(logging.NullHandler())


class JsonFormatter(logging.Formatter):
    """One JSON object per record, including structured event fields."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "logger": record.name,
            "level": record.levelname,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            payload["event"] = event
            payload["key"] = getattr(record, "query_key", None)
            payload.update(getattr(record, "event_fields", {}))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def configure_logging(
    level: int = logging.INFO,
    verbose: bool = False,
    json_format: bool = False,
) -> logging.Handler:
    """Attach a stdout handler to the package logger.

    Calling it again replaces the handler installed by the previous call.

    Args:
        level: Package log level.
        verbose: Shorthand for ``level=logging.DEBUG``.
        json_format: Emit JSON lines instead of plain text.

    Returns:
        The installed handler.
    """
    if verbose:
        level = logging.DEBUG

    handler = logging.StreamHandler(sys.stdout)
    if json_format:
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, datefmt=DATE_FORMAT))
    handler.set_name("dashboard_query")

    for existing in list(_package_logger.handlers):
        if existing.get_name() == "dashboard_query":
            _package_logger.removeHandler(existing)
    _package_logger.addHandler(handler)
    _package_logger.setLevel(level)

    # urllib3 retries log every attempt at WARNING
    logging.getLogger("urllib3.connectionpool").setLevel(logging.ERROR)
    return handler


def get_logger(name: str) -> logging.Logger:
    """Logger for a module of this package (pass ``__name__``)."""
    return logging.getLogger(name)


def set_log_level(level: int, logger_name: str | None = None) -> None:
    """Set the level of ``logger_name``, or of the package logger."""
    logging.getLogger(logger_name or PACKAGE_LOGGER).setLevel(level)


def quiet_mode() -> None:
    """WARNING and above only."""
    set_log_level(logging.WARNING)


def verbose_mode() -> None:
    """Everything, including per-query cache events."""
    set_log_level(logging.DEBUG)


class LogContext:
    """Temporarily change a logger's level.

    Usage:
        with LogContext(logging.DEBUG, "dashboard_query.cache"):
            await client.query(key, fetcher)
    """

    def __init__(self, level: int, logger_name: str | None = None) -> None:
        self.level = level
        self.logger = logging.getLogger(logger_name or PACKAGE_LOGGER)
        self._saved: int | None = None

    def __enter__(self) -> LogContext:
        self._saved = self.logger.level
        self.logger.setLevel(self.level)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        if self._saved is not None:
            self.logger.setLevel(self._saved)


def log_event(
    logger: logging.Logger,
    level: int,
    event_type: str,
    key: Any,
    message: str,
    **fields: Any,
) -> None:
    """Log ``EVENT - key: message [field=value ...]``.

    Args:
        logger: Logger to emit on.
        level: Logging level.
        event_type: One of the EventType names.
        key: Query key (or another subject such as an endpoint).
        message: Human-readable text.
        **fields: Extra values, appended to the text and kept on the record.
    """
    if not logger.isEnabledFor(level):
        return
    subject = list(key) if isinstance(key, tuple) else key
    text = f"{event_type} - {subject}: {message}"
    if fields:
        text += " [" + " ".join(f"{k}={v}" for k, v in fields.items()) + "]"
    logger.log(level, text, extra={"event": event_type, "query_key": subject, "event_fields": fields})


class EventType:
    """Event names used with log_event."""

    QUERY_HIT = "QUERY_HIT"
    QUERY_FETCH = "QUERY_FETCH"
    QUERY_DEDUPED = "QUERY_DEDUPED"
    QUERY_SUCCESS = "QUERY_SUCCESS"
    QUERY_ERROR = "QUERY_ERROR"
    QUERY_SUPERSEDED = "QUERY_SUPERSEDED"

    CACHE_INVALIDATED = "CACHE_INVALIDATED"
    CACHE_EVICTED = "CACHE_EVICTED"
    CACHE_CLEARED = "CACHE_CLEARED"

    MUTATION_SUCCESS = "MUTATION_SUCCESS"
    MUTATION_ERROR = "MUTATION_ERROR"

    OBSERVER_ERROR = "OBSERVER_ERROR"

    CIRCUIT_BREAKER = "CIRCUIT_BREAKER"
    TRAINING_COMPLETE = "TRAINING_COMPLETE"
