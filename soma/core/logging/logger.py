"""
Soma Logging Subsystem

Purpose
-------
Structured, async-safe logging for the economy engine:

- Every record carries the engine call it belongs to (correlation id,
  operation, user, server) via a ContextVar set by `LogContext`.
- Records are handed to a bounded queue and written by a listener thread, so
  a slow stdout or disk never stalls the event loop. A full queue drops the
  record and counts it instead of blocking.
- Console output is JSON in production and colored text in development; an
  optional daily-rotated JSON file keeps a local copy.

Usage
-----
    from soma.core.logging.logger import LogContext, get_logger, setup_logging

    setup_logging()                      # once, from the process entry point
    logger = get_logger(__name__)

    async with LogContext(user_id=user_id, operation="transfer"):
        logger.info("Transfer complete", extra={"amount": 5.0})

Importing this module installs nothing; library users that embed
EconomyEngine keep their own handlers unless they call `setup_logging()`.
"""

from __future__ import annotations

import json
import logging
import queue
import sys
import uuid
from contextvars import ContextVar, Token
from dataclasses import dataclass
from datetime import datetime, timezone
from logging import Logger
from logging.handlers import QueueHandler, QueueListener, TimedRotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from soma.core.config.config import Config

# Fields every record gets, in JSON output order
CONTEXT_FIELDS = ("correlation_id", "component", "operation", "user_id", "server_id")

_UNSET = "N/A"

_log_context: ContextVar[Dict[str, Any]] = ContextVar("soma_log_context", default={})

# Attributes present on every LogRecord; anything else came from extra={...}
_RECORD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime", "taskName"}


# ============================================================================
# Settings
# ============================================================================


@dataclass(frozen=True, slots=True)
class LoggerConfig:
    """Logging settings derived from Config at call time."""

    CONSOLE_FORMAT: str = "%(asctime)s | %(levelname)-8s | %(name)-30s | %(message)s"
    DATE_FORMAT: str = "%Y-%m-%d %H:%M:%S"
    FILE_NAME: str = "soma.json.log"
    FILE_BACKUP_COUNT: int = 7
    QUEUE_MAX_SIZE: int = 10_000

    @property
    def log_level(self) -> int:
        level = getattr(logging, str(Config.LOG_LEVEL).upper(), None)
        return level if isinstance(level, int) else logging.INFO

    @property
    def use_json(self) -> bool:
        if Config.LOG_JSON is None:
            return Config.is_production()
        return Config.LOG_JSON

    @property
    def use_colors(self) -> bool:
        return Config.LOG_COLORS and not self.use_json and sys.stdout.isatty()

    @property
    def logs_dir(self) -> Path:
        return Path(Config.LOGS_DIR).resolve()


LOGGER_CONFIG = LoggerConfig()


# ============================================================================
# Health
# ============================================================================


@dataclass(slots=True)
class LoggingMetrics:
    records_enqueued: int = 0
    records_dropped: int = 0
    listener_errors: int = 0


@dataclass(frozen=True, slots=True)
class LoggingHealth:
    initialized: bool
    queue_size: int
    queue_max_size: int
    records_enqueued: int
    records_dropped: int
    listener_errors: int


_metrics = LoggingMetrics()
_log_queue: Optional["queue.Queue[logging.LogRecord]"] = None
_listener: Optional[QueueListener] = None


# ============================================================================
# Filters & Formatters
# ============================================================================


class ContextFilter(logging.Filter):
    """Copy the active LogContext onto the record; explicit extras win."""

    def filter(self, record: logging.LogRecord) -> bool:  # type: ignore[override]
        context = _log_context.get()
        for field in CONTEXT_FIELDS:
            if not hasattr(record, field):
                setattr(record, field, context.get(field) or _UNSET)
        if record.component == _UNSET:
            record.component = record.name.rsplit(".", 1)[-1]
        return True


class ColoredFormatter(logging.Formatter):
    COLORS: Dict[str, str] = {
        "DEBUG": "\033[90m",
        "INFO": "\033[94m",
        "WARNING": "\033[93m",
        "ERROR": "\033[91m",
        "CRITICAL": "\033[91m\033[1m",
    }
    RESET = "\033[0m"

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        color = self.COLORS.get(record.levelname)
        if color is None:
            return super().format(record)
        levelname = record.levelname
        record.levelname = f"{color}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class JSONFormatter(logging.Formatter):
    """One JSON object per record: core fields, context, then extras."""

    def format(self, record: logging.LogRecord) -> str:  # type: ignore[override]
        payload: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "location": f"{record.module}:{record.funcName}:{record.lineno}",
        }

        for field in CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value not in (None, _UNSET):
                payload[field] = value

        extra = {
            key: value
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRS and key not in CONTEXT_FIELDS and not key.startswith("_")
        }
        if extra:
            payload["extra"] = extra

        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        elif record.exc_text:
            payload["exception"] = record.exc_text

        return json.dumps(payload, ensure_ascii=False, default=str)


# ============================================================================
# Queue Handler & Listener
# ============================================================================


class SomaQueueHandler(QueueHandler):
    def enqueue(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            _metrics.records_dropped += 1
        else:
            _metrics.records_enqueued += 1


class SomaQueueListener(QueueListener):
    def handleError(self, record: logging.LogRecord) -> None:  # type: ignore[override]
        _metrics.listener_errors += 1
        sys.stderr.write(f"Soma logging failed to write a record from {record.name}\n")


# ============================================================================
# Setup / Shutdown
# ============================================================================


def _console_handler() -> logging.Handler:
    handler = logging.StreamHandler(sys.stdout)
    if LOGGER_CONFIG.use_json:
        handler.setFormatter(JSONFormatter())
    else:
        formatter_class = ColoredFormatter if LOGGER_CONFIG.use_colors else logging.Formatter
        handler.setFormatter(
            formatter_class(fmt=LOGGER_CONFIG.CONSOLE_FORMAT, datefmt=LOGGER_CONFIG.DATE_FORMAT)
        )
    return handler


def _file_handler() -> logging.Handler:
    LOGGER_CONFIG.logs_dir.mkdir(parents=True, exist_ok=True)
    handler = TimedRotatingFileHandler(
        filename=str(LOGGER_CONFIG.logs_dir / LOGGER_CONFIG.FILE_NAME),
        when="midnight",
        backupCount=LOGGER_CONFIG.FILE_BACKUP_COUNT,
        encoding="utf-8",
        utc=True,
    )
    handler.setFormatter(JSONFormatter())
    return handler


def is_logging_initialized() -> bool:
    return _listener is not None


def setup_logging(write_file: bool = True) -> None:
    """Route the root logger through the queue. Calling it twice is a no-op."""
    global _metrics, _log_queue, _listener

    if _listener is not None:
        return

    level = LOGGER_CONFIG.log_level
    handlers = [_console_handler()]
    if write_file:
        handlers.append(_file_handler())
    for handler in handlers:
        handler.setLevel(level)

    _metrics = LoggingMetrics()
    _log_queue = queue.Queue(LOGGER_CONFIG.QUEUE_MAX_SIZE)
    _listener = SomaQueueListener(_log_queue, *handlers, respect_handler_level=True)
    _listener.start()

    queue_handler = SomaQueueHandler(_log_queue)
    queue_handler.setLevel(level)
    # Runs on the producing task, where the ContextVar is visible
    queue_handler.addFilter(ContextFilter())

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(level)
    root.addHandler(queue_handler)

    for noisy in ("sqlalchemy.engine", "aiosqlite", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        "Logging initialized",
        extra={
            "environment": Config.ENVIRONMENT,
            "log_level": logging.getLevelName(level),
            "json": LOGGER_CONFIG.use_json,
            "file_output": write_file,
        },
    )


def shutdown_logging() -> None:
    """Flush the queue and detach Soma's handlers from the root logger."""
    global _log_queue, _listener

    if _listener is None:
        return

    logging.getLogger(__name__).info("Shutting down logging subsystem")
    listener, _listener = _listener, None

    try:
        listener.stop()
    finally:
        root = logging.getLogger()
        for handler in list(root.handlers):
            if isinstance(handler, SomaQueueHandler):
                root.removeHandler(handler)
        for handler in listener.handlers:
            handler.close()
        _log_queue = None


def get_logging_health() -> LoggingHealth:
    return LoggingHealth(
        initialized=is_logging_initialized(),
        queue_size=_log_queue.qsize() if _log_queue is not None else 0,
        queue_max_size=_log_queue.maxsize if _log_queue is not None else 0,
        records_enqueued=_metrics.records_enqueued,
        records_dropped=_metrics.records_dropped,
        listener_errors=_metrics.listener_errors,
    )


# ============================================================================
# Public API
# ============================================================================


def get_logger(name: str) -> Logger:
    return logging.getLogger(name)


def get_log_context() -> Dict[str, Any]:
    return dict(_log_context.get())


class LogContext:
    """
    Scope log fields to one engine call (sync or async `with`).

    Nested contexts inherit the outer fields and correlation id; fields
    passed as None keep the inherited value.
    """

    def __init__(
        self,
        user_id: Optional[str] = None,
        server_id: Optional[str] = None,
        component: Optional[str] = None,
        operation: Optional[str] = None,
        correlation_id: Optional[str] = None,
        **extra: Any,
    ) -> None:
        given = {
            "user_id": user_id,
            "server_id": server_id,
            "component": component,
            "operation": operation,
            "correlation_id": correlation_id,
            **extra,
        }
        self.context: Dict[str, Any] = dict(_log_context.get())
        self.context.update({key: str(value) for key, value in given.items() if value is not None})
        self.context.setdefault("correlation_id", uuid.uuid4().hex[:8])
        self._token: Optional[Token[Dict[str, Any]]] = None

    def __enter__(self) -> "LogContext":
        self._token = _log_context.set(self.context)
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        if self._token is not None:
            _log_context.reset(self._token)
            self._token = None

    async def __aenter__(self) -> "LogContext":
        return self.__enter__()

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.__exit__(exc_type, exc_val, exc_tb)
