"""Structured logging set-up and request-scoped logging context."""

from __future__ import annotations

import contextlib
import contextvars
import json
import logging
import secrets
import sys
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import IntEnum
from typing import Any, Iterator

from scifind.config import Config, ConfigError

LOGGER_NAME = "scifind"
_CHARSET = "abcdefghijklmnopqrstuvwxyz0123456789"


class LogLevel(IntEnum):
    """Application log levels, ordered by severity."""

    DEBUG = 0
    INFO = 1
    WARN = 2
    ERROR = 3

    def __str__(self) -> str:
        return self.name.lower()

    def to_logging_level(self) -> int:
        """Return the matching level of the standard logging module."""
        return _LOGGING_LEVELS[self]


_LOGGING_LEVELS = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

_LEVEL_NAMES = {
    logging.DEBUG: "DEBUG",
    logging.INFO: "INFO",
    logging.WARNING: "WARN",
    logging.ERROR: "ERROR",
}


def parse_log_level(level: str) -> LogLevel:
    """Map a level name to a LogLevel; unknown names mean INFO."""
    try:
        return LogLevel[level.upper()] if level in ("debug", "info", "warn", "error") else LogLevel.INFO
    except (KeyError, AttributeError):
        return LogLevel.INFO


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_CHARSET) for _ in range(length))


def _generate_request_id() -> str:
    return f"req_{int(time.time())}_{_random_string(8)}"


def _generate_trace_id() -> str:
    return f"trace_{_random_string(16)}"


def _generate_span_id() -> str:
    return f"span_{_random_string(8)}"


@dataclass
class RequestContext:
    """Request-specific information attached to log records."""

    request_id: str = ""
    user_id: str = ""
    operation: str = ""
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    metadata: dict[str, str] = field(default_factory=dict)
    trace_id: str = ""
    span_id: str = ""


def new_request_context(operation: str) -> RequestContext:
    """Create a request context with fresh request, trace and span IDs."""
    return RequestContext(
        request_id=_generate_request_id(),
        operation=operation,
        start_time=datetime.now(timezone.utc),
        metadata={},
        trace_id=_generate_trace_id(),
        span_id=_generate_span_id(),
    )


_current_context: contextvars.ContextVar[RequestContext | None] = contextvars.ContextVar(
    "scifind_request_context", default=None
)


@contextlib.contextmanager
def request_context(req_ctx: RequestContext) -> Iterator[RequestContext]:
    """Make req_ctx the current request context for the enclosed block."""
    token = _current_context.set(req_ctx)
    try:
        yield req_ctx
    finally:
        _current_context.reset(token)


def get_request_context() -> RequestContext | None:
    """Return the current request context, or None outside of one."""
    return _current_context.get()


# --------------------------------------------------------------------------
# Formatting
# --------------------------------------------------------------------------


def _timestamp(record: logging.LogRecord) -> str:
    stamp = datetime.fromtimestamp(record.created).astimezone().isoformat(timespec="seconds")
    return stamp[:-6] + "Z" if stamp.endswith("+00:00") else stamp


def _base_fields(record: logging.LogRecord, add_source: bool) -> dict[str, Any]:
    out: dict[str, Any] = {
        "time": _timestamp(record),
        "level": _LEVEL_NAMES.get(record.levelno, record.levelname),
    }
    if add_source:
        out["source"] = f"{record.pathname}:{record.lineno}"
    out["msg"] = record.getMessage()
    out.update(getattr(record, "fields", None) or {})
    return out


def _json_default(value: Any) -> Any:
    if isinstance(value, timedelta):
        return (value // timedelta(microseconds=1)) * 1000
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _duration_text(value: timedelta) -> str:
    micros = value // timedelta(microseconds=1)
    if micros == 0:
        return "0s"
    sign = "-" if micros < 0 else ""
    micros = abs(micros)
    if micros < 1000:
        return f"{sign}{micros}µs"
    if micros < 1_000_000:
        return f"{sign}{micros / 1000:g}ms"
    hours, rest = divmod(micros, 3_600_000_000)
    minutes, rest = divmod(rest, 60_000_000)
    seconds = f"{rest / 1_000_000:.6f}".rstrip("0").rstrip(".") + "s"
    text = seconds
    if hours or minutes:
        text = f"{minutes}m{text}"
    if hours:
        text = f"{hours}h{text}"
    return sign + text


def _text_value(value: Any) -> str:
    if isinstance(value, timedelta):
        text = _duration_text(value)
    elif isinstance(value, bool):
        text = "true" if value else "false"
    else:
        text = str(value)
    if text == "" or any(ch in text for ch in ' ="\t\n'):
        return json.dumps(text, ensure_ascii=False)
    return text


class _JSONFormatter(logging.Formatter):
    def __init__(self, add_source: bool) -> None:
        super().__init__()
        self._add_source = add_source

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps(_base_fields(record, self._add_source), default=_json_default, ensure_ascii=False)


class _TextFormatter(logging.Formatter):
    def __init__(self, add_source: bool) -> None:
        super().__init__()
        self._add_source = add_source

    def format(self, record: logging.LogRecord) -> str:
        fields = _base_fields(record, self._add_source)
        return " ".join(f"{key}={_text_value(value)}" for key, value in fields.items())


def _make_handler(config: Config) -> logging.Handler:
    settings = config.logging
    if settings.output == "stderr":
        return logging.StreamHandler(sys.stderr)
    if settings.output == "file":
        if not settings.file_path:
            raise ConfigError("file path required when output is file")
        try:
            return logging.FileHandler(settings.file_path, mode="a", encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"failed to open log file: {exc}") from exc
    return logging.StreamHandler(sys.stdout)


def new_logger(config: Config) -> logging.Logger:
    """Configure and return the application logger according to config.logging."""
    level = parse_log_level(config.logging.level)
    handler = _make_handler(config)
    if config.logging.format == "json":
        handler.setFormatter(_JSONFormatter(config.logging.add_source))
    else:
        handler.setFormatter(_TextFormatter(config.logging.add_source))

    logger = logging.getLogger(LOGGER_NAME)
    for old in list(logger.handlers):
        logger.removeHandler(old)
        old.close()
    logger.addHandler(handler)
    logger.setLevel(level.to_logging_level())
    logger.propagate = False
    return logger


# --------------------------------------------------------------------------
# Context-aware logging
# --------------------------------------------------------------------------


def _as_logging_level(level: LogLevel | int) -> int:
    if isinstance(level, LogLevel):
        return level.to_logging_level()
    return int(level)


def log_with_context(logger: logging.Logger, level: LogLevel | int, msg: str, **kwargs: Any) -> None:
    """Log msg with kwargs as fields, adding the current request context if any."""
    fields = dict(kwargs)
    req_ctx = get_request_context()
    if req_ctx is not None:
        fields["request_id"] = req_ctx.request_id
        fields["trace_id"] = req_ctx.trace_id
        fields["span_id"] = req_ctx.span_id
        fields["operation"] = req_ctx.operation
        fields["duration"] = datetime.now(timezone.utc) - req_ctx.start_time
        if req_ctx.user_id:
            fields["user_id"] = req_ctx.user_id
    logger.log(_as_logging_level(level), msg, extra={"fields": fields})


def debug_with_context(logger: logging.Logger, msg: str, **kwargs: Any) -> None:
    log_with_context(logger, LogLevel.DEBUG, msg, **kwargs)


def info_with_context(logger: logging.Logger, msg: str, **kwargs: Any) -> None:
    log_with_context(logger, LogLevel.INFO, msg, **kwargs)


def warn_with_context(logger: logging.Logger, msg: str, **kwargs: Any) -> None:
    log_with_context(logger, LogLevel.WARN, msg, **kwargs)


def error_with_context(logger: logging.Logger, msg: str, **kwargs: Any) -> None:
    log_with_context(logger, LogLevel.ERROR, msg, **kwargs)