"""Logging setup shared by the API process: context-aware text or JSON lines."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Iterable
import contextvars
import hashlib
import json
import logging

DEFAULT_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s user_id=%(user_id)s %(message)s"

_STANDARD_LOG_RECORD_KEYS = set(logging.LogRecord("", 0, "", 0, "", (), None).__dict__.keys())

_user_id = contextvars.ContextVar("log_user_id", default="-")


def _hash_user_id(value: str) -> str:
    """Hash user IDs so chat identities never appear verbatim in logs."""
    digest = hashlib.sha256(value.encode("utf-8")).hexdigest()
    return digest[:12]


def set_log_context(*, user_id: str | None = None) -> None:
    if user_id is not None:
        _user_id.set(_hash_user_id(str(user_id)))


def clear_log_context() -> None:
    _user_id.set("-")


def summarize_text(value: Any, *, max_str: int = 200) -> Any:
    """Return a size-limited version of model output for log lines."""
    if isinstance(value, bytes):
        return {"__bytes__": len(value)}
    if isinstance(value, str) and len(value) > max_str:
        return value[:max_str] + "...(truncated)"
    return value


class LoggingContextFilter(logging.Filter):
    """Inject the hashed user id into each log record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.user_id = _user_id.get()
        return True


class JsonFormatter(logging.Formatter):
    """Format log records as JSON for structured logging sinks."""

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(timespec="milliseconds")
        payload: Dict[str, Any] = {
            "timestamp": timestamp,
            "severity": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "user_id": getattr(record, "user_id", "-"),
        }
        extras = {key: value for key, value in record.__dict__.items() if key not in _STANDARD_LOG_RECORD_KEYS}
        payload.update(extras)
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def build_formatter(use_json: bool) -> logging.Formatter:
    if use_json:
        return JsonFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def configure_logging(level: str = "INFO", *, use_json: bool = False, logger_names: Iterable[str] | None = None) -> None:
    """Install one stream handler on the root logger and align uvicorn's handlers with it."""
    root = logging.getLogger()
    formatter = build_formatter(use_json)
    if not root.handlers:
        root.addHandler(logging.StreamHandler())
    root.setLevel(level.upper())
    if logger_names is None:
        logger_names = ("", "uvicorn", "uvicorn.error", "uvicorn.access")
    for name in logger_names:
        for handler in logging.getLogger(name).handlers:
            handler.setFormatter(formatter)
            if not any(isinstance(f, LoggingContextFilter) for f in handler.filters):
                handler.addFilter(LoggingContextFilter())
