"""
Structured logging for the articleflow logger.

Every line carries the request id of the HTTP request (or sync job) it was
emitted under, plus whichever correlation fields the caller passed to
log_event(): user, draft, entity, sync operation, billing event type, error
code. Production emits one JSON object per line; other environments emit a
single readable line with the same fields as key=value pairs.
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Dict, Optional

LOGGER_NAME = "articleflow"

request_id_ctx_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)

# Correlation fields surfaced by both formatters, in output order
_CONTEXT_FIELDS = (
    "user_id",
    "draft_id",
    "entity_id",
    "entity_kind",
    "operation",
    "event_type",
    "error_code",
    "job_id",
)

# Upper bound (exclusive) in ms -> bucket label
_LATENCY_BUCKETS = (
    (10, "<10ms"),
    (100, "10-100ms"),
    (500, "100-500ms"),
    (1000, "500-1000ms"),
)

_EXTRA_LIMIT = 500


def get_request_id(default: Optional[str] = None) -> Optional[str]:
    """Request id bound to the current context, if any."""
    rid = request_id_ctx_var.get()
    return default if rid is None else rid


def latency_bucket_ms(latency_ms: Optional[float]) -> str:
    if latency_ms is None:
        return "unknown"
    for upper, label in _LATENCY_BUCKETS:
        if latency_ms < upper:
            return label
    return ">=1000ms"


def _utc_timestamp(record: logging.LogRecord) -> str:
    return datetime.fromtimestamp(record.created, timezone.utc).isoformat().replace("+00:00", "Z")


def _record_context(record: logging.LogRecord) -> Dict[str, object]:
    context = {}
    for field in _CONTEXT_FIELDS:
        value = getattr(record, field, None)
        if value is not None:
            context[field] = value
    return context


class RequestIdFilter(logging.Filter):
    """Fill record.request_id from the context when the caller did not set one."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "request_id", None) is None:
            record.request_id = get_request_id()
        return True


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "timestamp": _utc_timestamp(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "request_id": getattr(record, "request_id", None),
            **_record_context(record),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


class PrettyFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        parts = [_utc_timestamp(record), record.levelname, f"[{LOGGER_NAME}]"]
        rid = getattr(record, "request_id", None)
        if rid:
            parts.append(f"[rid={rid}]")
        parts.append(record.getMessage())
        parts.extend(f"{key}={value}" for key, value in _record_context(record).items())
        line = " ".join(parts)
        if record.exc_info:
            line = f"{line}\n{self.formatException(record.exc_info)}"
        return line


def configure_logging(env: str = "development", level: str = "INFO") -> None:
    """Install the single stdout handler on the articleflow logger."""
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level.upper())

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter() if env.lower() == "production" else PrettyFormatter())
    handler.addFilter(RequestIdFilter())

    logger.handlers = [handler]
    logger.propagate = True

    # uvicorn keeps its own handlers
    for name in ("uvicorn", "uvicorn.error"):
        logging.getLogger(name).propagate = False


def _safe_truncate(value, limit: int = _EXTRA_LIMIT) -> str:
    try:
        text = str(value)
    except Exception:
        return "<unserializable>"
    return text if len(text) <= limit else f"{text[:limit]}...<truncated>"


def log_event(
    level: str,
    msg: str,
    *,
    request_id: Optional[str] = None,
    user_id: Optional[str] = None,
    draft_id: Optional[str] = None,
    entity_id: Optional[str] = None,
    operation: Optional[str] = None,
    event_type: Optional[str] = None,
    error_code: Optional[str] = None,
    extra: Optional[Dict[str, object]] = None,
    exc_info: bool = False,
):
    """Log msg on the articleflow logger with correlation fields attached.

    Values in ``extra`` are stringified and truncated; unset optional fields are
    left off the record.
    """
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        # Workers and tests may log before anything configured the logger
        configure_logging(os.getenv("ENV", "development"))

    fields = {
        "request_id": request_id or get_request_id(),
        "user_id": user_id,
        "draft_id": draft_id,
        "entity_id": entity_id,
    }
    optional = {"operation": operation, "event_type": event_type, "error_code": error_code}
    fields.update({key: value for key, value in optional.items() if value})
    for key, value in (extra or {}).items():
        fields[key] = _safe_truncate(value)

    emit = getattr(logger, level, logger.info)
    emit(msg, extra=fields, exc_info=exc_info)
