from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

from app.context import get_correlation_id
from app.core.config import Settings


_BASE_RECORD_KEYS = set(logging.makeLogRecord({}).__dict__.keys())

_HTTP_FIELDS = {"method", "path", "status_code", "duration_ms", "client_ip"}
_DOMAIN_FIELDS = {
    "intake_id",
    "entity_type",
    "entity_id",
    "action",
    "actor",
    "export_scope",
    "export_format",
    "row_count",
    "staff_id",
    "department_id",
    "role_id",
    "username",
    "outcome",
}
_KNOWN_FIELDS = frozenset(_HTTP_FIELDS | _DOMAIN_FIELDS | {"error"})

MAX_ERROR_LENGTH = 500

# access lines are already written by RequestLoggingMiddleware
_QUIETED_LOGGERS = ("uvicorn.access",)


class CorrelationIdFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:
        if not getattr(record, "correlation_id", None):
            record.correlation_id = get_correlation_id()
        return True


_DEFAULT_RECORD_FACTORY = logging.getLogRecordFactory()


def _record_factory(*args: Any, **kwargs: Any) -> logging.LogRecord:
    record = _DEFAULT_RECORD_FACTORY(*args, **kwargs)
    if not getattr(record, "correlation_id", None):
        record.correlation_id = get_correlation_id()
    return record


class JsonLogFormatter(logging.Formatter):
    """One JSON object per line; only whitelisted ``extra`` keys are emitted under ``fields``."""

    def __init__(self, service: str | None = None, environment: str | None = None) -> None:
        super().__init__()
        self.service = service
        self.environment = environment

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
            "correlation_id": getattr(record, "correlation_id", None),
        }
        if self.service:
            payload["service"] = self.service
        if self.environment:
            payload["env"] = self.environment

        fields = {
            key: value
            for key, value in record.__dict__.items()
            if key in _KNOWN_FIELDS and key not in _BASE_RECORD_KEYS and value is not None
        }
        if isinstance(fields.get("error"), str):
            fields["error"] = fields["error"][:MAX_ERROR_LENGTH]
        if record.exc_info:
            fields["exception"] = self.formatException(record.exc_info)

        payload["fields"] = fields
        return json.dumps(payload, default=str)


def configure_logging(settings: Settings) -> None:
    root_logger = logging.getLogger()
    if getattr(root_logger, "_intake_configured", False):
        return

    level = logging.getLevelName(settings.log_level.upper())
    if not isinstance(level, int):
        level = logging.INFO

    handler = logging.StreamHandler(stream=sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(JsonLogFormatter(service=settings.app_name, environment=settings.app_env))
    handler.addFilter(CorrelationIdFilter())

    root_logger.handlers.clear()
    root_logger.filters.clear()
    root_logger.setLevel(level)
    logging.setLogRecordFactory(_record_factory)
    root_logger.addHandler(handler)
    for name in _QUIETED_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    root_logger._intake_configured = True  # type: ignore[attr-defined]
