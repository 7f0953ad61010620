"""Structured logging for the gateway.

Centralizes logging configuration:
- request_id propagation via contextvars
- redaction of credentials that travel through a proxy (auth headers, cookies)
- JSON formatter for machine-friendly access and error events
- stdout or rotating-file sink, selected by configuration
"""

from __future__ import annotations

import json
import logging
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from logging import LogRecord
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Iterable, Mapping

from gateway.core.config import LogSettings, settings

_request_id_var: ContextVar[str | None] = ContextVar("request_id", default=None)

# Keys redacted wherever they appear in structured extras (including nested
# header mappings).
SENSITIVE_KEYS_DEFAULT: set[str] = {
    "authorization",
    "proxy-authorization",
    "cookie",
    "set-cookie",
    "x-api-key",
    "api_key",
    "token",
    "secret",
    "password",
}

# Standard LogRecord attributes that are not part of the structured payload
_EXCLUDED_ATTRS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "taskName",
    "stack",
}


def set_request_id(request_id: str | None) -> None:
    """Bind a correlation id to the current request context.

    Args:
        request_id: Id taken from the inbound header or freshly generated;
            every log line emitted while handling the request carries it.
    """

    _request_id_var.set(request_id)


def get_request_id() -> str | None:
    """Return the correlation id bound to the current context.

    Returns:
        The request id, or None outside of a request (startup, shutdown).
    """

    return _request_id_var.get()


def clear_request_id() -> None:
    """Unbind the correlation id once the access event has been logged."""

    _request_id_var.set(None)


def _is_sensitive_key(key: str, sensitive_keys: set[str]) -> bool:
    """Tell whether a field or header name must be masked.

    Args:
        key: Record attribute or mapping key (header names are
            case-insensitive, so the comparison is too).
        sensitive_keys: Lower-cased names to redact.

    Returns:
        True if the value stored under ``key`` must not be logged.
    """

    return key.lower() in sensitive_keys


def _redact_value(value: Any, sensitive_keys: set[str]) -> Any:
    """Recursively redact sensitive entries inside mappings and sequences.

    Args:
        value: Structured extra, e.g. a header mapping or a list of pairs.
        sensitive_keys: Lower-cased names to redact.

    Returns:
        A copy of ``value`` with sensitive entries replaced by "[REDACTED]";
        scalars are returned unchanged.
    """

    if isinstance(value, Mapping):
        return {
            k: "[REDACTED]"
            if _is_sensitive_key(str(k), sensitive_keys)
            else _redact_value(v, sensitive_keys)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(_redact_value(v, sensitive_keys) for v in value)
    return value


def _sanitize_record(record: LogRecord, sensitive_keys: set[str]) -> dict[str, Any]:
    """Collect the record's extras as a dict, redacting sensitive fields.

    Args:
        record: LogRecord instance to sanitize.
        sensitive_keys: Set of keys that must be redacted.

    Returns:
        Dict of extra fields ready for formatting.
    """

    data: dict[str, Any] = {}

    for key, value in record.__dict__.items():
        if key in _EXCLUDED_ATTRS or key.startswith("_"):
            continue
        if _is_sensitive_key(key, sensitive_keys):
            data[key] = "[REDACTED]"
            continue
        data[key] = _redact_value(value, sensitive_keys)

    return data


def _default_timestamp() -> str:
    """UTC timestamp in ISO 8601 form."""
    return datetime.now(timezone.utc).isoformat()


class RequestIdFilter(logging.Filter):
    """Attach request_id from context when absent on the record."""

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        if getattr(record, "request_id", None) is None:
            request_id = get_request_id()
            if request_id:
                record.request_id = request_id
        return True


class SensitiveDataFilter(logging.Filter):
    """Redact sensitive fields on the record before formatting.

    Applied to the handler, so the plain formatter is covered as well as the
    JSON one.
    """

    def __init__(self, sensitive_keys: Iterable[str] | None = None) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)

    def filter(self, record: LogRecord) -> bool:  # noqa: D401
        sanitized = _sanitize_record(record, self.sensitive_keys)
        for key, value in sanitized.items():
            setattr(record, key, value)
        return True


class JsonFormatter(logging.Formatter):
    """Format LogRecord as a single JSON line.

    Fields: timestamp, level, logger, message, request_id (when bound), every
    structured extra (redacted), and exc_info for logged exceptions.
    """

    def __init__(
        self,
        *,
        sensitive_keys: Iterable[str] | None = None,
        ensure_ascii: bool = True,
    ) -> None:
        super().__init__()
        self.sensitive_keys = set(sensitive_keys or SENSITIVE_KEYS_DEFAULT)
        self.ensure_ascii = ensure_ascii

    def format(self, record: LogRecord) -> str:  # noqa: D401
        record_data = {
            "timestamp": _default_timestamp(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = getattr(record, "request_id", None) or get_request_id()
        if request_id:
            record_data["request_id"] = request_id

        record_data.update(_sanitize_record(record, self.sensitive_keys))

        if record.exc_info:
            record_data["exc_info"] = self.formatException(record.exc_info)

        return json.dumps(record_data, default=str, ensure_ascii=self.ensure_ascii)


def _build_handler(log_settings: LogSettings) -> logging.Handler:
    """Construct the sink handler from configuration.

    Args:
        log_settings: ``LOG_OUTPUT`` selects "stdout" or "file"; for files,
            ``LOG_MAX_BYTES`` > 0 enables rotation with
            ``LOG_BACKUP_COUNT`` kept files.

    Returns:
        A handler without formatter or filters; ``configure_logging`` adds
        those.
    """

    if log_settings.output.lower() == "file":
        file_path = Path(log_settings.file_path or "logs/gateway.log")
        file_path.parent.mkdir(parents=True, exist_ok=True)
        if log_settings.max_bytes:
            return RotatingFileHandler(
                file_path,
                maxBytes=log_settings.max_bytes,
                backupCount=log_settings.backup_count,
                encoding="utf-8",
            )
        return logging.FileHandler(file_path, encoding="utf-8")

    return logging.StreamHandler(sys.stdout)


def configure_logging(log_settings: LogSettings | None = None) -> None:
    """Configure the root logger with the gateway's formatter and filters.

    Replaces any handlers already installed, so calling it once per app
    build (tests build many apps) does not duplicate output.

    Args:
        log_settings: Optional log settings; defaults to global settings if omitted.
    """

    cfg = log_settings or settings.log

    level = getattr(logging, cfg.level.upper(), logging.INFO)
    handler = _build_handler(cfg)

    handler.addFilter(RequestIdFilter())
    handler.addFilter(SensitiveDataFilter(SENSITIVE_KEYS_DEFAULT))

    if cfg.format.lower() == "plain":
        formatter: logging.Formatter = logging.Formatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s"
        )
    else:
        formatter = JsonFormatter(sensitive_keys=SENSITIVE_KEYS_DEFAULT)

    handler.setFormatter(formatter)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # The gateway emits its own http.access events; uvicorn's access log and
    # httpx's per-request INFO lines would duplicate them.
    logging.getLogger("uvicorn").propagate = False
    logging.getLogger("uvicorn.access").propagate = False
    logging.getLogger("httpx").setLevel(logging.WARNING)
