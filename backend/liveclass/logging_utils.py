from __future__ import annotations

import json
import logging
from logging.config import dictConfig
from typing import Any, Dict, Iterable

import sentry_sdk

from .config import settings

_RESERVED_ATTRS = frozenset(
    {
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
    }
)

REDACTED = "[redacted]"


class JSONFormatter(logging.Formatter):
    """
    Render log records as JSON strings, preserving structured extras.
    """

    def format(self, record: logging.LogRecord) -> str:  # pragma: no cover - formatting only
        data = {
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
            "timestamp": self.formatTime(record, self.datefmt),
        }
        if record.exc_info:
            data["exc_info"] = self.formatException(record.exc_info)

        extras = {
            key: value
            for key, value in record.__dict__.items()
            if key not in _RESERVED_ATTRS
        }
        if extras:
            data["context"] = extras
        return json.dumps(data, ensure_ascii=False, default=str)


class SecretRedactionFilter(logging.Filter):
    """Mask configured secrets (payment key secret, meeting client secret) in messages."""

    def __init__(self, secrets: Iterable[str] | None = None) -> None:
        super().__init__()
        self._secrets = [value for value in (secrets or ()) if value]

    def filter(self, record: logging.LogRecord) -> bool:
        secrets = self._secrets or settings.secret_values()
        if not secrets:
            return True
        message = record.getMessage()
        redacted = message
        for secret in secrets:
            redacted = redacted.replace(secret, REDACTED)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


def setup_logging() -> None:
    """
    Configure global logging to emit JSON lines with request context attached.
    Safe to call multiple times.
    """

    config: Dict[str, Any] = {
        "version": 1,
        "disable_existing_loggers": False,
        "filters": {
            "request_context": {"()": "liveclass.logging_context.RequestContextFilter"},
            "redact_secrets": {"()": "liveclass.logging_utils.SecretRedactionFilter"},
        },
        "formatters": {
            "json": {
                "()": "liveclass.logging_utils.JSONFormatter",
                "datefmt": "%Y-%m-%dT%H:%M:%S%z",
            }
        },
        "handlers": {
            "default": {
                "class": "logging.StreamHandler",
                "formatter": "json",
                "filters": ["request_context", "redact_secrets"],
                "level": settings.log_level,
            }
        },
        "root": {
            "handlers": ["default"],
            "level": settings.log_level,
        },
    }
    dictConfig(config)


def setup_sentry() -> None:
    if not settings.sentry_dsn:
        return
    sentry_sdk.init(  # pragma: no cover - requires a DSN
        dsn=settings.sentry_dsn,
        traces_sample_rate=settings.sentry_traces_sample_rate,
        send_default_pii=False,
    )
