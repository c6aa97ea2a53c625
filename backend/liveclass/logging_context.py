from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Iterator

import sentry_sdk

_request_id: ContextVar[str | None] = ContextVar("request_id", default=None)
_user_id: ContextVar[str | None] = ContextVar("user_id", default=None)
_bound: ContextVar[dict[str, Any]] = ContextVar("log_bound_fields", default={})


class RequestContextFilter(logging.Filter):
    """Stamp request id, user id and any bound live-class fields onto records.

    Explicit ``extra=`` values on the log call win over bound fields.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = _request_id.get()
        record.user_id = _user_id.get()
        for key, value in _bound.get().items():
            if not hasattr(record, key):
                setattr(record, key, value)
        return True


def push_request_context(request_id: str) -> tuple[Token, Token, Token]:
    return (
        _request_id.set(request_id),
        _user_id.set(None),
        _bound.set({}),
    )


def pop_request_context(tokens: tuple[Token, Token, Token]) -> None:
    request_token, user_token, bound_token = tokens
    _bound.reset(bound_token)
    _user_id.reset(user_token)
    _request_id.reset(request_token)


def set_user_context(user_id: str | None) -> None:
    _user_id.set(user_id)
    sentry_sdk.set_user({"id": user_id} if user_id else None)


@contextmanager
def bind_log_context(**fields: Any) -> Iterator[None]:
    """Attach identifiers (class_id, subscription_id, ...) to every log line
    emitted inside the block. None values are skipped."""
    merged = dict(_bound.get())
    merged.update({key: value for key, value in fields.items() if value is not None})
    token = _bound.set(merged)
    try:
        yield
    finally:
        _bound.reset(token)


__all__ = [
    "RequestContextFilter",
    "bind_log_context",
    "push_request_context",
    "pop_request_context",
    "set_user_context",
]
