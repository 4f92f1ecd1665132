# src/daokit/core/logging/filters.py
"""
Logging filters shared by every handler in the dictConfig.

- RequestIdFilter: stamps the current request id (a contextvar) onto each record so
  formatters can reference `%(request_id)s` and so repository logs and query stats
  samples emitted while serving one logical request can be correlated.
- RedactFilter: masks sensitive attributes passed through `extra={...}` before any
  handler formats them.

The request id lives in a ContextVar rather than thread-local storage because the
repository is async: many requests interleave on one event loop thread, and a
ContextVar value follows each task across `await` points (asyncio copies the
context when a task is created, so tasks spawned by `create_multi` inherit it).

Testing
-------
- Build a dummy LogRecord and assert:
    * when no id is set -> record.request_id == "-"
    * after set_request_id("abc") -> record.request_id == "abc"
"""

import logging
from logging import LogRecord
import contextvars
from contextlib import contextmanager

_request_id_ctx: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id", default=None
)


def set_request_id(request_id: str | None):
    """
    Set the request id in the current context and return the token to allow reset.
    """
    return _request_id_ctx.set(request_id)


def reset_request_id(token):
    _request_id_ctx.reset(token)


def get_request_id() -> str | None:
    """
    Retrieve the current context's request id (None when unset).
    """
    return _request_id_ctx.get()


@contextmanager
def request_id_scope(request_id: str | None):
    """
    Bind `request_id` for the duration of a `with` block.

    Usage:
        with request_id_scope("req-42"):
            await repo.create(user)
    """
    token = set_request_id(request_id)
    try:
        yield
    finally:
        reset_request_id(token)


class RequestIdFilter(logging.Filter):
    """
    Guarantees every LogRecord has a `request_id` attribute.

    Precedence: explicit `extra={"request_id": ...}` > contextvar > "-".
    """

    def filter(self, record: LogRecord) -> bool:
        record.request_id = (
            getattr(record, "request_id", None) or get_request_id() or "-"
        )
        return True


class RedactFilter(logging.Filter):
    # Repository logs carry column *names* only; these keys cover values that
    # callers occasionally attach to `extra` anyway.
    SENSITIVE = {"password", "secret", "token", "access_token", "refresh_token", "ssn", "authorization", "params"}

    def filter(self, record: LogRecord) -> bool:
        for key in list(record.__dict__.keys()):
            if key.lower() in self.SENSITIVE:
                record.__dict__[key] = "***REDACTED***"
        return True
