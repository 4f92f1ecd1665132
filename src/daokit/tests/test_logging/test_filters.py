# src/daokit/tests/test_logging/test_filters.py
import asyncio
import logging

from daokit.core.logging.filters import (
    RedactFilter,
    RequestIdFilter,
    get_request_id,
    request_id_scope,
    set_request_id,
)


def make_record():
    # name, level, pathname, lineno, msg, args, exc_info
    return logging.LogRecord("test", logging.INFO, __file__, 1, "hello %s", ("world",), None)


def test_request_id_filter_defaults_to_dash():
    rec = make_record()
    # ensure no request id set in context
    set_request_id(None)
    f = RequestIdFilter()
    assert f.filter(rec) is True
    assert hasattr(rec, "request_id")
    assert rec.request_id == "-"  # fallback sentinel


def test_request_id_filter_uses_contextvar():
    rec = make_record()
    set_request_id("abc-123")
    f = RequestIdFilter()
    f.filter(rec)
    assert rec.request_id == "abc-123"
    set_request_id(None)


def test_request_id_filter_respects_record_extra():
    rec = make_record()
    rec.request_id = "explicit"
    set_request_id("context-id")
    f = RequestIdFilter()
    f.filter(rec)
    # record.request_id should keep explicit value (respect extra)
    assert rec.request_id == "explicit"
    set_request_id(None)


def test_request_id_scope_restores_previous_value():
    set_request_id("outer")
    with request_id_scope("inner"):
        assert get_request_id() == "inner"
    assert get_request_id() == "outer"
    set_request_id(None)


async def test_request_id_follows_spawned_tasks():
    # tasks copy the context they are created in
    async def read_id():
        await asyncio.sleep(0)
        return get_request_id()

    with request_id_scope("req-7"):
        task = asyncio.create_task(read_id())
    assert await task == "req-7"


def test_redact_filter_masks_sensitive_extras():
    rec = make_record()
    rec.password = "hunter2"
    rec.params = ["a@b.com"]
    rec.columns = ["email"]
    RedactFilter().filter(rec)
    assert rec.password == "***REDACTED***"
    assert rec.params == "***REDACTED***"
    # column names are not sensitive
    assert rec.columns == ["email"]
