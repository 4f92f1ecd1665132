# src/daokit/tests/test_logging/test_formatters.py
import json
import logging
import uuid

from daokit.core.logging.formatters import ColorFormatter, JsonFormatter


def make_record(msg="hello %s", args=("tester",)):
    # create a LogRecord that simulates formatting with args
    return logging.LogRecord("daokit", logging.INFO, __file__, 10, msg, args, None)


def test_json_formatter_basic_fields():
    rec = make_record()
    # attach an extra (simulate extra param)
    rec.custom = "value"
    # attach request_id
    rec.request_id = "req-1"
    fmt = JsonFormatter(env="testing", service="svc")
    data = json.loads(fmt.format(rec))
    # core assertions
    assert data["message"] == "hello tester"
    assert data["level"] == "INFO"
    assert data["service"] == "svc"
    assert data["env"] == "testing"
    assert "timestamp" in data
    assert data["request_id"] == "req-1"
    assert data["custom"] == "value"
    assert "version" in data


def test_json_formatter_non_serializable_extra():
    rec = make_record()
    record_id = uuid.uuid4()
    rec.id = record_id

    class X:
        def __repr__(self):
            return "<X>"

    rec.obj = X()
    data = json.loads(JsonFormatter(env="dev", service="svc").format(rec))
    # non-serializable values are stringified
    assert data["id"] == str(record_id)
    assert isinstance(data["obj"], str)


def test_json_formatter_keeps_multiline_report_in_message():
    report = "DB STATS (avg/min/max/count):\n  line one\n  line two\n"
    rec = make_record(msg=report, args=())
    data = json.loads(JsonFormatter(env="dev").format(rec))
    assert data["message"] == report
    assert data["service"] == "daokit"


def test_color_formatter_appends_extras():
    rec = make_record(msg="repo.update.no_rows", args=())
    rec.request_id = "req-9"
    rec.model = "User"
    out = ColorFormatter().format(rec)
    assert "repo.update.no_rows" in out
    assert "req-9" in out
    assert "model=User" in out
    # request_id is printed in its own column, not repeated as an extra
    assert "request_id=" not in out
