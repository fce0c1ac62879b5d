import json
import logging

from wawa.app.middlewares.request_id import request_id_ctx
from wawa.app.obs.logging import JsonFormatter, RequestIdFilter, configure_logging


def _record(msg, **extra):
    record = logging.LogRecord("wawa.payments", logging.INFO, __file__, 0, msg, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_json_logger_redaction():
    record = _record("receipt for ada@example.com on 08031234567 and +2348031234567")
    data = json.loads(JsonFormatter().format(record))
    assert "ada@example.com" not in data["msg"]
    assert "8031234567" not in data["msg"]
    assert data["logger"] == "wawa.payments"


def test_context_fields_are_lifted():
    record = _record("applied", order_id=4, gateway="monnify", reference="WAWA-4-1-ABCDEF")
    data = json.loads(JsonFormatter().format(record))
    assert (data["order_id"], data["gateway"], data["reference"]) == (
        4,
        "monnify",
        "WAWA-4-1-ABCDEF",
    )
    assert "tab_id" not in data


def test_request_id_filter_reads_context():
    token = request_id_ctx.set("req-42")
    try:
        record = _record("hello")
        RequestIdFilter().filter(record)
    finally:
        request_id_ctx.reset(token)
    assert json.loads(JsonFormatter().format(record))["req_id"] == "req-42"


def test_configure_logging_does_not_stack_handlers():
    root = logging.getLogger()
    level = root.level
    try:
        configure_logging()
        configure_logging()
        json_handlers = [h for h in root.handlers if isinstance(h.formatter, JsonFormatter)]
        assert len(json_handlers) == 1
    finally:
        root.setLevel(level)
