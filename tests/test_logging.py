"""
Test Logging
JSON line output and handler installation
"""
import json
import logging

from orderledger.common.config import get_settings
from orderledger.common.logging import HANDLER_NAME, JsonLineFormatter, configure_logging


def make_record(msg, *args, **extra):
    record = logging.LogRecord("orderledger.sync", logging.WARNING, __file__, 1, msg, args, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def ledger_handlers():
    return [h for h in logging.getLogger().handlers if h.get_name() == HANDLER_NAME]


def test_json_line_carries_order_context():
    record = make_record("Dropped %s", "processing", order_id="ORD-1", outcome="stale", customer="ignored")

    entry = json.loads(JsonLineFormatter().format(record))

    assert entry["level"] == "WARNING"
    assert entry["logger"] == "orderledger.sync"
    assert entry["msg"] == "Dropped processing"
    assert entry["order_id"] == "ORD-1"
    assert entry["outcome"] == "stale"
    assert "customer" not in entry
    assert "client_id" not in entry


def test_configure_logging_replaces_its_own_handler(monkeypatch):
    monkeypatch.setenv("ENVIRONMENT", "production")
    get_settings.cache_clear()
    root = logging.getLogger()
    level = root.level
    try:
        first = configure_logging("debug")
        second = configure_logging()

        assert ledger_handlers() == [second]
        assert first not in root.handlers
        assert isinstance(second.formatter, JsonLineFormatter)
        assert root.level == logging.INFO
        assert logging.getLogger("httpx").level == logging.WARNING
    finally:
        for handler in ledger_handlers():
            root.removeHandler(handler)
        root.setLevel(level)


def test_unknown_level_falls_back_to_info():
    root = logging.getLogger()
    level = root.level
    try:
        handler = configure_logging("chatty")
        assert root.level == logging.INFO
        assert not isinstance(handler.formatter, JsonLineFormatter)
    finally:
        for handler in ledger_handlers():
            root.removeHandler(handler)
        root.setLevel(level)
