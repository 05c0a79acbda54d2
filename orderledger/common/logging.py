"""
Logging setup for the order ledger.
Local runs get a short readable line; other environments emit one JSON object
per record so order ids and outcomes can be searched.
"""
import json
import logging
import sys
from typing import Optional

from orderledger.common.config import get_settings

HANDLER_NAME = "orderledger"

# Chatty third-party loggers, held at WARNING or above
QUIET_LOGGERS = ("httpx", "httpcore", "watchdog")


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record. Order context passed via extra= is kept."""

    CONTEXT_FIELDS = ("order_id", "client_id", "event_type", "outcome")

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "ts": self.formatTime(record, "%Y-%m-%dT%H:%M:%S"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        for field in self.CONTEXT_FIELDS:
            value = getattr(record, field, None)
            if value is not None:
                entry[field] = value
        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(level: Optional[str] = None) -> logging.Handler:
    """
    Install the ledger's stdout handler on the root logger.

    Safe to call on every Streamlit rerun: the previous ledger handler is
    swapped out, handlers installed by anything else are left alone.
    """
    settings = get_settings()
    resolved = logging.getLevelName((level or settings.LOG_LEVEL).upper())
    if not isinstance(resolved, int):
        resolved = logging.INFO

    root = logging.getLogger()
    for existing in list(root.handlers):
        if existing.get_name() == HANDLER_NAME:
            root.removeHandler(existing)

    handler = logging.StreamHandler(sys.stdout)
    handler.set_name(HANDLER_NAME)
    if settings.ENVIRONMENT == "local":
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)-7s [%(name)s] %(message)s", "%H:%M:%S"))
    else:
        handler.setFormatter(JsonLineFormatter())

    root.addHandler(handler)
    root.setLevel(resolved)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
