"""Structured logging for the engine, the seed command and the API.

Every service logs through a module-level ``logging.getLogger(__name__)``
with ``ctx_*`` extras. ``setup_logging`` wires one JSON handler on the root
logger and stamps the active request id (set by the HTTP middleware) onto
each record.
"""

from __future__ import annotations

import contextvars
import json
import logging
import sys
from datetime import datetime, timezone
from typing import Optional

QUIET_LOGGERS = ("sqlalchemy.engine", "sqlalchemy.pool", "uvicorn.access")

_request_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar("request_id", default=None)


def get_request_id() -> Optional[str]:
    return _request_id_var.get()


def set_request_id(value: Optional[str]):
    return _request_id_var.set(value)


def reset_request_id(token) -> None:
    _request_id_var.reset(token)


class RequestIdFilter(logging.Filter):
    """Stamp the current request id onto every record as ``ctx_request_id``."""

    def filter(self, record: logging.LogRecord) -> bool:
        request_id = get_request_id()
        if request_id and not hasattr(record, "ctx_request_id"):
            record.ctx_request_id = request_id
        return True


class JSONFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        if record.exc_info and record.exc_info[1]:
            log_entry["exception"] = {
                "type": type(record.exc_info[1]).__name__,
                "message": str(record.exc_info[1]),
            }
        extra = {k: v for k, v in record.__dict__.items() if k.startswith("ctx_")}
        request_id = extra.pop("ctx_request_id", None)
        if request_id:
            log_entry["request_id"] = request_id
        if extra:
            log_entry["context"] = extra
        return json.dumps(log_entry, default=str)


def _resolve_level(level: Optional[str]) -> int:
    if level is None:
        from runquest.config import get_settings

        level = get_settings().log_level
    return getattr(logging, str(level).upper(), logging.INFO)


def setup_logging(level: Optional[str] = None) -> None:
    """Configure JSON logging to stdout; the level defaults to ``Settings.log_level``.

    Safe to call repeatedly: the handler and level are set once, and handlers
    that already exist only gain the request-id filter.
    """
    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(JSONFormatter())
        root.addHandler(handler)
        root.setLevel(_resolve_level(level))

    for handler in root.handlers:
        if not any(isinstance(f, RequestIdFilter) for f in handler.filters):
            handler.addFilter(RequestIdFilter())

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
