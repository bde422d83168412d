"""
moltmark.logs — Structured JSON logging with ledger context.

Every record from the ``moltmark.*`` loggers is one JSON object. Inside an
HTTP request it carries the request ID; inside a ledger operation it also
carries the operation name and the agent it concerns, so a single agent's
history can be pulled out of the log with one filter.
"""

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from pythonjsonlogger.json import JsonFormatter

__all__ = [
    "request_id_var",
    "log_context",
    "LedgerContextFilter",
    "setup_structured_logging",
]

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
_operation_var: ContextVar[Optional[str]] = ContextVar("operation", default=None)
_agent_id_var: ContextVar[Optional[str]] = ContextVar("agent_id", default=None)


@contextmanager
def log_context(operation: str, agent_id: Optional[str] = None) -> Iterator[None]:
    """Tag every record logged in this block with the operation and agent."""
    op_token = _operation_var.set(operation)
    agent_token = _agent_id_var.set(agent_id)
    try:
        yield
    finally:
        _agent_id_var.reset(agent_token)
        _operation_var.reset(op_token)


class LedgerContextFilter(logging.Filter):
    """Copy the bound context onto records. Explicit ``extra=`` values win."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = request_id_var.get()
        for attr, var in (("operation", _operation_var), ("agent_id", _agent_id_var)):
            value = var.get()
            if value is not None and not hasattr(record, attr):
                setattr(record, attr, value)
        return True


def _json_handler() -> logging.Handler:
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s %(request_id)s",
        rename_fields={"asctime": "timestamp", "levelname": "level", "name": "logger"},
        static_fields={"service": "moltmark"},
    ))
    handler.addFilter(LedgerContextFilter())
    return handler


def setup_structured_logging(level: str = "INFO") -> logging.Logger:
    """Attach the JSON handler to the ``moltmark`` logger.

    Safe to call repeatedly: the handler is added once, the level is updated
    on every call.
    """
    logger = logging.getLogger("moltmark")
    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    if not any(isinstance(h.formatter, JsonFormatter) for h in logger.handlers):
        logger.addHandler(_json_handler())
    return logger
