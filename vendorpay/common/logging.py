"""JSON logs for the payout service.

Records carry the service name plus whichever trace, vendor and payout ids are
bound in the current task, so a single payout can be followed from the
scheduler tick through the processor to the gateway calls.
"""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, TextIO

from pythonjsonlogger.json import JsonFormatter

from vendorpay.common.config import settings


trace_id_ctx: ContextVar[str] = ContextVar("trace_id", default="")
vendor_id_ctx: ContextVar[str] = ContextVar("vendor_id", default="")
payout_id_ctx: ContextVar[str] = ContextVar("payout_id", default="")

_CORRELATION_IDS = {"trace_id": trace_id_ctx, "vendor_id": vendor_id_ctx, "payout_id": payout_id_ctx}

# Chatty at INFO: one line per request or broker poll.
QUIET_LOGGERS = ("aiokafka", "httpx", "httpcore", "uvicorn.access")


class CorrelationFilter(logging.Filter):
    """Copy bound correlation ids onto the record; unbound ids are left off."""

    def filter(self, record: logging.LogRecord) -> bool:
        for name, var in _CORRELATION_IDS.items():
            value = var.get()
            if value and not hasattr(record, name):
                setattr(record, name, value)
        return True


@contextmanager
def log_context(**ids: str) -> Iterator[None]:
    """Bind `trace_id` / `vendor_id` / `payout_id` for the duration of a block."""

    tokens = [(_CORRELATION_IDS[name], _CORRELATION_IDS[name].set(value)) for name, value in ids.items()]
    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


def build_handler(stream: TextIO = sys.stdout, service_name: str | None = None) -> logging.Handler:
    handler = logging.StreamHandler(stream)
    handler.addFilter(CorrelationFilter())
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(message)s",
            rename_fields={"asctime": "timestamp", "levelname": "level"},
            static_fields={"service": service_name or settings.service_name},
        )
    )
    return handler


def configure_logging(level: str | None = None) -> None:
    """Send every logger to one JSON handler on stdout."""

    root = logging.getLogger()
    root.handlers = [build_handler()]
    root.setLevel(level or settings.log_level)
    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


logger = logging.getLogger("vendorpay")
