"""Structured JSON logging with per-operation context fields."""

import logging
import sys
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Iterator, Optional

from pythonjsonlogger.json import JsonFormatter

from stickercredits.config import Settings, get_settings


user_id_ctx: ContextVar[str] = ContextVar("user_id", default="")
operation_ctx: ContextVar[str] = ContextVar("operation", default="")


class ContextFilter(logging.Filter):
    """Inject service name and the current user/operation into every record."""

    def __init__(self, service_name: str):
        super().__init__()
        self.service_name = service_name

    def filter(self, record: logging.LogRecord) -> bool:
        record.service_name = self.service_name
        record.user_id = user_id_ctx.get()
        record.operation = operation_ctx.get()
        return True


def configure_logging(settings: Optional[Settings] = None) -> None:
    """Configure the root logger once per process."""

    settings = settings or get_settings()
    handler = logging.StreamHandler(sys.stdout)
    context_filter = ContextFilter(settings.service_name)
    handler.addFilter(context_filter)
    handler.setFormatter(
        JsonFormatter(
            "%(asctime)s %(levelname)s %(name)s %(service_name)s %(user_id)s %(operation)s %(message)s"
        )
    )

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(settings.log_level)


@contextmanager
def log_context(user_id: str, operation: str) -> Iterator[None]:
    """Bind user and operation to log records emitted inside the block."""

    user_token = user_id_ctx.set(user_id)
    op_token = operation_ctx.set(operation)
    try:
        yield
    finally:
        operation_ctx.reset(op_token)
        user_id_ctx.reset(user_token)


def get_logger(component: str) -> logging.Logger:
    return logging.getLogger(f"stickercredits.{component}")
