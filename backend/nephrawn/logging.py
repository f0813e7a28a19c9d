"""Logging configuration for the service."""

from __future__ import annotations

import contextvars
import logging

from nephrawn.config import settings

request_id_var: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "request_id",
    default=None,
)
patient_id_var: contextvars.ContextVar[int | None] = contextvars.ContextVar(
    "patient_id",
    default=None,
)

_CONTEXT_FIELDS = (
    ("request_id", request_id_var),
    ("patient_id", patient_id_var),
)


class ContextFilter(logging.Filter):
    """Attach request_id and patient_id from contextvars to log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        for field, var in _CONTEXT_FIELDS:
            current = getattr(record, field, None)
            if current is None or current == "-":
                value = var.get()
                setattr(record, field, "-" if value is None else value)
        return True


def configure_logging() -> None:
    """Configure structured logging for the service."""
    factory = logging.getLogRecordFactory()

    def record_factory(*args, **kwargs):
        record = factory(*args, **kwargs)
        for field, var in _CONTEXT_FIELDS:
            if not hasattr(record, field):
                value = var.get()
                setattr(record, field, "-" if value is None else value)
        return record

    logging.setLogRecordFactory(record_factory)
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=(
            "%(asctime)s %(levelname)s %(name)s %(message)s "
            "request_id=%(request_id)s patient_id=%(patient_id)s"
        ),
    )
    root_logger = logging.getLogger()
    context_filter = ContextFilter()
    root_logger.addFilter(context_filter)
    for handler in root_logger.handlers:
        handler.addFilter(context_filter)
    if not settings.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
