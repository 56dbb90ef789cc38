"""
Application-wide logging configuration helpers.

All modules log through ``logging.getLogger(__name__)``; this module wires
the console handler once and tags every record with the import job it
belongs to (``-`` outside a job), so interleaved background imports can be
told apart.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from contextvars import ContextVar
from logging.config import dictConfig
from typing import Iterator, Optional


_is_configured = False

_current_job_id: ContextVar[str] = ContextVar("import_job_id", default="-")


class ImportJobFilter(logging.Filter):
    """Adds ``record.job_id`` from the active import job context."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.job_id = _current_job_id.get()
        return True


@contextmanager
def import_job_context(job_id: str) -> Iterator[None]:
    """Tag log records emitted inside the block (and in copied contexts) with ``job_id``."""
    token = _current_job_id.set(job_id)
    try:
        yield
    finally:
        _current_job_id.reset(token)


def configure_logging(level: Optional[str] = None) -> None:
    """
    Configure root and application loggers if they have not been configured yet.

    Args:
        level: Optional log level override (e.g., "DEBUG", "INFO").
    """
    global _is_configured

    if _is_configured:
        return

    log_level = (level or "INFO").upper()

    dictConfig(
        {
            "version": 1,
            "disable_existing_loggers": False,
            "filters": {
                "import_job": {"()": ImportJobFilter},
            },
            "formatters": {
                "standard": {
                    "format": "%(asctime)s | %(levelname)-7s | %(threadName)s | job=%(job_id)s | %(name)s | %(message)s",
                    "datefmt": "%Y-%m-%d %H:%M:%S",
                }
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "standard",
                    "filters": ["import_job"],
                    "level": log_level,
                }
            },
            "root": {
                "handlers": ["console"],
                "level": log_level,
            },
            "loggers": {
                # SQL echo is far too chatty for batch imports
                "sqlalchemy.engine": {"level": "WARNING"},
                "contact_ingest": {"level": log_level},
            },
        }
    )

    _is_configured = True
