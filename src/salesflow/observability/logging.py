"""
salesflow.observability.logging

Structured logging configuration for the service.

Responsibilities:
- Configure `structlog` for JSON logs (API process and cron jobs alike).
- Keep chatty library loggers (SQL echo, HTTP client) at warning level.
- Provide bound loggers and a job-scoped logging context.
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

import structlog

_QUIET_LOGGERS = ("aiosqlite", "sqlalchemy.engine", "httpx", "httpcore")


def configure_logging(*, service_name: str, level: str) -> None:
    """
    JSON logs on stdout; the API and the job runner both call this once at startup.
    """

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, level.upper(), logging.INFO),
    )
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            _add_service_name(service_name),
            structlog.processors.dict_tracebacks,
            structlog.processors.JSONRenderer(default=str),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def _add_service_name(service_name: str):
    def processor(_: Any, __: str, event_dict: dict[str, Any]) -> dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    return processor


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


@contextmanager
def job_context(task: str) -> Iterator[None]:
    """
    Tag every log line emitted while a periodic task runs with `job=<task>`.
    """

    with structlog.contextvars.bound_contextvars(job=task):
        yield


# --- Module Notes -----------------------------------------------------------
# Request-scoped metadata is bound via contextvars in `observability.middleware`;
# the job runner binds `job=<task>` through `job_context`.
