"""
Structured logging using structlog.
Outputs JSON in production, colored console in development.

Every line logged during an audit carries the run_id and audited URL bound
by crawl_context(), including lines from fetch tasks started inside it.
"""

import logging
import sys
import uuid
from contextlib import contextmanager
from typing import Any, Iterator

import structlog
from structlog.types import EventDict

from crawlaudit.core.config import get_settings

MAX_VALUE_LENGTH = 300


def add_severity(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    """Map structlog levels to GCP/Datadog severity levels."""
    level_map = {
        "debug": "DEBUG",
        "info": "INFO",
        "warning": "WARNING",
        "error": "ERROR",
        "critical": "CRITICAL",
    }
    event_dict["severity"] = level_map.get(method, "INFO")
    return event_dict


def clip_long_values(logger: Any, method: str, event_dict: EventDict) -> EventDict:
    """Clip string values from crawled content so one page cannot flood a log line."""
    for key, value in event_dict.items():
        if isinstance(value, str) and len(value) > MAX_VALUE_LENGTH:
            event_dict[key] = value[:MAX_VALUE_LENGTH] + "..."
    return event_dict


def configure_logging() -> None:
    settings = get_settings()
    log_level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)

    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        add_severity,
        clip_long_values,
    ]

    if settings.LOG_FORMAT == "json":
        processors = shared_processors + [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        processors = shared_processors + [
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(log_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=log_level,
    )

    # Crawls make many short requests; keep client chatter out of production logs
    if settings.ENV == "production":
        logging.getLogger("asyncio").setLevel(logging.WARNING)
        logging.getLogger("httpx").setLevel(logging.WARNING)
        logging.getLogger("httpcore").setLevel(logging.WARNING)


def new_run_id() -> str:
    return uuid.uuid4().hex[:12]


@contextmanager
def crawl_context(audit_url: str, **values: Any) -> Iterator[str]:
    """
    Bind a fresh run_id, the audited URL and any extra values to the log
    context for the duration of the block. Prior values are restored on exit.
    """
    run_id = new_run_id()
    with structlog.contextvars.bound_contextvars(run_id=run_id, audit_url=audit_url, **values):
        yield run_id
