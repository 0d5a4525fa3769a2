import logging

import structlog
from structlog.contextvars import merge_contextvars

from curriculum_sync.core.settings import settings
from curriculum_sync.infrastructure.observability.context_vars import (
    get_session_id,
    get_user_id,
)


def add_context_vars(_, __, event_dict):
    """
    Processor injecting the curriculum session context into every log event.
    """
    trace = {
        "session_id": get_session_id(),
        "user_id": get_user_id(),
    }

    existing_trace = event_dict.get("trace", {})
    if isinstance(existing_trace, dict):
        trace.update(existing_trace)

    event_dict["trace"] = {k: v for k, v in trace.items() if v is not None}

    if "event" in event_dict:
        event_dict["message"] = event_dict.pop("event")

    return event_dict


def configure_structlog():
    """
    Configures structlog on top of standard logging.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(" [%(asctime)s] [%(levelname)s] %(name)s: %(message)s"))

    log_level = getattr(logging, settings.LOG_LEVEL, logging.INFO)

    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        handlers=[handler],
    )

    renderer = (
        structlog.processors.JSONRenderer()
        if settings.LOG_JSON
        else structlog.dev.ConsoleRenderer()
    )

    processors = [
        merge_contextvars,
        add_context_vars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        renderer,
    ]

    structlog.configure(
        processors=processors,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )
