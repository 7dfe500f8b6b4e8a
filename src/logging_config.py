"""
Structured JSON logging with correlation IDs.

Uses structlog to produce machine-parseable JSON logs in production
and human-readable colored output in development. Every log entry
automatically includes a ``trace_id`` for cross-component correlation
and a ``visit_id`` while a survey turn is being processed. Customer phone
numbers are masked down to their last four digits.

Usage:
    from src.logging_config import get_logger

    logger = get_logger(__name__)
    logger.info("survey_sent", visit_id="abc-123", twilio_sid="SM456")
"""

from __future__ import annotations

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any

import structlog

from src.config import get_settings

# ── Context variables for per-request / per-visit correlation ────
trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")
visit_id_var: ContextVar[str] = ContextVar("visit_id", default="")


def _inject_context_vars(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Inject trace_id and visit_id from context vars into every log entry."""
    trace_id = trace_id_var.get("")
    if trace_id:
        event_dict["trace_id"] = trace_id

    visit_id = visit_id_var.get("")
    if visit_id:
        event_dict.setdefault("visit_id", visit_id)

    return event_dict


# Event keys that carry customer phone numbers
PHONE_KEYS = ("to", "from_number", "phone")


def _mask_phone_numbers(
    logger: Any, method_name: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """Keep only the last four digits of customer phone numbers."""
    for key in PHONE_KEYS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > 4:
            event_dict[key] = "*" * (len(value) - 4) + value[-4:]
    return event_dict


def generate_trace_id() -> str:
    """Generate a short, unique trace ID for request correlation."""
    return uuid.uuid4().hex[:12]


def setup_logging() -> None:
    """
    Configure structlog and stdlib logging.

    - **Production**: JSON output to stdout (for log aggregators).
    - **Development**: Colored, human-readable console output.
    """
    settings = get_settings()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        _inject_context_vars,
        _mask_phone_numbers,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if settings.is_production:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    # Route stdlib loggers (uvicorn, httpx, supabase) through the same pipeline
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(settings.log_level.upper())

    for noisy in ("httpx", "httpcore", "hpack", "urllib3", "asyncio"):
        logging.getLogger(noisy).setLevel(logging.WARNING)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Return a named, structured logger.

    Args:
        name: Typically ``__name__`` of the calling module.
    """
    return structlog.get_logger(name)
