#!/usr/bin/env python3
"""
Structured Logging Module using structlog

This module provides production-grade structured logging with:
- Request ID correlation for request tracing
- Stage numbering that follows the request pipeline
- JSON formatting for log aggregation
- Automatic PII and credential redaction
- Context processors for automatic field injection

Architectural Decision: structlog for production logging
- Context-aware logging with automatic field injection
- JSON output for log aggregation
- Logging never raises back into the caller: processors only read and
  rewrite the event dict

Author: Platform Team
Date: 2025-12-05
"""

import logging
import re
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from enum import Enum

import structlog
from structlog.types import EventDict, WrappedLogger

from coverline.core.config.settings import get_settings

# Context variable for the current request ID (task-local under asyncio)
request_id_ctx: ContextVar[str | None] = ContextVar("request_id", default=None)

_EMAIL_PATTERN = re.compile(r"\b[\w.-]+@[\w.-]+\.\w+\b")
_BEARER_PATTERN = re.compile(r"\bBearer\s+[A-Za-z0-9._~+/=-]+", re.IGNORECASE)
_SENSITIVE_FIELDS = frozenset({"authorization", "token", "password", "session_token"})


def add_request_id(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add request ID to log event from context variable.

    STAGE-L.1: Request ID injection
    """
    request_id = request_id_ctx.get()
    if request_id and "request_id" not in event_dict:
        event_dict["request_id"] = request_id
    return event_dict


def add_timestamp(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Add ISO timestamp to log event.

    STAGE-L.2: Timestamp injection
    """
    event_dict["timestamp"] = datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")
    return event_dict


def redact_pii(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Redact PII and credentials from log events.

    STAGE-L.3: PII redaction

    Patterns redacted:
    - Email addresses → [EMAIL]
    - Bearer tokens → Bearer [REDACTED]
    - Values of fields named like credentials → [REDACTED]
    """
    message = event_dict.get("event", "")

    if isinstance(message, str):
        message = _EMAIL_PATTERN.sub("[EMAIL]", message)
        message = _BEARER_PATTERN.sub("Bearer [REDACTED]", message)
        event_dict["event"] = message

    for field in _SENSITIVE_FIELDS.intersection(event_dict):
        event_dict[field] = "[REDACTED]"

    return event_dict


def add_log_level_name(logger: WrappedLogger, method_name: str, event_dict: EventDict) -> EventDict:
    """
    Upper-case the log level.

    STAGE-L.4: Log level injection
    """
    if "level" in event_dict:
        event_dict["level"] = event_dict["level"].upper()
    return event_dict


def setup_logging(log_level: str | None = None, log_format: str | None = None) -> None:
    """
    Setup structured logging with structlog.

    STAGE-L: Logging initialization

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_format: Log format ('json' or 'console')
    """
    settings = get_settings()

    log_level = log_level or settings.logging.LOG_LEVEL
    log_format = log_format or settings.logging.LOG_FORMAT

    logging.basicConfig(
        format="%(message)s", stream=sys.stdout, level=getattr(logging, log_level.upper())
    )

    if log_format == "json":
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # Merge bound context variables
            add_request_id,  # Add request ID from context
            add_timestamp,  # Add ISO timestamp
            structlog.stdlib.add_log_level,  # Add log level
            add_log_level_name,  # Convert log level to uppercase
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,  # Render exc_info=True tracebacks
            redact_pii,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("message", key="value", stage=Stage.CACHE)
    """
    return structlog.get_logger(name)


def set_request_id(request_id: str) -> None:
    """
    Set the request ID for the current request's context.

    STAGE-0.1: Request ID context initialization
    """
    request_id_ctx.set(request_id)


def get_request_id() -> str | None:
    """Get current request ID from context."""
    return request_id_ctx.get()


def clear_request_id() -> None:
    """
    Clear request ID from context.

    STAGE-5: Request ID context cleanup
    """
    request_id_ctx.set(None)


def log_stage(
    logger: structlog.stdlib.BoundLogger,
    stage: str | Enum,
    message: str,
    level: str = "info",
    **kwargs,
) -> None:
    """
    Log a message with stage information.

    Args:
        logger: Logger instance
        stage: Stage identifier (a Stage member or a raw string like "C.1")
        message: Log message
        level: Log level (debug, info, warning, error, critical)
        **kwargs: Additional fields to log

    Usage:
        log_stage(logger, Stage.CACHE, "Memory tier hit", cache_key="cover_letters:u1")
    """
    stage_label = stage.value if isinstance(stage, Enum) else stage
    log_func = getattr(logger, level.lower())
    log_func(message, stage=stage_label, **kwargs)
