"""
Structured logging configuration using structlog
JSON logs with request and tenant context in production, console logs in development
"""
import logging
from typing import Any, Optional

import structlog

APP_NAME = "menengai-edge"


def add_app_context(logger: Any, method_name: str, event_dict: dict) -> dict:
    """Add application-level context to all log entries"""
    event_dict.setdefault('app', APP_NAME)
    return event_dict


def drop_color_message_key(logger: Any, method_name: str, event_dict: dict) -> dict:
    """
    Remove the 'color_message' key from the event dict.
    Uvicorn adds this key for colored output, but we don't need it in JSON logs.
    """
    event_dict.pop('color_message', None)
    return event_dict


def configure_logging(log_level: str = "INFO", json_logs: bool = True, environment: Optional[str] = None):
    """
    Configure structured logging for the application

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: If True, output JSON logs. If False, use human-readable format
        environment: Added to every entry when given

    Returns:
        Configured structlog logger

    Usage:
        from menengai_edge.logging_config import configure_logging
        logger = configure_logging(settings.log_level, json_logs=settings.use_json_logs)

        logger.info("route_decided", rule="tenant_rewrite", tenant_slug="acme")
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        add_app_context,
        drop_color_message_key,
    ]
    if environment:
        def add_environment(logger: Any, method_name: str, event_dict: dict) -> dict:
            event_dict.setdefault('environment', environment)
            return event_dict
        shared_processors.append(add_environment)

    if json_logs:
        # Production: JSON logs for machine parsing
        renderer = structlog.processors.JSONRenderer()
    else:
        # Development: Human-readable console logs with colors
        renderer = structlog.dev.ConsoleRenderer(colors=True)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level] + shared_processors + [
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Route standard library logging (httpx, uvicorn, our own modules) through the same renderer
    formatter = structlog.stdlib.ProcessorFormatter(
        processor=renderer,
        foreign_pre_chain=shared_processors,
    )

    handler = logging.StreamHandler()
    handler.setFormatter(formatter)
    root_logger = logging.getLogger()
    root_logger.handlers = [handler]
    root_logger.setLevel(log_level.upper())

    # httpx logs every request at INFO, which would include backend URLs with user ids
    logging.getLogger("httpx").setLevel(max(logging.WARNING, root_logger.level))

    return structlog.get_logger()


def get_logger(name: str = None):
    """
    Get a logger instance with optional name

    Usage:
        from menengai_edge.logging_config import get_logger
        logger = get_logger(__name__)
        logger.info("guard_decided", state="pass")
    """
    if name:
        return structlog.get_logger(name)
    return structlog.get_logger()
