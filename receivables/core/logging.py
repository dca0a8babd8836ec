"""
Structured logging configuration with correlation IDs and operation timing.
"""
import logging
import sys
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

from receivables import __version__

# Context variables for request-scoped data
correlation_id_var: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar('user_id', default=None)
settlement_id_var: ContextVar[Optional[str]] = ContextVar('settlement_id', default=None)
operation_var: ContextVar[Optional[str]] = ContextVar('operation', default=None)


def add_correlation_id(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add correlation ID to log events."""
    correlation_id = correlation_id_var.get()
    if not correlation_id:
        correlation_id = str(uuid.uuid4())[:8]
        correlation_id_var.set(correlation_id)

    event_dict["correlation_id"] = correlation_id
    return event_dict


def add_request_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add request context information to log events."""
    user_id = user_id_var.get()
    if user_id:
        event_dict.setdefault("user_id", user_id)

    settlement_id = settlement_id_var.get()
    if settlement_id:
        event_dict.setdefault("settlement_id", settlement_id)

    operation = operation_var.get()
    if operation:
        event_dict.setdefault("operation", operation)

    return event_dict


def add_service_context(
    logger, method_name: str, event_dict: Dict[str, Any]
) -> Dict[str, Any]:
    """Add service context to log events."""
    event_dict["service"] = "receivables"
    event_dict["version"] = __version__
    return event_dict


def setup_logging(log_level: str = "INFO") -> None:
    """
    Configure structured JSON logging.

    Args:
        log_level: Minimum stdlib level name for emitted events
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            add_service_context,
            add_request_context,
            add_correlation_id,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer(),
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)


def get_business_logger() -> structlog.stdlib.BoundLogger:
    """Get a business event logger instance."""
    return structlog.get_logger("business")


def get_performance_logger() -> structlog.stdlib.BoundLogger:
    """Get a performance logger instance."""
    return structlog.get_logger("performance")


def get_correlation_id() -> Optional[str]:
    """Get correlation ID from current context."""
    return correlation_id_var.get()


@contextmanager
def correlation_context(correlation_id: str = None, user_id: str = None,
                        settlement_id: str = None):
    """
    Context manager for setting correlation context.

    Args:
        correlation_id: Correlation ID for the request
        user_id: Acting user
        settlement_id: Settlement the current operation works on
    """
    tokens = []
    if correlation_id:
        tokens.append((correlation_id_var, correlation_id_var.set(correlation_id)))
    if user_id:
        tokens.append((user_id_var, user_id_var.set(user_id)))
    if settlement_id:
        tokens.append((settlement_id_var, settlement_id_var.set(settlement_id)))

    try:
        yield
    finally:
        for var, token in reversed(tokens):
            var.reset(token)


@contextmanager
def performance_timing(operation_name: str):
    """
    Context manager for timing operations.

    Args:
        operation_name: Name of the operation being timed
    """
    start_time = time.time()
    token = operation_var.set(operation_name)
    logger = get_performance_logger()

    try:
        yield
    finally:
        duration = time.time() - start_time
        logger.info(
            "Operation completed",
            operation=operation_name,
            duration_ms=round(duration * 1000, 2),
        )
        operation_var.reset(token)


def log_business_event(event_type: str, **kwargs):
    """
    Log a structured business event.

    Args:
        event_type: Type of business event
        **kwargs: Additional event data
    """
    logger = get_business_logger()
    logger.info("Business event", event_type=event_type, **kwargs)
