"""
Structured logging for the Todo Service.

Every event is rendered as one JSON line carrying the service name and,
when bound, the HTTP request id, the authenticated user and the token
verification correlation id of the current task.
"""

import logging
import sys
import uuid
from contextvars import ContextVar
from typing import Any, Dict, Optional

import structlog

request_id_var: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
user_id_var: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
correlation_id_var: ContextVar[Optional[str]] = ContextVar("correlation_id", default=None)

_CONTEXT_VARS = (
    ("request_id", request_id_var),
    ("user_id", user_id_var),
    ("correlation_id", correlation_id_var),
)


def configure_logging(service_name: str, log_level: str = "info") -> None:
    """Configure structlog and the stdlib root logger for ``service_name``."""

    def add_service(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
        event_dict.setdefault("service", service_name)
        return event_dict

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            add_service,
            add_request_context,
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, log_level.upper(), logging.INFO),
    )


def add_request_context(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Copy bound context variables into the event; explicit fields win."""
    for key, var in _CONTEXT_VARS:
        value = var.get()
        if value and key not in event_dict:
            event_dict[key] = value
    return event_dict


def set_request_id(request_id: Optional[str] = None) -> str:
    """Bind the request id, generating one when the caller sent none."""
    request_id = request_id or str(uuid.uuid4())
    request_id_var.set(request_id)
    return request_id


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_user_context(user_id: Optional[str] = None):
    """Bind the authenticated user for the rest of the request."""
    if user_id:
        user_id_var.set(user_id)


def set_correlation_id(correlation_id: Optional[str]):
    """Bind the in-flight verification correlation id."""
    correlation_id_var.set(correlation_id)


def clear_context():
    """Reset all bound context at the end of a request."""
    for _, var in _CONTEXT_VARS:
        var.set(None)


def get_logger(name: str) -> structlog.BoundLogger:
    """Get a structured logger instance."""
    return structlog.get_logger(name)
