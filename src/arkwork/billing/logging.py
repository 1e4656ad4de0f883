"""
Simple structured logging setup using structlog directly.

No wrappers, just standard structlog configuration.
"""

import logging
import sys

import structlog

from arkwork.billing.settings import settings


def setup_logging() -> None:
    """
    Setup structured logging with structlog.

    Uses settings from centralized configuration.
    """
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=settings.observability.log_level.value,
    )

    processors = [
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    # Use JSON or console output based on settings
    if settings.observability.log_format == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer())

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """
    Get a structured logger.

    Args:
        name: Logger name, defaults to caller's module name

    Returns:
        Configured structured logger
    """
    return structlog.get_logger(name)


def log_billing_event(
    action: str,
    tenant_id: str,
    plan_id: str | None = None,
    **kwargs: object,
) -> None:
    """
    Log a billing state change as a structured audit entry.

    Audit events are just structured logs with specific fields.
    """
    audit_logger = structlog.get_logger("audit")
    audit_logger.info(
        action,
        audit_category="billing",
        audit_tenant_id=tenant_id,
        audit_plan_id=plan_id,
        **kwargs,
    )
