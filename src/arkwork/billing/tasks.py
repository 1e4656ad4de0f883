"""
Celery tasks for the daily billing jobs.

Each task runs one scheduler tick on a fresh event loop and returns a
JSON-serializable summary.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any

import structlog

from arkwork.billing.celery_app import celery_app
from arkwork.billing.container import build_services
from arkwork.billing.db import dispose_engine

logger = structlog.get_logger(__name__)


async def _recompute_lapsed() -> dict[str, Any]:
    services = build_services()
    try:
        result = await services.scheduler.run_recompute_tick()
    finally:
        await dispose_engine()
    return {
        "checked": result.checked,
        "expired": result.expired,
        "failed": result.failed,
        "expired_tenant_ids": result.expired_tenant_ids,
        "timestamp": datetime.now(UTC).isoformat(),
    }


async def _send_expiry_warnings() -> dict[str, Any]:
    services = build_services()
    try:
        result = await services.scheduler.run_warning_tick()
    finally:
        await dispose_engine()
    return {
        "candidates": result.candidates,
        "sent": result.sent,
        "failed": result.failed,
        "timestamp": datetime.now(UTC).isoformat(),
    }


@celery_app.task(name="billing.recompute_lapsed")
def recompute_lapsed_task() -> dict[str, Any]:
    """Daily task: move lapsed trial/active tenants to past_due."""
    result = asyncio.run(_recompute_lapsed())
    logger.info("billing.task.recompute_lapsed", **result)
    return result


@celery_app.task(name="billing.send_expiry_warnings")
def send_expiry_warnings_task() -> dict[str, Any]:
    """Daily task: warn tenants whose access ends soon."""
    result = asyncio.run(_send_expiry_warnings())
    logger.info("billing.task.send_expiry_warnings", **result)
    return result


__all__ = [
    "recompute_lapsed_task",
    "send_expiry_warnings_task",
]
