"""
Celery application configuration.

Alternative to the in-process scheduler: celery beat triggers the daily
recompute and warning jobs at the configured wall-clock times.
"""

from typing import Any

import structlog
from celery import Celery
from celery.schedules import crontab

from arkwork.billing.settings import settings

# Create Celery application
celery_app = Celery(
    "arkwork_billing",
    broker=settings.celery.broker_url,
    backend=settings.celery.result_backend,
    include=["arkwork.billing.tasks"],
)

# Configure Celery settings
celery_app.conf.update(
    task_default_queue="default",
    # Task execution settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.billing.schedule_timezone,
    enable_utc=True,
    # Task result settings
    result_expires=3600,  # 1 hour
    task_track_started=True,
    task_time_limit=900,  # 15 minutes
    task_soft_time_limit=840,
    # Worker settings
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)


@celery_app.on_after_finalize.connect  # type: ignore[misc]
def setup_periodic_tasks(sender: Any, **kwargs: Any) -> None:
    """Register the daily billing jobs with beat."""
    from arkwork.billing.tasks import recompute_lapsed_task, send_expiry_warnings_task

    recompute_at = settings.billing.recompute_time
    warning_at = settings.billing.warning_time

    sender.add_periodic_task(
        crontab(hour=recompute_at.hour, minute=recompute_at.minute),
        recompute_lapsed_task.s(),
        name="billing-recompute-lapsed",
    )
    sender.add_periodic_task(
        crontab(hour=warning_at.hour, minute=warning_at.minute),
        send_expiry_warnings_task.s(),
        name="billing-send-expiry-warnings",
    )

    logger = structlog.get_logger(__name__)
    logger.info(
        "celery.worker.configured",
        broker=settings.celery.broker_url,
        periodic_tasks=["billing-recompute-lapsed", "billing-send-expiry-warnings"],
        timezone=settings.billing.schedule_timezone,
    )
