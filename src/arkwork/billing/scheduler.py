"""
In-process billing scheduler.

Runs two daily jobs as asyncio tasks: the recompute pass (expire lapsed
tenants) and the expiry warning pass. Each job sleeps until its next
wall-clock time in the configured timezone, or until ``stop()`` is called.
"""

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import structlog

from arkwork.billing.clock import Clock, SystemClock, ensure_utc
from arkwork.billing.email_templates import (
    WARNING_TEMPLATES,
    build_warning_context,
    render_template,
)
from arkwork.billing.exceptions import BillingConfigurationError, DeliveryFailedError
from arkwork.billing.interfaces import Notifier, SentWarningLedger
from arkwork.billing.models import WarningCandidate
from arkwork.billing.notifications import LifecycleNotifications
from arkwork.billing.recompute import RecomputePass, RecomputeResult
from arkwork.billing.warning_selector import WarningSelector

logger = structlog.get_logger(__name__)


@dataclass
class WarningTickResult:
    candidates: int = 0
    sent: int = 0
    failed: int = 0


def seconds_until(at: time, now: datetime, tz: ZoneInfo) -> float:
    """Seconds from ``now`` to the next occurrence of wall-clock ``at`` in ``tz``."""
    local_now = ensure_utc(now).astimezone(tz)
    target = datetime.combine(local_now.date(), at, tzinfo=tz)
    if target <= local_now:
        target = datetime.combine(local_now.date() + timedelta(days=1), at, tzinfo=tz)
    return (target - local_now).total_seconds()


class BillingScheduler:
    """
    Owns the recompute and warning loops.

    A job never overlaps itself: each loop awaits its tick before sleeping
    again. The two jobs are independent tasks and may run at the same time.
    """

    def __init__(
        self,
        recompute: RecomputePass,
        selector: WarningSelector,
        notifier: Notifier,
        clock: Clock | None = None,
        *,
        thresholds: list[int] | None = None,
        recompute_time: time = time(0, 30),
        warning_time: time = time(9, 0),
        timezone: str = "UTC",
        ledger: SentWarningLedger | None = None,
        lifecycle_notifications: LifecycleNotifications | None = None,
        max_concurrent_sends: int = 4,
        notifier_timeout_seconds: float = 30.0,
    ) -> None:
        self.recompute = recompute
        self.selector = selector
        self.notifier = notifier
        self.clock = clock or SystemClock()
        self.thresholds = thresholds or [7, 3, 1]
        self.recompute_time = recompute_time
        self.warning_time = warning_time
        try:
            self.timezone = ZoneInfo(timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise BillingConfigurationError(
                f"Unknown schedule timezone: {timezone}", config_key="billing.schedule_timezone"
            ) from e
        self.ledger = ledger
        self.lifecycle_notifications = lifecycle_notifications
        self.max_concurrent_sends = max(1, max_concurrent_sends)
        self.notifier_timeout_seconds = notifier_timeout_seconds

        self._stop_event = asyncio.Event()
        self._tasks: list[asyncio.Task] = []

    @property
    def running(self) -> bool:
        return any(not task.done() for task in self._tasks)

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    def start(self) -> None:
        if self.running:
            logger.warning("scheduler.already_running")
            return
        self._stop_event.clear()
        self._tasks = [
            asyncio.create_task(
                self._loop("recompute", self.recompute_time, self.run_recompute_tick),
                name="billing-recompute",
            ),
            asyncio.create_task(
                self._loop("warning", self.warning_time, self.run_warning_tick),
                name="billing-warning",
            ),
        ]
        logger.info(
            "scheduler.started",
            recompute_time=self.recompute_time.isoformat(timespec="minutes"),
            warning_time=self.warning_time.isoformat(timespec="minutes"),
            timezone=str(self.timezone),
        )

    async def stop(self, timeout: float | None = None) -> None:
        """Stop scheduling new ticks; cancel an in-flight tick after ``timeout``."""
        self._stop_event.set()
        tasks = [task for task in self._tasks if not task.done()]
        if tasks:
            _, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
            if pending:
                await asyncio.gather(*pending, return_exceptions=True)
                logger.warning("scheduler.stop.cancelled", jobs=[t.get_name() for t in pending])
        self._tasks = []
        logger.info("scheduler.stopped")

    async def _loop(
        self, job: str, at: time, tick: Callable[[datetime], Awaitable[Any]]
    ) -> None:
        while not self._stop_event.is_set():
            delay = seconds_until(at, self.clock.now(), self.timezone)
            logger.debug("scheduler.sleep", job=job, seconds=round(delay, 1))
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=delay)
                break
            except asyncio.TimeoutError:
                pass

            tick_at = self.clock.now()
            try:
                await tick(tick_at)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "scheduler.tick.failed",
                    job=job,
                    tick_at=tick_at.isoformat(),
                    error=str(e),
                    exc_info=True,
                )

    # =========================================================================
    # TICKS
    # =========================================================================

    async def run_recompute_tick(self, now: datetime | None = None) -> RecomputeResult:
        now = ensure_utc(now or self.clock.now())
        result = await self.recompute.run(now)

        if self.lifecycle_notifications is not None:
            for tenant in result.expired_tenants:
                try:
                    await asyncio.wait_for(
                        self.lifecycle_notifications.notify_expired(
                            tenant, tenant.access_ends_at()
                        ),
                        timeout=self.notifier_timeout_seconds,
                    )
                except asyncio.TimeoutError:
                    logger.error("billing.notice.timeout", tenant_id=tenant.id)
                except Exception as e:
                    logger.error(
                        "billing.notice.failed", tenant_id=tenant.id, error=str(e), exc_info=True
                    )
        return result

    async def run_warning_tick(self, now: datetime | None = None) -> WarningTickResult:
        now = ensure_utc(now or self.clock.now())
        candidates = await self.selector.find_tenants_to_warn(self.thresholds, now)
        result = WarningTickResult(candidates=len(candidates))
        if not candidates:
            logger.info("billing.warning.tick", candidates=0, sent=0, failed=0)
            return result

        semaphore = asyncio.Semaphore(self.max_concurrent_sends)

        async def send_one(candidate: WarningCandidate) -> bool:
            async with semaphore:
                return await self._send_warning(candidate, now)

        outcomes = await asyncio.gather(*(send_one(c) for c in candidates))
        result.sent = sum(1 for ok in outcomes if ok)
        result.failed = len(outcomes) - result.sent

        logger.info(
            "billing.warning.tick",
            candidates=result.candidates,
            sent=result.sent,
            failed=result.failed,
        )
        return result

    async def _send_warning(self, candidate: WarningCandidate, now: datetime) -> bool:
        try:
            subject, html, text = render_template(
                WARNING_TEMPLATES[candidate.kind], build_warning_context(candidate)
            )
            await asyncio.wait_for(
                self.notifier.send(candidate.recipient_addresses, subject, html, text),
                timeout=self.notifier_timeout_seconds,
            )
        except asyncio.TimeoutError:
            logger.error(
                "billing.warning.timeout",
                tenant_id=candidate.tenant_id,
                kind=candidate.kind.value,
                timeout=self.notifier_timeout_seconds,
            )
            return False
        except DeliveryFailedError as e:
            logger.error(
                "billing.warning.failed",
                tenant_id=candidate.tenant_id,
                kind=candidate.kind.value,
                error=e.message,
            )
            return False
        except Exception as e:
            logger.error(
                "billing.warning.failed",
                tenant_id=candidate.tenant_id,
                kind=candidate.kind.value,
                error=str(e),
                exc_info=True,
            )
            return False

        if self.ledger is not None:
            try:
                await self.ledger.record(candidate.key, now)
            except Exception as e:
                # sent but not recorded: may be repeated on the next tick
                logger.error(
                    "billing.warning.ledger_failed",
                    tenant_id=candidate.tenant_id,
                    error=str(e),
                )

        logger.info(
            "billing.warning.sent",
            tenant_id=candidate.tenant_id,
            kind=candidate.kind.value,
            threshold=candidate.threshold,
            days_left=candidate.days_left,
            recipients=len(candidate.recipient_addresses),
        )
        return True
