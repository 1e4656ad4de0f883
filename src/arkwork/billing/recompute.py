"""
Daily recompute pass.

Expires every trial/active tenant whose access window has already passed.
"""

from dataclasses import dataclass, field
from datetime import datetime

import structlog

from arkwork.billing.clock import Clock, SystemClock, ensure_utc
from arkwork.billing.interfaces import TenantStore, call_with_timeout
from arkwork.billing.lifecycle import BillingLifecycleEngine
from arkwork.billing.models import BillingStatus, Tenant

logger = structlog.get_logger(__name__)


@dataclass
class RecomputeResult:
    checked: int = 0
    expired: int = 0
    failed: int = 0
    expired_tenants: list[Tenant] = field(default_factory=list)

    @property
    def expired_tenant_ids(self) -> list[str]:
        return [t.id for t in self.expired_tenants]


def is_lapsed(tenant: Tenant, now: datetime) -> bool:
    ends_at = tenant.access_ends_at()
    return ends_at is not None and ends_at <= now


class RecomputePass:
    """
    Calls ``expire_premium`` for each lapsed tenant.

    ``store_timeout_seconds`` bounds each store call separately, so a slow
    tenant is counted as failed and the pass moves on to the next one.
    """

    def __init__(
        self,
        engine: BillingLifecycleEngine,
        store: TenantStore,
        clock: Clock | None = None,
        *,
        store_timeout_seconds: float | None = None,
    ) -> None:
        self.engine = engine
        self.store = store
        self.clock = clock or SystemClock()
        self.store_timeout_seconds = store_timeout_seconds

    async def run(self, now: datetime | None = None) -> RecomputeResult:
        now = ensure_utc(now or self.clock.now())
        result = RecomputeResult()

        tenants = await call_with_timeout(
            self.store.list_trials_and_active(), self.store_timeout_seconds, "list_tenants"
        )
        for tenant in tenants:
            result.checked += 1
            if not is_lapsed(tenant, now):
                continue
            try:
                updated = await call_with_timeout(
                    self.engine.expire_premium(tenant.id, lapsed_as_of=now),
                    self.store_timeout_seconds,
                    "expire_premium",
                )
            except Exception as e:
                result.failed += 1
                logger.error(
                    "billing.recompute.tenant_failed",
                    tenant_id=tenant.id,
                    error=str(e),
                    exc_info=True,
                )
                continue
            if updated.billing_status == BillingStatus.PAST_DUE:
                result.expired += 1
                # keep the pre-expiry record so callers know when access ended
                result.expired_tenants.append(tenant)

        logger.info(
            "billing.recompute.completed",
            checked=result.checked,
            expired=result.expired,
            failed=result.failed,
            now=now.isoformat(),
        )
        return result
