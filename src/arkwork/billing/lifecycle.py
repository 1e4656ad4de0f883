"""
Billing lifecycle engine.

Trial activation, paid period activation, renewal and expiry of tenant
billing state, plus the pure access-eligibility check.

Every mutation is a read -> compute -> compare-and-set write against the
tenant version. A lost race re-reads the tenant and recomputes, so a payment
webhook and the daily recompute pass can hit the same tenant safely.
"""

from collections.abc import Callable
from datetime import datetime, timedelta
from typing import Any

import structlog
from dateutil.relativedelta import relativedelta
from pydantic import ValidationError

from arkwork.billing.clock import Clock, SystemClock, ensure_utc
from arkwork.billing.exceptions import (
    ConcurrentUpdateError,
    InvalidTenantStateError,
    InvalidTransitionError,
    PlanNotFoundError,
    TenantNotFoundError,
)
from arkwork.billing.interfaces import PlanCatalog, TenantStore
from arkwork.billing.logging import log_billing_event
from arkwork.billing.models import (
    BillingInterval,
    BillingPeriod,
    BillingStatus,
    BillingSummary,
    Plan,
    Tenant,
)

logger = structlog.get_logger(__name__)

# compute step result: (changes, period) or None for "leave tenant as is"
_Computation = tuple[dict[str, Any], BillingPeriod | None] | None


def add_interval(start: datetime, interval: BillingInterval) -> datetime:
    """Calendar arithmetic: one month or twelve months after ``start``."""
    if interval == BillingInterval.YEAR:
        return start + relativedelta(years=1)
    return start + relativedelta(months=1)


def trial_window(days: int, start: datetime) -> tuple[datetime, datetime]:
    return start, start + timedelta(days=max(0, days))


def has_access(tenant: Tenant, now: datetime) -> bool:
    """
    Access eligibility for a tenant at ``now``.

    The end of the window is exclusive. A missing timestamp counts as
    expired, except for the perpetual free tier.
    """
    now = ensure_utc(now)
    if tenant.billing_status == BillingStatus.ACTIVE:
        if tenant.free_tier:
            return True
        return tenant.premium_until is not None and now < tenant.premium_until
    if tenant.billing_status == BillingStatus.TRIAL:
        return tenant.trial_ends_at is not None and now < tenant.trial_ends_at
    return False


def left_days_text(target: datetime | None, now: datetime) -> str:
    """Human readable calendar days until ``target``."""
    if target is None:
        return "-"
    diff = (ensure_utc(target).date() - ensure_utc(now).date()).days
    if diff < 0:
        return "expired"
    if diff == 0:
        return "today"
    if diff == 1:
        return "1 day"
    return f"{diff} days"


def billing_summary(tenant: Tenant, now: datetime) -> BillingSummary:
    if tenant.free_tier:
        time_left = "no expiry"
    else:
        time_left = left_days_text(tenant.access_ends_at(), now)
    return BillingSummary(
        tenant_id=tenant.id,
        display_name=tenant.display_name,
        billing_status=tenant.billing_status,
        current_plan_id=tenant.current_plan_id,
        trial_ends_at=tenant.trial_ends_at,
        premium_until=tenant.premium_until,
        free_tier=tenant.free_tier,
        active=has_access(tenant, now),
        time_left=time_left,
    )


class BillingLifecycleEngine:
    """
    Tenant billing state transitions.

    Key methods:
    - start_trial(tenant_id, plan_id): plan selection, trial or free tier
    - activate_paid_period(tenant_id, plan_id): after a confirmed payment
    - extend_premium(tenant_id): renewal stacked on the current window
    - expire_premium(tenant_id): revoke access once the window has passed
    """

    def __init__(
        self,
        store: TenantStore,
        catalog: PlanCatalog,
        clock: Clock | None = None,
        *,
        auto_provision_tenants: bool = True,
        allow_unknown_plan_fallback: bool = False,
        max_write_attempts: int = 3,
    ) -> None:
        self.store = store
        self.catalog = catalog
        self.clock = clock or SystemClock()
        self.auto_provision_tenants = auto_provision_tenants
        self.allow_unknown_plan_fallback = allow_unknown_plan_fallback
        self.max_write_attempts = max(1, max_write_attempts)

    # =========================================================================
    # TRANSITIONS
    # =========================================================================

    async def start_trial(
        self, tenant_id: str, plan_id: str, now: datetime | None = None
    ) -> Tenant:
        """
        Record a plan selection and grant the plan's trial or free tier.

        Paid plans without trial days grant nothing here; access starts with
        ``activate_paid_period`` once payment is confirmed.

        Raises:
            PlanNotFoundError: plan is not in the catalog (no mutation)
            InvalidTransitionError: a trial or paid window is already running
        """
        plan = await self.catalog.get_plan(plan_id)
        now = ensure_utc(now or self.clock.now())

        if self.auto_provision_tenants:
            await self._ensure_tenant(tenant_id)

        def compute(tenant: Tenant) -> _Computation:
            if tenant.billing_status == BillingStatus.TRIAL or (
                tenant.billing_status == BillingStatus.ACTIVE and tenant.premium_until is not None
            ):
                raise InvalidTransitionError(
                    f"Tenant {tenant.id} already has a running {tenant.billing_status.value} window",
                    current_state=tenant.billing_status.value,
                    requested_event="start_trial",
                )

            if plan.trial_days > 0:
                start, end = trial_window(plan.trial_days, now)
                return {
                    "current_plan_id": plan.id,
                    "billing_status": BillingStatus.TRIAL,
                    "trial_started_at": start,
                    "trial_ends_at": end,
                    "premium_until": end,
                    "free_tier": False,
                }, None

            if plan.is_free:
                return {
                    "current_plan_id": plan.id,
                    "billing_status": BillingStatus.ACTIVE,
                    "trial_started_at": None,
                    "trial_ends_at": None,
                    "premium_until": None,
                    "free_tier": True,
                }, None

            return {
                "current_plan_id": plan.id,
                "billing_status": BillingStatus.NONE,
                "trial_started_at": None,
                "trial_ends_at": None,
                "premium_until": None,
                "free_tier": False,
            }, None

        tenant = await self._apply(tenant_id, compute, operation="start_trial")

        log_billing_event(
            "billing.trial.started" if plan.trial_days > 0 else "billing.plan.selected",
            tenant_id=tenant_id,
            plan_id=plan.id,
            billing_status=tenant.billing_status.value,
            trial_ends_at=tenant.trial_ends_at.isoformat() if tenant.trial_ends_at else None,
            free_tier=tenant.free_tier,
        )
        return tenant

    async def activate_paid_period(
        self,
        tenant_id: str,
        plan_id: str,
        period_start: datetime | None = None,
    ) -> Tenant:
        """
        Start a paid period after a confirmed payment.

        Supersedes any running trial. Duplicate webhook deliveries must be
        de-duplicated by the caller.
        """
        plan = await self._resolve_plan_for_payment(tenant_id, plan_id)
        interval = plan.interval if plan else BillingInterval.MONTH
        start = ensure_utc(period_start or self.clock.now())
        until = add_interval(start, interval)

        if self.auto_provision_tenants:
            await self._ensure_tenant(tenant_id)

        def compute(tenant: Tenant) -> _Computation:
            return _paid_changes(plan_id, until), BillingPeriod(
                tenant_id=tenant.id,
                plan_id=plan_id,
                period_start=start,
                period_end=until,
                created_at=self.clock.now(),
            )

        tenant = await self._apply(tenant_id, compute, operation="activate_paid_period")

        log_billing_event(
            "billing.premium.activated",
            tenant_id=tenant_id,
            plan_id=plan_id,
            interval=interval.value,
            premium_until=until.isoformat(),
        )
        return tenant

    async def extend_premium(
        self, tenant_id: str, interval: BillingInterval | None = None
    ) -> Tenant:
        """
        Renew the premium window.

        The new period starts at the current ``premium_until`` while it is
        still in the future, otherwise now. The interval defaults to the
        current plan's interval.
        """
        now = self.clock.now()
        current = await self.store.get(tenant_id)
        if interval is None:
            interval = BillingInterval.MONTH
            if current.current_plan_id:
                try:
                    interval = (await self.catalog.get_plan(current.current_plan_id)).interval
                except PlanNotFoundError:
                    logger.warning(
                        "billing.extend.plan_missing",
                        tenant_id=tenant_id,
                        plan_id=current.current_plan_id,
                    )

        def compute(tenant: Tenant) -> _Computation:
            if tenant.current_plan_id is None:
                raise InvalidTransitionError(
                    f"Tenant {tenant.id} has no plan to extend",
                    current_state=tenant.billing_status.value,
                    requested_event="extend_premium",
                )
            if tenant.premium_until is not None and tenant.premium_until > now:
                base = tenant.premium_until
            else:
                base = now
            until = add_interval(base, interval)
            return _paid_changes(tenant.current_plan_id, until), BillingPeriod(
                tenant_id=tenant.id,
                plan_id=tenant.current_plan_id,
                period_start=base,
                period_end=until,
                created_at=now,
            )

        tenant = await self._apply(tenant_id, compute, operation="extend_premium")

        log_billing_event(
            "billing.premium.extended",
            tenant_id=tenant_id,
            plan_id=tenant.current_plan_id,
            interval=interval.value,
            premium_until=tenant.premium_until.isoformat() if tenant.premium_until else None,
        )
        return tenant

    async def expire_premium(
        self, tenant_id: str, lapsed_as_of: datetime | None = None
    ) -> Tenant:
        """
        Revoke access: status becomes past_due and premium_until is cleared.

        Trial fields and the current plan are kept for win-back. With
        ``lapsed_as_of`` the write only happens while the tenant is still
        trial/active with an access end at or before that instant, so a
        payment that lands first wins.
        """
        cutoff = ensure_utc(lapsed_as_of) if lapsed_as_of is not None else None
        previous: list[BillingStatus] = []

        def compute(tenant: Tenant) -> _Computation:
            previous[:] = []
            if cutoff is not None:
                if tenant.billing_status not in (BillingStatus.TRIAL, BillingStatus.ACTIVE):
                    return None
                ends_at = tenant.access_ends_at()
                if ends_at is None or ends_at > cutoff:
                    return None
            previous.append(tenant.billing_status)
            return {
                "billing_status": BillingStatus.PAST_DUE,
                "premium_until": None,
                "free_tier": False,
            }, None

        tenant = await self._apply(tenant_id, compute, operation="expire_premium")

        if previous:
            log_billing_event(
                "billing.premium.expired",
                tenant_id=tenant_id,
                plan_id=tenant.current_plan_id,
                previous_status=previous[0].value,
            )
        else:
            logger.info(
                "billing.expire.skipped",
                tenant_id=tenant_id,
                billing_status=tenant.billing_status.value,
            )
        return tenant

    # =========================================================================
    # QUERIES
    # =========================================================================

    async def get_billing_summary(
        self, tenant_id: str, now: datetime | None = None
    ) -> BillingSummary:
        tenant = await self.store.get(tenant_id)
        return billing_summary(tenant, now or self.clock.now())

    @staticmethod
    def has_access(tenant: Tenant, now: datetime) -> bool:
        return has_access(tenant, now)

    # =========================================================================
    # INTERNALS
    # =========================================================================

    async def _ensure_tenant(self, tenant_id: str) -> None:
        try:
            await self.store.get(tenant_id)
        except TenantNotFoundError:
            logger.info("billing.tenant.provisioned", tenant_id=tenant_id)
            # create is insert-if-absent, a concurrent provision is harmless
            await self.store.create(Tenant(id=tenant_id))

    async def _resolve_plan_for_payment(self, tenant_id: str, plan_id: str) -> Plan | None:
        try:
            return await self.catalog.get_plan(plan_id)
        except PlanNotFoundError:
            if not self.allow_unknown_plan_fallback:
                raise
            logger.warning(
                "billing.plan.unknown_fallback_monthly",
                tenant_id=tenant_id,
                plan_id=plan_id,
            )
            return None

    async def _apply(
        self,
        tenant_id: str,
        compute: Callable[[Tenant], _Computation],
        *,
        operation: str,
    ) -> Tenant:
        """Run ``compute`` against the latest tenant and write it conditionally."""
        for attempt in range(1, self.max_write_attempts + 1):
            tenant = await self.store.get(tenant_id)
            result = compute(tenant)
            if result is None:
                return tenant
            changes, period = result

            try:
                tenant.with_changes(changes)
            except ValidationError as exc:
                raise InvalidTenantStateError(
                    f"{operation} would leave tenant {tenant_id} inconsistent: {exc}",
                    tenant_id=tenant_id,
                ) from exc

            try:
                return await self.store.update(
                    tenant_id,
                    changes,
                    expected_version=tenant.version,
                    period=period,
                )
            except ConcurrentUpdateError:
                logger.info(
                    "billing.write.conflict",
                    tenant_id=tenant_id,
                    operation=operation,
                    attempt=attempt,
                )
                if attempt == self.max_write_attempts:
                    raise

        raise AssertionError("unreachable")  # pragma: no cover


def _paid_changes(plan_id: str, until: datetime) -> dict[str, Any]:
    return {
        "current_plan_id": plan_id,
        "billing_status": BillingStatus.ACTIVE,
        "premium_until": until,
        "trial_started_at": None,
        "trial_ends_at": None,
        "free_tier": False,
    }
