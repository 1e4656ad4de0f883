"""
In-memory collaborators.

Process-local implementations of the store, catalog, admin directory and
sent-warning ledger. Used by tests, dry runs and single-process demos.
"""

import asyncio
from collections.abc import Iterable
from datetime import datetime
from typing import Any

from arkwork.billing.exceptions import (
    ConcurrentUpdateError,
    PlanNotFoundError,
    TenantNotFoundError,
)
from arkwork.billing.models import (
    AdminUser,
    BillingPeriod,
    BillingStatus,
    Plan,
    SentWarningKey,
    Tenant,
)


class InMemoryTenantStore:
    """Tenant store with version compare-and-set under an asyncio lock."""

    def __init__(self, tenants: Iterable[Tenant] = ()) -> None:
        self._tenants: dict[str, Tenant] = {t.id: t for t in tenants}
        self._periods: list[BillingPeriod] = []
        self._lock = asyncio.Lock()

    async def get(self, tenant_id: str) -> Tenant:
        tenant = self._tenants.get(tenant_id)
        if tenant is None:
            raise TenantNotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
        return tenant.model_copy()

    async def create(self, tenant: Tenant) -> Tenant:
        async with self._lock:
            existing = self._tenants.get(tenant.id)
            if existing is None:
                self._tenants[tenant.id] = tenant.model_copy()
                existing = self._tenants[tenant.id]
            return existing.model_copy()

    async def update(
        self,
        tenant_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int,
        period: BillingPeriod | None = None,
    ) -> Tenant:
        async with self._lock:
            current = self._tenants.get(tenant_id)
            if current is None:
                raise TenantNotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
            if current.version != expected_version:
                raise ConcurrentUpdateError(
                    f"Tenant {tenant_id} changed concurrently",
                    tenant_id=tenant_id,
                    expected_version=expected_version,
                )
            updated = current.with_changes({**changes, "version": current.version + 1})
            self._tenants[tenant_id] = updated
            if period is not None:
                self._periods.append(period)
            return updated.model_copy()

    async def list_trials_and_active(self) -> list[Tenant]:
        return [
            t.model_copy()
            for t in sorted(self._tenants.values(), key=lambda t: t.id)
            if t.billing_status in (BillingStatus.TRIAL, BillingStatus.ACTIVE)
        ]

    async def list_periods(self, tenant_id: str) -> list[BillingPeriod]:
        return [p for p in self._periods if p.tenant_id == tenant_id]


class InMemoryPlanCatalog:
    def __init__(self, plans: Iterable[Plan] = ()) -> None:
        self._plans = {p.id: p for p in plans}

    def add(self, plan: Plan) -> None:
        self._plans[plan.id] = plan

    async def get_plan(self, plan_id: str) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
        return plan


class InMemoryAdminDirectory:
    """Admin email resolver over a list of admin users."""

    def __init__(self, admins: Iterable[AdminUser] = ()) -> None:
        self._admins: list[AdminUser] = list(admins)

    def add(self, admin: AdminUser) -> None:
        self._admins.append(admin)

    async def emails_for(self, tenant_id: str) -> list[str]:
        admins = sorted(
            (a for a in self._admins if a.tenant_id == tenant_id),
            key=lambda a: (not a.is_owner, a.created_at, a.id),
        )
        return [a.email for a in admins if a.email]


class InMemorySentWarningLedger:
    def __init__(self) -> None:
        self._sent: dict[SentWarningKey, datetime] = {}

    async def has_sent(self, key: SentWarningKey) -> bool:
        return key in self._sent

    async def record(self, key: SentWarningKey, sent_at: datetime) -> bool:
        if key in self._sent:
            return False
        self._sent[key] = sent_at
        return True

    def __len__(self) -> int:
        return len(self._sent)
