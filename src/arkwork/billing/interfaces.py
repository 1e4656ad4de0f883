"""
Collaborator interfaces consumed by the lifecycle engine and scheduler.

Reference implementations live in ``memory_store``, ``sql_store`` and
``notifier``; anything satisfying these protocols can be injected.
"""

import asyncio
from collections.abc import Awaitable
from datetime import datetime
from typing import Any, Protocol, TypeVar

from arkwork.billing.exceptions import StoreUnavailableError
from arkwork.billing.models import BillingPeriod, Plan, SentWarningKey, Tenant

T = TypeVar("T")


class TenantStore(Protocol):
    """Repository over tenant billing fields.

    ``update`` is a single conditional write: it applies ``changes`` only
    when the stored version equals ``expected_version`` (bumping it), and
    appends ``period`` in the same transaction. It raises
    ``ConcurrentUpdateError`` on a version mismatch and
    ``TenantNotFoundError`` for unknown ids. ``create`` inserts only when
    the id is absent and returns the stored record either way.
    """

    async def get(self, tenant_id: str) -> Tenant: ...

    async def create(self, tenant: Tenant) -> Tenant: ...

    async def update(
        self,
        tenant_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int,
        period: BillingPeriod | None = None,
    ) -> Tenant: ...

    async def list_trials_and_active(self) -> list[Tenant]: ...


class PlanCatalog(Protocol):
    async def get_plan(self, plan_id: str) -> Plan: ...


class AdminEmailResolver(Protocol):
    """Admin addresses for a tenant: owner first, then by account creation."""

    async def emails_for(self, tenant_id: str) -> list[str]: ...


class Notifier(Protocol):
    async def send(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> None: ...


class SentWarningLedger(Protocol):
    """Append-only set of warnings already delivered."""

    async def has_sent(self, key: SentWarningKey) -> bool: ...

    async def record(self, key: SentWarningKey, sent_at: datetime) -> bool: ...


async def call_with_timeout(
    awaitable: Awaitable[T], timeout: float | None, operation: str
) -> T:
    """Await one collaborator call; a timeout becomes ``StoreUnavailableError``."""
    if timeout is None:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout)
    except asyncio.TimeoutError as e:
        raise StoreUnavailableError(
            f"{operation} did not finish within {timeout}s", operation=operation
        ) from e
