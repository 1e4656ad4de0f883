"""
SQLAlchemy-backed collaborators.

Tenant writes are a single ``UPDATE ... WHERE id = :id AND version = :v``
committed together with the optional billing period row. Database errors
surface as ``StoreUnavailableError``.
"""

from datetime import datetime
from enum import Enum
from typing import Any

import structlog
from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arkwork.billing.clock import ensure_utc
from arkwork.billing.db import session_scope
from arkwork.billing.exceptions import (
    ConcurrentUpdateError,
    PlanNotFoundError,
    StoreUnavailableError,
    TenantNotFoundError,
)
from arkwork.billing.models import (
    BillingPeriod,
    BillingStatus,
    Plan,
    SentWarningKey,
    Tenant,
)
from arkwork.billing.tables import (
    BillingAdminUserTable,
    BillingPeriodTable,
    BillingPlanTable,
    BillingTenantTable,
    SentWarningTable,
)

logger = structlog.get_logger(__name__)

SessionFactory = async_sessionmaker[AsyncSession]


def _column_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return ensure_utc(value)
    return value


class SQLTenantStore:
    """Tenant store over the ``billing_tenants`` table."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def get(self, tenant_id: str) -> Tenant:
        try:
            async with session_scope(self.session_factory) as session:
                row = await session.get(BillingTenantTable, tenant_id)
                if row is None:
                    raise TenantNotFoundError(f"Tenant {tenant_id} not found", tenant_id=tenant_id)
                return Tenant.model_validate(row)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to load tenant: {e}", operation="get") from e

    async def create(self, tenant: Tenant) -> Tenant:
        values = {k: _column_value(v) for k, v in tenant.model_dump().items()}
        try:
            async with session_scope(self.session_factory) as session:
                existing = await session.get(BillingTenantTable, tenant.id)
                if existing is not None:
                    return Tenant.model_validate(existing)
                session.add(BillingTenantTable(**values))
        except IntegrityError:
            # lost an insert race; the stored row wins
            logger.debug("billing.tenant.create_race", tenant_id=tenant.id)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to create tenant: {e}", operation="create") from e
        return await self.get(tenant.id)

    async def update(
        self,
        tenant_id: str,
        changes: dict[str, Any],
        *,
        expected_version: int,
        period: BillingPeriod | None = None,
    ) -> Tenant:
        values = {k: _column_value(v) for k, v in changes.items() if k not in ("id", "version")}
        values["version"] = expected_version + 1

        try:
            async with session_scope(self.session_factory) as session:
                result = await session.execute(
                    update(BillingTenantTable)
                    .where(
                        BillingTenantTable.id == tenant_id,
                        BillingTenantTable.version == expected_version,
                    )
                    .values(**values)
                )
                if result.rowcount != 1:
                    exists = await session.scalar(
                        select(BillingTenantTable.id).where(BillingTenantTable.id == tenant_id)
                    )
                    if exists is None:
                        raise TenantNotFoundError(
                            f"Tenant {tenant_id} not found", tenant_id=tenant_id
                        )
                    raise ConcurrentUpdateError(
                        f"Tenant {tenant_id} changed concurrently",
                        tenant_id=tenant_id,
                        expected_version=expected_version,
                    )

                if period is not None:
                    session.add(
                        BillingPeriodTable(
                            tenant_id=period.tenant_id,
                            plan_id=period.plan_id,
                            period_start=ensure_utc(period.period_start),
                            period_end=ensure_utc(period.period_end),
                            created_at=ensure_utc(period.created_at),
                        )
                    )

                row = await session.scalar(
                    select(BillingTenantTable)
                    .where(BillingTenantTable.id == tenant_id)
                    .execution_options(populate_existing=True)
                )
                return Tenant.model_validate(row)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to update tenant: {e}", operation="update") from e

    async def list_trials_and_active(self) -> list[Tenant]:
        try:
            async with session_scope(self.session_factory) as session:
                rows = await session.scalars(
                    select(BillingTenantTable)
                    .where(
                        BillingTenantTable.billing_status.in_(
                            [BillingStatus.TRIAL.value, BillingStatus.ACTIVE.value]
                        )
                    )
                    .order_by(BillingTenantTable.id)
                )
                return [Tenant.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to list tenants: {e}", operation="list_trials_and_active"
            ) from e

    async def list_periods(self, tenant_id: str) -> list[BillingPeriod]:
        try:
            async with session_scope(self.session_factory) as session:
                rows = await session.scalars(
                    select(BillingPeriodTable)
                    .where(BillingPeriodTable.tenant_id == tenant_id)
                    .order_by(BillingPeriodTable.period_start, BillingPeriodTable.id)
                )
                return [BillingPeriod.model_validate(row) for row in rows]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to list periods: {e}", operation="list_periods"
            ) from e


class SQLPlanCatalog:
    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def get_plan(self, plan_id: str) -> Plan:
        try:
            async with session_scope(self.session_factory) as session:
                row = await session.get(BillingPlanTable, plan_id)
                if row is None:
                    raise PlanNotFoundError(f"Plan {plan_id} not found", plan_id=plan_id)
                return Plan.model_validate(row)
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to load plan: {e}", operation="get_plan") from e

    async def upsert(self, plan: Plan) -> None:
        try:
            async with session_scope(self.session_factory) as session:
                await session.merge(
                    BillingPlanTable(
                        id=plan.id,
                        name=plan.name,
                        trial_days=plan.trial_days,
                        amount=plan.amount,
                        interval=plan.interval.value,
                    )
                )
        except SQLAlchemyError as e:
            raise StoreUnavailableError(f"Failed to save plan: {e}", operation="upsert") from e


class SQLAdminEmailResolver:
    """Admin addresses: owner first, then by account creation."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def emails_for(self, tenant_id: str) -> list[str]:
        try:
            async with session_scope(self.session_factory) as session:
                rows = await session.scalars(
                    select(BillingAdminUserTable.email)
                    .where(
                        BillingAdminUserTable.tenant_id == tenant_id,
                        BillingAdminUserTable.email.is_not(None),
                    )
                    .order_by(
                        BillingAdminUserTable.is_owner.desc(),
                        BillingAdminUserTable.created_at.asc(),
                        BillingAdminUserTable.id.asc(),
                    )
                )
                return [email for email in rows if email]
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to resolve admin emails: {e}", operation="emails_for"
            ) from e


class SQLSentWarningLedger:
    """Sent-warning ledger; the unique constraint makes ``record`` idempotent."""

    def __init__(self, session_factory: SessionFactory) -> None:
        self.session_factory = session_factory

    async def has_sent(self, key: SentWarningKey) -> bool:
        try:
            async with session_scope(self.session_factory) as session:
                found = await session.scalar(
                    select(SentWarningTable.id).where(
                        SentWarningTable.tenant_id == key.tenant_id,
                        SentWarningTable.kind == key.kind.value,
                        SentWarningTable.threshold_day == key.threshold_day,
                        SentWarningTable.expiry == ensure_utc(key.expiry),
                    )
                )
                return found is not None
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to read warning ledger: {e}", operation="has_sent"
            ) from e

    async def record(self, key: SentWarningKey, sent_at: datetime) -> bool:
        try:
            async with session_scope(self.session_factory) as session:
                session.add(
                    SentWarningTable(
                        tenant_id=key.tenant_id,
                        kind=key.kind.value,
                        threshold_day=key.threshold_day,
                        expiry=ensure_utc(key.expiry),
                        sent_at=ensure_utc(sent_at),
                    )
                )
        except IntegrityError:
            return False
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                f"Failed to record warning: {e}", operation="record"
            ) from e
        return True
