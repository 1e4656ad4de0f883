"""
Database tables for billing state.

Only the fields the lifecycle engine reads and writes are mapped; other
tenant and user columns belong to the surrounding platform.
"""

from datetime import UTC, datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from arkwork.billing.db import Base, TimestampMixin


class BillingTenantTable(Base, TimestampMixin):
    """Employer account billing fields."""

    __tablename__ = "billing_tenants"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    display_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    billing_status: Mapped[str] = mapped_column(String(20), nullable=False, default="none")
    current_plan_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    trial_started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    trial_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    premium_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    free_tier: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (Index("idx_billing_tenants_status", "billing_status"),)

    def __repr__(self) -> str:
        return f"<BillingTenant(id={self.id}, status={self.billing_status}, v={self.version})>"


class BillingPlanTable(Base, TimestampMixin):
    """Plan catalog."""

    __tablename__ = "billing_plans"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    trial_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    amount: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    interval: Mapped[str] = mapped_column(String(10), nullable=False, default="month")


class BillingAdminUserTable(Base):
    """Employer admin accounts used as billing mail recipients."""

    __tablename__ = "billing_admin_users"

    id: Mapped[str] = mapped_column(String(255), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("billing_tenants.id", ondelete="CASCADE"), nullable=False
    )
    email: Mapped[str | None] = mapped_column(String(320), nullable=True)
    is_owner: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    __table_args__ = (Index("idx_billing_admin_users_tenant", "tenant_id"),)


class BillingPeriodTable(Base):
    """Paid access windows, append-only."""

    __tablename__ = "billing_periods"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(
        String(255), ForeignKey("billing_tenants.id", ondelete="CASCADE"), nullable=False
    )
    plan_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    period_start: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    period_end: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=lambda: datetime.now(UTC), nullable=False
    )

    __table_args__ = (Index("idx_billing_periods_tenant", "tenant_id", "period_start"),)


class SentWarningTable(Base):
    """Delivered expiry warnings; one row per tenant, kind, threshold and expiry."""

    __tablename__ = "billing_sent_warnings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(255), nullable=False)
    kind: Mapped[str] = mapped_column(String(20), nullable=False)
    threshold_day: Mapped[int] = mapped_column(Integer, nullable=False)
    expiry: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "kind", "threshold_day", "expiry", name="uq_billing_sent_warning"
        ),
    )
