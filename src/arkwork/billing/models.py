"""
Billing lifecycle domain models.

Explicit records for plans, tenant billing state and derived warning
candidates. Tenant invariants are validated whenever a record is built, so
a store can never persist a half-consistent billing state.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Any, NamedTuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from arkwork.billing.clock import ensure_utc


class BillingStatus(str, Enum):
    """Tenant billing status."""

    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    PAST_DUE = "past_due"


class BillingInterval(str, Enum):
    """Plan billing interval."""

    MONTH = "month"
    YEAR = "year"


class WarningKind(str, Enum):
    """Which access window a warning is about."""

    TRIAL = "trial"
    PREMIUM = "premium"


class Plan(BaseModel):
    """Plan catalog entry (read-only for the engine)."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    id: str = Field(description="Plan identifier")
    name: str = Field("", description="Display name")
    trial_days: int = Field(0, ge=0, description="Trial length in days")
    amount: int = Field(0, ge=0, description="Price in the smallest currency unit")
    interval: BillingInterval = Field(BillingInterval.MONTH, description="Billing interval")

    @property
    def is_free(self) -> bool:
        return self.amount == 0


class Tenant(BaseModel):
    """Employer account billing record."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Tenant identifier")
    display_name: str = Field("", description="Company display name used in emails")
    billing_status: BillingStatus = Field(BillingStatus.NONE)
    current_plan_id: str | None = None
    trial_started_at: datetime | None = None
    trial_ends_at: datetime | None = None
    premium_until: datetime | None = None
    free_tier: bool = Field(False, description="Perpetual free plan with no expiry")
    version: int = Field(0, ge=0, description="Optimistic concurrency counter")

    @field_validator("trial_started_at", "trial_ends_at", "premium_until")
    @classmethod
    def _utc(cls, v: datetime | None) -> datetime | None:
        return ensure_utc(v) if v is not None else None

    @model_validator(mode="after")
    def _check_invariants(self) -> "Tenant":
        if (self.trial_started_at is None) != (self.trial_ends_at is None):
            raise ValueError("trial_started_at and trial_ends_at must be set together")

        status = self.billing_status
        if status == BillingStatus.TRIAL:
            if self.current_plan_id is None or self.trial_ends_at is None:
                raise ValueError("trial tenants need a plan and trial_ends_at")
        elif status == BillingStatus.ACTIVE:
            if self.current_plan_id is None:
                raise ValueError("active tenants need a plan")
            if self.trial_ends_at is not None:
                raise ValueError("active tenants must not carry a trial window")
            if self.premium_until is None and not self.free_tier:
                raise ValueError("active tenants need premium_until unless on the free tier")
        elif status == BillingStatus.PAST_DUE:
            if self.premium_until is not None:
                raise ValueError("past_due tenants must have premium_until cleared")

        if self.free_tier and (
            status != BillingStatus.ACTIVE or self.premium_until is not None
        ):
            raise ValueError("free tier applies only to active tenants without expiry")
        return self

    def access_ends_at(self) -> datetime | None:
        """Authoritative end of access, selected by billing status."""
        if self.billing_status == BillingStatus.TRIAL:
            return self.trial_ends_at
        if self.billing_status == BillingStatus.ACTIVE:
            return self.premium_until
        return None

    def with_changes(self, changes: dict[str, Any]) -> "Tenant":
        """Return a validated copy with ``changes`` applied."""
        data = self.model_dump()
        data.update(changes)
        return Tenant.model_validate(data)


class BillingPeriod(BaseModel):
    """One paid access window, kept as history."""

    model_config = ConfigDict(from_attributes=True)

    tenant_id: str
    plan_id: str | None
    period_start: datetime
    period_end: datetime
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))

    @field_validator("period_start", "period_end", "created_at")
    @classmethod
    def _utc(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class AdminUser(BaseModel):
    """Employer admin account that receives billing mail."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    tenant_id: str
    email: str | None = None
    is_owner: bool = False
    created_at: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SentWarningKey(NamedTuple):
    """Ledger key: one warning per tenant, kind, threshold and expiry."""

    tenant_id: str
    kind: WarningKind
    threshold_day: int
    expiry: datetime


class WarningCandidate(BaseModel):
    """A tenant/threshold match for one warning tick. Never persisted."""

    tenant_id: str
    tenant_name: str = ""
    kind: WarningKind
    warn_for_date: datetime
    days_left: int
    threshold: int
    recipient_addresses: list[str] = Field(min_length=1)

    @property
    def key(self) -> SentWarningKey:
        return SentWarningKey(self.tenant_id, self.kind, self.threshold, self.warn_for_date)


class BillingSummary(BaseModel):
    """Status snapshot for dashboards and the ops CLI."""

    tenant_id: str
    display_name: str
    billing_status: BillingStatus
    current_plan_id: str | None
    trial_ends_at: datetime | None
    premium_until: datetime | None
    free_tier: bool
    active: bool
    time_left: str
