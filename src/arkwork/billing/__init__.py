"""
Billing lifecycle module.

Provides the employer account billing lifecycle:
- Trial activation and plan selection
- Paid period activation and renewal
- Expiry of lapsed tenants
- Daily expiry warnings to tenant admins

Storage and mail transport are injected through the protocols in
``arkwork.billing.interfaces``.
"""

from arkwork.billing.clock import Clock, FixedClock, SystemClock
from arkwork.billing.exceptions import (
    BillingConfigurationError,
    BillingError,
    ConcurrentUpdateError,
    DeliveryFailedError,
    InvalidTenantStateError,
    InvalidThresholdsError,
    InvalidTransitionError,
    PlanNotFoundError,
    StoreError,
    StoreUnavailableError,
    TenantNotFoundError,
)
from arkwork.billing.lifecycle import (
    BillingLifecycleEngine,
    add_interval,
    has_access,
    left_days_text,
)
from arkwork.billing.models import (
    BillingInterval,
    BillingPeriod,
    BillingStatus,
    BillingSummary,
    Plan,
    Tenant,
    WarningCandidate,
    WarningKind,
)
from arkwork.billing.recompute import RecomputePass, RecomputeResult
from arkwork.billing.scheduler import BillingScheduler, WarningTickResult
from arkwork.billing.warning_selector import WarningSelector

__all__ = [
    # Engine
    "BillingLifecycleEngine",
    "has_access",
    "add_interval",
    "left_days_text",
    # Jobs
    "RecomputePass",
    "RecomputeResult",
    "WarningSelector",
    "BillingScheduler",
    "WarningTickResult",
    # Models
    "BillingStatus",
    "BillingInterval",
    "BillingPeriod",
    "BillingSummary",
    "Plan",
    "Tenant",
    "WarningCandidate",
    "WarningKind",
    # Time
    "Clock",
    "SystemClock",
    "FixedClock",
    # Exceptions
    "BillingError",
    "PlanNotFoundError",
    "TenantNotFoundError",
    "InvalidTransitionError",
    "InvalidTenantStateError",
    "StoreError",
    "StoreUnavailableError",
    "ConcurrentUpdateError",
    "DeliveryFailedError",
    "InvalidThresholdsError",
    "BillingConfigurationError",
]
