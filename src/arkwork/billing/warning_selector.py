"""
Expiry warning selection.

Finds trial and premium tenants whose access end sits on a warning
threshold and resolves who should be told about it.

Two matching rules are supported:

- ``exact``: warn only when the days left equal a threshold. Each threshold
  day is visited once by a daily job, but a missed day skips that warning.
- ``catch_up``: warn with the tightest threshold already reached. Combined
  with the sent-warning ledger, a missed day is caught up on the next run
  and no threshold is ever sent twice.
"""

import math
import re
from collections.abc import Iterable
from datetime import datetime, timedelta
from typing import Literal

import structlog

from arkwork.billing.clock import Clock, SystemClock, ensure_utc
from arkwork.billing.exceptions import InvalidThresholdsError
from arkwork.billing.interfaces import (
    AdminEmailResolver,
    SentWarningLedger,
    TenantStore,
    call_with_timeout,
)
from arkwork.billing.models import (
    BillingStatus,
    SentWarningKey,
    Tenant,
    WarningCandidate,
    WarningKind,
)

logger = structlog.get_logger(__name__)

MatchMode = Literal["catch_up", "exact"]

_EMAIL_RE = re.compile(r"^\S+@\S+\.\S+$")
_ONE_DAY = timedelta(days=1)


def days_left(expiry: datetime, now: datetime) -> int:
    """Whole days until ``expiry``, rounded up."""
    return math.ceil((ensure_utc(expiry) - ensure_utc(now)) / _ONE_DAY)


def normalize_thresholds(thresholds: Iterable[int]) -> list[int]:
    values = list(thresholds)
    if not values or any(
        isinstance(t, bool) or not isinstance(t, int) or t <= 0 for t in values
    ):
        raise InvalidThresholdsError(
            "Warning thresholds must be a non-empty list of positive integers",
            thresholds=values,
        )
    return sorted(set(values), reverse=True)


def match_threshold(left: int, thresholds: list[int], mode: MatchMode) -> int | None:
    if left <= 0:
        return None
    if mode == "exact":
        return left if left in thresholds else None
    reached = [t for t in thresholds if t >= left]
    return min(reached) if reached else None


def clean_recipients(emails: Iterable[str | None]) -> list[str]:
    """Trim, lower-case, drop non-addresses and de-duplicate, keeping order."""
    seen: set[str] = set()
    result: list[str] = []
    for raw in emails:
        if not raw:
            continue
        email = raw.strip().lower()
        if not _EMAIL_RE.match(email) or email in seen:
            continue
        seen.add(email)
        result.append(email)
    return result


class WarningSelector:
    """Selects tenants approaching expiry for one warning tick."""

    def __init__(
        self,
        store: TenantStore,
        resolver: AdminEmailResolver,
        clock: Clock | None = None,
        *,
        ledger: SentWarningLedger | None = None,
        match_mode: MatchMode = "catch_up",
        store_timeout_seconds: float | None = None,
    ) -> None:
        self.store = store
        self.resolver = resolver
        self.clock = clock or SystemClock()
        self.ledger = ledger
        self.match_mode = match_mode
        self.store_timeout_seconds = store_timeout_seconds

    async def find_tenants_to_warn(
        self, thresholds: Iterable[int], now: datetime | None = None
    ) -> list[WarningCandidate]:
        """
        Build warning candidates for every trial/active tenant on a threshold.

        Args:
            thresholds: Day counts before expiry, in any order
            now: Evaluation instant, defaults to the clock

        Returns:
            Candidates with a non-empty, owner-first recipient list. A tenant
            whose ledger or recipient lookup fails is logged and skipped.
        """
        levels = normalize_thresholds(thresholds)
        now = ensure_utc(now or self.clock.now())

        tenants = await call_with_timeout(
            self.store.list_trials_and_active(), self.store_timeout_seconds, "list_tenants"
        )
        candidates: list[WarningCandidate] = []
        failed = 0
        for tenant in tenants:
            match = self._match(tenant, levels, now)
            if match is None:
                continue
            kind, expiry, left, threshold = match

            try:
                if await self._already_sent(SentWarningKey(tenant.id, kind, threshold, expiry)):
                    logger.debug(
                        "billing.warning.already_sent",
                        tenant_id=tenant.id,
                        kind=kind.value,
                        threshold=threshold,
                    )
                    continue
                emails = await call_with_timeout(
                    self.resolver.emails_for(tenant.id), self.store_timeout_seconds, "emails_for"
                )
            except Exception as e:
                failed += 1
                logger.error(
                    "billing.warning.tenant_failed",
                    tenant_id=tenant.id,
                    kind=kind.value,
                    error=str(e),
                    exc_info=True,
                )
                continue

            recipients = clean_recipients(emails)
            if not recipients:
                logger.warning(
                    "billing.warning.no_recipients",
                    tenant_id=tenant.id,
                    kind=kind.value,
                )
                continue

            candidates.append(
                WarningCandidate(
                    tenant_id=tenant.id,
                    tenant_name=tenant.display_name,
                    kind=kind,
                    warn_for_date=expiry,
                    days_left=left,
                    threshold=threshold,
                    recipient_addresses=recipients,
                )
            )

        logger.info(
            "billing.warning.selected",
            candidates=len(candidates),
            failed=failed,
            thresholds=levels,
            match_mode=self.match_mode,
        )
        return candidates

    async def _already_sent(self, key: SentWarningKey) -> bool:
        if self.ledger is None:
            return False
        return await call_with_timeout(
            self.ledger.has_sent(key), self.store_timeout_seconds, "has_sent"
        )

    def _match(
        self, tenant: Tenant, levels: list[int], now: datetime
    ) -> tuple[WarningKind, datetime, int, int] | None:
        if tenant.billing_status == BillingStatus.TRIAL:
            kind, expiry = WarningKind.TRIAL, tenant.trial_ends_at
        elif tenant.billing_status == BillingStatus.ACTIVE:
            kind, expiry = WarningKind.PREMIUM, tenant.premium_until
        else:
            return None
        if expiry is None:
            return None

        left = days_left(expiry, now)
        threshold = match_threshold(left, levels, self.match_mode)
        if threshold is None:
            return None
        return kind, expiry, left, threshold
