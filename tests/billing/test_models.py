"""
Tests for billing models, exceptions and settings.
"""

from datetime import UTC, datetime, time, timedelta, timezone

import pytest
from pydantic import ValidationError

from arkwork.billing.exceptions import (
    BillingError,
    ConcurrentUpdateError,
    InvalidTransitionError,
    PlanNotFoundError,
    StoreError,
    StoreUnavailableError,
)
from arkwork.billing.models import (
    BillingInterval,
    BillingStatus,
    Plan,
    SentWarningKey,
    Tenant,
    WarningCandidate,
    WarningKind,
)
from arkwork.billing.settings import Settings

pytestmark = pytest.mark.unit

JAN_1 = datetime(2024, 1, 1, tzinfo=UTC)


class TestTenantInvariants:
    """Tenant records reject inconsistent billing states."""

    def test_default_tenant(self):
        tenant = Tenant(id="t1")

        assert tenant.billing_status == BillingStatus.NONE
        assert tenant.version == 0
        assert tenant.access_ends_at() is None

    def test_trial_fields_set_together(self):
        with pytest.raises(ValidationError):
            Tenant(id="t1", trial_started_at=JAN_1)

    def test_trial_requires_plan(self):
        with pytest.raises(ValidationError):
            Tenant(
                id="t1",
                billing_status=BillingStatus.TRIAL,
                trial_started_at=JAN_1,
                trial_ends_at=JAN_1 + timedelta(days=7),
            )

    def test_active_requires_premium_until_unless_free(self):
        with pytest.raises(ValidationError):
            Tenant(id="t1", billing_status=BillingStatus.ACTIVE, current_plan_id="pro")

        tenant = Tenant(
            id="t1", billing_status=BillingStatus.ACTIVE, current_plan_id="free", free_tier=True
        )
        assert tenant.free_tier

    def test_active_rejects_trial_window(self):
        with pytest.raises(ValidationError):
            Tenant(
                id="t1",
                billing_status=BillingStatus.ACTIVE,
                current_plan_id="pro",
                premium_until=JAN_1,
                trial_started_at=JAN_1,
                trial_ends_at=JAN_1,
            )

    def test_past_due_clears_premium(self):
        with pytest.raises(ValidationError):
            Tenant(id="t1", billing_status=BillingStatus.PAST_DUE, premium_until=JAN_1)

    def test_free_tier_only_when_active(self):
        with pytest.raises(ValidationError):
            Tenant(id="t1", billing_status=BillingStatus.NONE, free_tier=True)

    def test_naive_timestamps_are_utc(self):
        tenant = Tenant(
            id="t1",
            billing_status=BillingStatus.ACTIVE,
            current_plan_id="pro",
            premium_until=datetime(2024, 2, 1),
        )

        assert tenant.premium_until == datetime(2024, 2, 1, tzinfo=UTC)

    def test_aware_timestamps_are_converted(self):
        wib = timezone(timedelta(hours=7))
        tenant = Tenant(
            id="t1",
            billing_status=BillingStatus.ACTIVE,
            current_plan_id="pro",
            premium_until=datetime(2024, 2, 1, 7, 0, tzinfo=wib),
        )

        assert tenant.premium_until == datetime(2024, 2, 1, tzinfo=UTC)
        assert tenant.premium_until.tzinfo == UTC

    def test_with_changes_validates(self):
        tenant = Tenant(id="t1")

        with pytest.raises(ValidationError):
            tenant.with_changes({"billing_status": BillingStatus.TRIAL})

        updated = tenant.with_changes({"display_name": "Acme"})
        assert updated.display_name == "Acme"
        assert tenant.display_name == ""

    def test_access_ends_at_follows_status(self):
        trial = Tenant(
            id="t1",
            billing_status=BillingStatus.TRIAL,
            current_plan_id="basic",
            trial_started_at=JAN_1,
            trial_ends_at=JAN_1 + timedelta(days=7),
            premium_until=JAN_1 + timedelta(days=30),
        )

        assert trial.access_ends_at() == JAN_1 + timedelta(days=7)


class TestPlanAndCandidates:
    def test_plan_defaults(self):
        plan = Plan(id="free")

        assert plan.is_free
        assert plan.interval == BillingInterval.MONTH

    def test_plan_rejects_negative_values(self):
        with pytest.raises(ValidationError):
            Plan(id="bad", trial_days=-1)
        with pytest.raises(ValidationError):
            Plan(id="bad", amount=-100)

    def test_candidate_requires_recipients(self):
        with pytest.raises(ValidationError):
            WarningCandidate(
                tenant_id="t1",
                kind=WarningKind.TRIAL,
                warn_for_date=JAN_1,
                days_left=3,
                threshold=3,
                recipient_addresses=[],
            )

    def test_candidate_key(self):
        candidate = WarningCandidate(
            tenant_id="t1",
            kind=WarningKind.PREMIUM,
            warn_for_date=JAN_1,
            days_left=2,
            threshold=3,
            recipient_addresses=["a@acme.com"],
        )

        assert candidate.key == SentWarningKey("t1", WarningKind.PREMIUM, 3, JAN_1)


class TestExceptions:
    def test_to_dict(self):
        error = PlanNotFoundError("Plan gold not found", plan_id="gold")

        assert error.to_dict() == {
            "error_code": "PLAN_NOT_FOUND",
            "message": "Plan gold not found",
            "status_code": 404,
            "context": {"plan_id": "gold"},
            "recovery_hint": "Verify the plan ID and ensure it exists in the plan catalog",
        }

    def test_hierarchy(self):
        assert issubclass(StoreUnavailableError, StoreError)
        assert issubclass(ConcurrentUpdateError, StoreError)
        assert issubclass(StoreError, BillingError)

    def test_transition_context(self):
        error = InvalidTransitionError("nope", current_state="trial", requested_event="start_trial")

        assert error.status_code == 409
        assert error.context == {"current_state": "trial", "requested_event": "start_trial"}


class TestSettings:
    def test_billing_defaults(self):
        billing = Settings.BillingSettings()

        assert billing.warning_thresholds == [7, 3, 1]
        assert billing.warning_match == "catch_up"
        assert billing.recompute_time == time(0, 30)
        assert billing.warning_time == time(9, 0)

    def test_thresholds_are_normalized(self):
        billing = Settings.BillingSettings(warning_thresholds=[1, 14, 7, 7])

        assert billing.warning_thresholds == [14, 7, 1]

    @pytest.mark.parametrize("bad", [[], [0], [3, -2]])
    def test_invalid_thresholds(self, bad):
        with pytest.raises(ValidationError):
            Settings.BillingSettings(warning_thresholds=bad)

    def test_clock_time_parsing(self):
        billing = Settings.BillingSettings(recompute_time="01:15", warning_time="08:05")

        assert billing.recompute_time == time(1, 15)
        assert billing.warning_time == time(8, 5)

    def test_malformed_clock_time(self):
        with pytest.raises(ValidationError):
            Settings.BillingSettings(warning_time="nine")

    def test_nested_env_override(self, monkeypatch):
        monkeypatch.setenv("BILLING__WARNING_TIME", "07:45")
        monkeypatch.setenv("BILLING__WARNING_MATCH", "exact")

        config = Settings()

        assert config.billing.warning_time == time(7, 45)
        assert config.billing.warning_match == "exact"

    def test_testing_flag(self):
        assert Settings().is_testing
