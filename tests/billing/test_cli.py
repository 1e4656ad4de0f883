"""
Tests for the arkwork-billing CLI.
"""

from datetime import UTC, datetime
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from click.testing import CliRunner

from arkwork.billing import cli as cli_module
from arkwork.billing.cli import CLIDependencies
from arkwork.billing.exceptions import TenantNotFoundError
from arkwork.billing.models import BillingStatus, BillingSummary, WarningCandidate, WarningKind
from arkwork.billing.recompute import RecomputeResult
from arkwork.billing.scheduler import WarningTickResult

pytestmark = pytest.mark.unit


def build_cli_dependencies(services=None) -> CLIDependencies:
    return CLIDependencies(
        build_services=MagicMock(return_value=services or MagicMock()),
        init_db=AsyncMock(),
        dispose=AsyncMock(),
        setup_logging=MagicMock(),
    )


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def use_deps(monkeypatch):
    def _use(deps):
        monkeypatch.setattr(cli_module, "_get_cli_dependencies", lambda: deps)
        return deps

    return _use


class TestCommands:
    def test_init_db(self, runner, use_deps):
        deps = use_deps(build_cli_dependencies())

        result = runner.invoke(cli_module.cli, ["init-db"])

        assert result.exit_code == 0
        assert "Database initialized successfully!" in result.output
        deps.init_db.assert_awaited_once()
        deps.dispose.assert_awaited_once()

    def test_recompute(self, runner, use_deps):
        scheduler = MagicMock()
        scheduler.run_recompute_tick = AsyncMock(
            return_value=RecomputeResult(checked=4, expired=0, failed=1)
        )
        deps = use_deps(build_cli_dependencies(SimpleNamespace(scheduler=scheduler)))

        result = runner.invoke(cli_module.cli, ["recompute"])

        assert result.exit_code == 0
        assert "Checked 4, expired 0, failed 1" in result.output
        deps.setup_logging.assert_called_once()

    def test_send_warnings(self, runner, use_deps):
        scheduler = MagicMock()
        scheduler.run_warning_tick = AsyncMock(
            return_value=WarningTickResult(candidates=3, sent=2, failed=1)
        )
        use_deps(build_cli_dependencies(SimpleNamespace(scheduler=scheduler)))

        result = runner.invoke(cli_module.cli, ["send-warnings"])

        assert result.exit_code == 0
        assert "Candidates 3, sent 2, failed 1" in result.output

    def test_send_warnings_dry_run(self, runner, use_deps):
        selector = MagicMock()
        selector.find_tenants_to_warn = AsyncMock(
            return_value=[
                WarningCandidate(
                    tenant_id="acme",
                    kind=WarningKind.TRIAL,
                    warn_for_date=datetime(2024, 1, 8, tzinfo=UTC),
                    days_left=3,
                    threshold=3,
                    recipient_addresses=["owner@acme.com"],
                )
            ]
        )
        scheduler = MagicMock()
        scheduler.run_warning_tick = AsyncMock()
        use_deps(build_cli_dependencies(SimpleNamespace(selector=selector, scheduler=scheduler)))

        result = runner.invoke(cli_module.cli, ["send-warnings", "--dry-run"])

        assert result.exit_code == 0
        assert "1 warning(s) due" in result.output
        assert "2024-01-08 -> owner@acme.com" in result.output
        scheduler.run_warning_tick.assert_not_called()

    def test_status(self, runner, use_deps):
        engine = MagicMock()
        engine.get_billing_summary = AsyncMock(
            return_value=BillingSummary(
                tenant_id="acme",
                display_name="Acme",
                billing_status=BillingStatus.TRIAL,
                current_plan_id="basic",
                trial_ends_at=datetime(2024, 1, 15, tzinfo=UTC),
                premium_until=datetime(2024, 1, 15, tzinfo=UTC),
                free_tier=False,
                active=True,
                time_left="3 days",
            )
        )
        use_deps(build_cli_dependencies(SimpleNamespace(engine=engine)))

        result = runner.invoke(cli_module.cli, ["status", "acme"])

        assert result.exit_code == 0
        assert "trial" in result.output
        assert "3 days" in result.output
        engine.get_billing_summary.assert_awaited_once_with("acme")

    def test_status_unknown_tenant(self, runner, use_deps):
        engine = MagicMock()
        engine.get_billing_summary = AsyncMock(
            side_effect=TenantNotFoundError("Tenant ghost not found", tenant_id="ghost")
        )
        deps = use_deps(build_cli_dependencies(SimpleNamespace(engine=engine)))

        result = runner.invoke(cli_module.cli, ["status", "ghost"])

        assert result.exit_code == 1
        assert "TENANT_NOT_FOUND" in result.output
        deps.dispose.assert_awaited_once()

    def test_default_dependencies(self):
        deps = cli_module._get_cli_dependencies()

        assert deps.build_services is cli_module.build_services
        assert deps.init_db is cli_module.init_db
