"""Tests for the billing Celery tasks and wiring."""

from datetime import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

pytestmark = pytest.mark.unit


class TestBillingTasks:
    """Task wrappers run one tick and return a summary."""

    @patch("arkwork.billing.tasks._recompute_lapsed", new_callable=AsyncMock)
    def test_recompute_lapsed_task(self, mock_recompute):
        from arkwork.billing.tasks import recompute_lapsed_task

        mock_recompute.return_value = {
            "checked": 10,
            "expired": 2,
            "failed": 0,
            "expired_tenant_ids": ["a", "b"],
            "timestamp": "2024-01-01T00:30:00+00:00",
        }

        result = recompute_lapsed_task()

        assert result["expired"] == 2
        assert result["expired_tenant_ids"] == ["a", "b"]
        mock_recompute.assert_awaited_once()

    @patch("arkwork.billing.tasks._send_expiry_warnings", new_callable=AsyncMock)
    def test_send_expiry_warnings_task(self, mock_send):
        from arkwork.billing.tasks import send_expiry_warnings_task

        mock_send.return_value = {
            "candidates": 0,
            "sent": 0,
            "failed": 0,
            "timestamp": "2024-01-01T09:00:00+00:00",
        }

        result = send_expiry_warnings_task()

        assert result["candidates"] == 0
        mock_send.assert_awaited_once()

    def test_task_names(self):
        from arkwork.billing.tasks import recompute_lapsed_task, send_expiry_warnings_task

        assert recompute_lapsed_task.name == "billing.recompute_lapsed"
        assert send_expiry_warnings_task.name == "billing.send_expiry_warnings"

    @pytest.mark.asyncio
    async def test_recompute_summary(self):
        from arkwork.billing import tasks
        from arkwork.billing.recompute import RecomputeResult

        services = MagicMock()
        services.scheduler.run_recompute_tick = AsyncMock(
            return_value=RecomputeResult(checked=3, expired=0, failed=0)
        )

        with (
            patch.object(tasks, "build_services", return_value=services),
            patch.object(tasks, "dispose_engine", new_callable=AsyncMock) as dispose,
        ):
            result = await tasks._recompute_lapsed()

        assert result["checked"] == 3
        assert result["expired_tenant_ids"] == []
        dispose.assert_awaited_once()


class TestPeriodicTasks:
    def test_beat_entries_follow_settings(self):
        from arkwork.billing.celery_app import setup_periodic_tasks
        from arkwork.billing.settings import settings

        sender = MagicMock()

        with (
            patch.object(settings.billing, "recompute_time", time(1, 15)),
            patch.object(settings.billing, "warning_time", time(8, 0)),
        ):
            setup_periodic_tasks(sender)

        names = [c.kwargs["name"] for c in sender.add_periodic_task.call_args_list]
        assert names == ["billing-recompute-lapsed", "billing-send-expiry-warnings"]
        recompute_schedule = sender.add_periodic_task.call_args_list[0].args[0]
        assert recompute_schedule.hour == {1}
        assert recompute_schedule.minute == {15}


class TestContainer:
    def test_build_services_wires_settings(self, sql_session_factory, notifier):
        from arkwork.billing.container import build_services
        from arkwork.billing.settings import Settings

        config = Settings(
            billing=Settings.BillingSettings(
                warning_thresholds=[5, 2],
                warning_match="exact",
                max_concurrent_sends=8,
                notify_on_expiry=True,
            )
        )

        services = build_services(config, session_factory=sql_session_factory, notifier=notifier)

        assert services.scheduler.thresholds == [5, 2]
        assert services.scheduler.max_concurrent_sends == 8
        assert services.scheduler.lifecycle_notifications is services.notifications
        assert services.selector.match_mode == "exact"
        assert services.selector.ledger is services.ledger
        assert services.engine.store is services.store
        assert services.selector.store_timeout_seconds == config.billing.store_timeout_seconds
        assert services.recompute.store_timeout_seconds == config.billing.store_timeout_seconds
