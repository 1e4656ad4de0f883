"""
Tests for SMTP delivery and lifecycle notices.
"""

import smtplib
from datetime import UTC, datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from arkwork.billing.exceptions import DeliveryFailedError
from arkwork.billing.notifications import LifecycleNotifications
from arkwork.billing.notifier import LoggingNotifier, SMTPConfig, SMTPNotifier, get_notifier
from arkwork.billing.settings import Settings

pytestmark = pytest.mark.unit


@pytest.fixture
def smtp_config():
    return SMTPConfig(
        host="smtp.example.com",
        port=587,
        username="user",
        password="pass",
        use_tls=True,
        from_email="billing@arkwork.app",
        from_name="ArkWork Billing",
    )


class TestSMTPNotifier:
    """SMTP transport."""

    @pytest.mark.asyncio
    async def test_send_with_tls_and_login(self, smtp_config):
        notifier = SMTPNotifier(smtp_config)

        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_smtp.return_value = mock_server

            await notifier.send(["owner@acme.com"], "Subject", "<p>Hi</p>", "Hi")

            mock_smtp.assert_called_once_with("smtp.example.com", 587, timeout=30)
            mock_server.starttls.assert_called_once()
            mock_server.login.assert_called_once_with("user", "pass")
            mock_server.send_message.assert_called_once()
            mock_server.quit.assert_called_once()

            message = mock_server.send_message.call_args[0][0]
            assert message["To"] == "owner@acme.com"
            assert message["Subject"] == "Subject"
            assert "ArkWork Billing" in message["From"]

    @pytest.mark.asyncio
    async def test_send_to_several_recipients(self, smtp_config):
        notifier = SMTPNotifier(smtp_config)

        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_smtp.return_value = mock_server

            await notifier.send(["a@acme.com", "b@acme.com"], "Subject", "<p>Hi</p>")

            message = mock_server.send_message.call_args[0][0]
            assert message["To"] == "a@acme.com, b@acme.com"

    @pytest.mark.asyncio
    async def test_ssl_without_login(self):
        notifier = SMTPNotifier(
            SMTPConfig(host="smtp.example.com", port=465, use_ssl=True, use_tls=True)
        )

        with patch("smtplib.SMTP_SSL") as mock_smtp_ssl:
            mock_server = MagicMock()
            mock_smtp_ssl.return_value = mock_server

            await notifier.send(["owner@acme.com"], "Subject", "<p>Hi</p>")

            mock_smtp_ssl.assert_called_once_with("smtp.example.com", 465, timeout=30)
            mock_server.starttls.assert_not_called()
            mock_server.login.assert_not_called()
            mock_server.quit.assert_called_once()

    @pytest.mark.asyncio
    async def test_smtp_error_raises_delivery_failed(self, smtp_config):
        notifier = SMTPNotifier(smtp_config)

        with patch("smtplib.SMTP") as mock_smtp:
            mock_server = MagicMock()
            mock_server.send_message.side_effect = smtplib.SMTPRecipientsRefused({})
            mock_smtp.return_value = mock_server

            with pytest.raises(DeliveryFailedError) as exc_info:
                await notifier.send(["owner@acme.com"], "Subject", "<p>Hi</p>")

            assert exc_info.value.status_code == 502
            assert exc_info.value.context["recipients"] == ["owner@acme.com"]
            mock_server.quit.assert_called_once()

    @pytest.mark.asyncio
    async def test_connection_error_raises_delivery_failed(self, smtp_config):
        notifier = SMTPNotifier(smtp_config)

        with patch("smtplib.SMTP", side_effect=ConnectionRefusedError("refused")):
            with pytest.raises(DeliveryFailedError):
                await notifier.send(["owner@acme.com"], "Subject", "<p>Hi</p>")

    @pytest.mark.asyncio
    async def test_empty_recipients(self, smtp_config):
        with pytest.raises(DeliveryFailedError):
            await SMTPNotifier(smtp_config).send([], "Subject", "<p>Hi</p>")


class TestGetNotifier:
    """Notifier selection from settings."""

    def test_disabled_email_logs_only(self):
        config = Settings(email=Settings.EmailSettings(enabled=False))

        assert isinstance(get_notifier(config), LoggingNotifier)

    def test_enabled_email_uses_smtp(self):
        config = Settings(
            email=Settings.EmailSettings(enabled=True, smtp_host="mail.arkwork.app", smtp_port=2525)
        )

        notifier = get_notifier(config)

        assert isinstance(notifier, SMTPNotifier)
        assert notifier.config.host == "mail.arkwork.app"
        assert notifier.config.port == 2525

    @pytest.mark.asyncio
    async def test_logging_notifier_records(self):
        notifier = LoggingNotifier()

        await notifier.send(["a@acme.com"], "Subject", "<p>Hi</p>")

        assert notifier.sent == [(["a@acme.com"], "Subject")]


class TestLifecycleNotifications:
    """Trial started, activation and expiry notices."""

    @pytest.fixture
    def notices(self, notifier, directory, catalog):
        return LifecycleNotifications(notifier, directory, catalog)

    @pytest.mark.asyncio
    async def test_trial_started(self, engine, notices, notifier, add_admin):
        add_admin("acme", "owner@acme.com")
        tenant = await engine.start_trial("acme", "basic")

        assert await notices.notify_trial_started(tenant) is True

        assert "Basic trial is active until 15 January 2024" in notifier.sent[0]["subject"]

    @pytest.mark.asyncio
    async def test_trial_started_skipped_for_free_tier(self, engine, notices, notifier, add_admin):
        add_admin("acme", "owner@acme.com")
        tenant = await engine.start_trial("acme", "free")

        assert await notices.notify_trial_started(tenant) is False
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_premium_activated(self, engine, notices, notifier, add_admin):
        add_admin("acme", "owner@acme.com")
        tenant = await engine.activate_paid_period("acme", "pro")

        assert await notices.notify_premium_activated(tenant) is True

        assert "01 February 2024" in notifier.sent[0]["subject"]
        assert "Pro" in notifier.sent[0]["text"]

    @pytest.mark.asyncio
    async def test_no_recipients(self, engine, notices, notifier):
        tenant = await engine.activate_paid_period("acme", "pro")

        assert await notices.notify_premium_activated(tenant) is False
        assert notifier.sent == []

    @pytest.mark.asyncio
    async def test_delivery_failure_returns_false(self, engine, directory, catalog, add_admin):
        add_admin("acme", "owner@acme.com")
        failing = MagicMock()
        failing.send = AsyncMock(side_effect=DeliveryFailedError("down"))
        notices = LifecycleNotifications(failing, directory, catalog)
        tenant = await engine.activate_paid_period("acme", "pro")

        assert await notices.notify_expired(tenant, datetime(2024, 2, 1, tzinfo=UTC)) is False
        failing.send.assert_awaited_once()
