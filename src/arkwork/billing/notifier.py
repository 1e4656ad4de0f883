"""
Outbound billing mail.

``SMTPNotifier`` delivers through the standard library SMTP client in a
worker thread so the scheduler loop is never blocked. ``LoggingNotifier``
stands in when email is disabled.
"""

import asyncio
import smtplib
from email.message import EmailMessage
from email.utils import formataddr

import structlog
from pydantic import BaseModel, Field

from arkwork.billing.exceptions import DeliveryFailedError
from arkwork.billing.settings import Settings, settings

logger = structlog.get_logger(__name__)


class SMTPConfig(BaseModel):
    """SMTP transport configuration."""

    host: str = Field("localhost", description="SMTP server host")
    port: int = Field(587, description="SMTP server port")
    username: str = Field("", description="SMTP username")
    password: str = Field("", description="SMTP password")
    use_tls: bool = Field(True, description="Use STARTTLS")
    use_ssl: bool = Field(False, description="Use implicit SSL")
    from_email: str = Field("no-reply@arkwork.app", description="Sender address")
    from_name: str = Field("ArkWork Billing", description="Sender display name")
    timeout: int = Field(30, description="Socket timeout in seconds")

    @classmethod
    def from_settings(cls, config: Settings | None = None) -> "SMTPConfig":
        email = (config or settings).email
        return cls(
            host=email.smtp_host,
            port=email.smtp_port,
            username=email.smtp_username,
            password=email.smtp_password,
            use_tls=email.use_tls,
            use_ssl=email.use_ssl,
            from_email=email.from_address,
            from_name=email.from_name,
            timeout=email.timeout,
        )


class SMTPNotifier:
    """Send billing mail to a recipient list over SMTP."""

    def __init__(self, config: SMTPConfig) -> None:
        self.config = config

    async def send(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> None:
        if not recipients:
            raise DeliveryFailedError("No recipients to deliver to", recipients=recipients)
        message = self._build_message(recipients, subject, html_body, text_body)
        try:
            await asyncio.to_thread(self._deliver, message)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                "billing.mail.failed",
                recipients=recipients,
                subject=subject,
                error=str(e),
            )
            raise DeliveryFailedError(f"SMTP delivery failed: {e}", recipients=recipients) from e

        logger.info("billing.mail.sent", recipients=recipients, subject=subject)

    def _build_message(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
        text_body: str | None,
    ) -> EmailMessage:
        message = EmailMessage()
        message["From"] = formataddr((self.config.from_name, self.config.from_email))
        message["To"] = ", ".join(recipients)
        message["Subject"] = subject
        message.set_content(text_body or "This message requires an HTML capable mail client.")
        message.add_alternative(html_body, subtype="html")
        return message

    def _deliver(self, message: EmailMessage) -> None:
        smtp_cls = smtplib.SMTP_SSL if self.config.use_ssl else smtplib.SMTP
        server = smtp_cls(self.config.host, self.config.port, timeout=self.config.timeout)
        try:
            if self.config.use_tls and not self.config.use_ssl:
                server.starttls()
            if self.config.username:
                server.login(self.config.username, self.config.password)
            server.send_message(message)
        finally:
            server.quit()


class LoggingNotifier:
    """Notifier that only logs, for development and dry runs."""

    def __init__(self) -> None:
        self.sent: list[tuple[list[str], str]] = []

    async def send(
        self,
        recipients: list[str],
        subject: str,
        html_body: str,
        text_body: str | None = None,
    ) -> None:
        self.sent.append((list(recipients), subject))
        logger.info("billing.mail.logged", recipients=recipients, subject=subject)


def get_notifier(config: Settings | None = None) -> SMTPNotifier | LoggingNotifier:
    """Notifier for the configured environment."""
    config = config or settings
    if not config.email.enabled:
        return LoggingNotifier()
    return SMTPNotifier(SMTPConfig.from_settings(config))
