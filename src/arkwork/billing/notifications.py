"""
Lifecycle notification emails.

Sent by callers after a successful engine operation; the engine itself
never sends mail.
"""

from datetime import datetime

import structlog

from arkwork.billing.email_templates import (
    build_expired_context,
    build_premium_activated_context,
    build_trial_started_context,
    render_template,
)
from arkwork.billing.exceptions import DeliveryFailedError, PlanNotFoundError
from arkwork.billing.interfaces import AdminEmailResolver, Notifier, PlanCatalog
from arkwork.billing.models import Tenant
from arkwork.billing.warning_selector import clean_recipients

logger = structlog.get_logger(__name__)


class LifecycleNotifications:
    """Trial started, premium activated and access ended notices."""

    def __init__(
        self,
        notifier: Notifier,
        resolver: AdminEmailResolver,
        catalog: PlanCatalog,
    ) -> None:
        self.notifier = notifier
        self.resolver = resolver
        self.catalog = catalog

    async def notify_trial_started(self, tenant: Tenant) -> bool:
        if tenant.trial_ends_at is None or tenant.current_plan_id is None:
            return False
        plan = await self.catalog.get_plan(tenant.current_plan_id)
        return await self._send(
            tenant, "trial_started", build_trial_started_context(tenant, plan)
        )

    async def notify_premium_activated(self, tenant: Tenant) -> bool:
        if tenant.premium_until is None:
            return False
        plan = None
        if tenant.current_plan_id:
            try:
                plan = await self.catalog.get_plan(tenant.current_plan_id)
            except PlanNotFoundError:
                plan = None
        return await self._send(
            tenant, "premium_activated", build_premium_activated_context(tenant, plan)
        )

    async def notify_expired(self, tenant: Tenant, ended_at: datetime | None) -> bool:
        return await self._send(
            tenant, "subscription_expired", build_expired_context(tenant, ended_at)
        )

    async def _send(self, tenant: Tenant, template: str, context: dict) -> bool:
        recipients = clean_recipients(await self.resolver.emails_for(tenant.id))
        if not recipients:
            logger.warning("billing.notice.no_recipients", tenant_id=tenant.id, template=template)
            return False

        subject, html, text = render_template(template, context)
        try:
            await self.notifier.send(recipients, subject, html, text)
        except DeliveryFailedError as e:
            logger.error(
                "billing.notice.failed",
                tenant_id=tenant.id,
                template=template,
                error=e.message,
            )
            return False
        logger.info("billing.notice.sent", tenant_id=tenant.id, template=template)
        return True
