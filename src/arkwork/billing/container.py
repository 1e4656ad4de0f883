"""
Service wiring.

Builds the SQL-backed collaborators, the lifecycle engine, the warning
selector and the scheduler from settings. Used by the CLI and the Celery
tasks; tests build the same objects by hand over the in-memory stores.
"""

from dataclasses import dataclass

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from arkwork.billing.clock import Clock, SystemClock
from arkwork.billing.db import get_session_factory
from arkwork.billing.interfaces import Notifier
from arkwork.billing.lifecycle import BillingLifecycleEngine
from arkwork.billing.notifications import LifecycleNotifications
from arkwork.billing.notifier import get_notifier
from arkwork.billing.recompute import RecomputePass
from arkwork.billing.scheduler import BillingScheduler
from arkwork.billing.settings import Settings, settings
from arkwork.billing.sql_store import (
    SQLAdminEmailResolver,
    SQLPlanCatalog,
    SQLSentWarningLedger,
    SQLTenantStore,
)
from arkwork.billing.warning_selector import WarningSelector


@dataclass
class BillingServices:
    store: SQLTenantStore
    catalog: SQLPlanCatalog
    resolver: SQLAdminEmailResolver
    ledger: SQLSentWarningLedger
    notifier: Notifier
    engine: BillingLifecycleEngine
    selector: WarningSelector
    recompute: RecomputePass
    notifications: LifecycleNotifications
    scheduler: BillingScheduler


def build_services(
    config: Settings | None = None,
    *,
    session_factory: async_sessionmaker[AsyncSession] | None = None,
    notifier: Notifier | None = None,
    clock: Clock | None = None,
) -> BillingServices:
    config = config or settings
    billing = config.billing
    session_factory = session_factory or get_session_factory()
    notifier = notifier or get_notifier(config)
    clock = clock or SystemClock()

    store = SQLTenantStore(session_factory)
    catalog = SQLPlanCatalog(session_factory)
    resolver = SQLAdminEmailResolver(session_factory)
    ledger = SQLSentWarningLedger(session_factory)

    engine = BillingLifecycleEngine(
        store,
        catalog,
        clock,
        auto_provision_tenants=billing.auto_provision_tenants,
        allow_unknown_plan_fallback=billing.allow_unknown_plan_fallback,
        max_write_attempts=billing.max_write_attempts,
    )
    selector = WarningSelector(
        store,
        resolver,
        clock,
        ledger=ledger,
        match_mode=billing.warning_match,
        store_timeout_seconds=billing.store_timeout_seconds,
    )
    recompute = RecomputePass(
        engine, store, clock, store_timeout_seconds=billing.store_timeout_seconds
    )
    notifications = LifecycleNotifications(notifier, resolver, catalog)

    scheduler = BillingScheduler(
        recompute,
        selector,
        notifier,
        clock,
        thresholds=billing.warning_thresholds,
        recompute_time=billing.recompute_time,
        warning_time=billing.warning_time,
        timezone=billing.schedule_timezone,
        ledger=ledger,
        lifecycle_notifications=notifications if billing.notify_on_expiry else None,
        max_concurrent_sends=billing.max_concurrent_sends,
        notifier_timeout_seconds=billing.notifier_timeout_seconds,
    )

    return BillingServices(
        store=store,
        catalog=catalog,
        resolver=resolver,
        ledger=ledger,
        notifier=notifier,
        engine=engine,
        selector=selector,
        recompute=recompute,
        notifications=notifications,
        scheduler=scheduler,
    )
