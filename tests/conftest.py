"""
Global pytest configuration and fixtures for ArkWork billing tests.
"""

import os
from datetime import UTC, datetime

# Settings are read once at import time; point them at test values first.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("TESTING", "true")
os.environ.setdefault("EMAIL__ENABLED", "false")
os.environ.setdefault("OBSERVABILITY__LOG_FORMAT", "console")
os.environ.setdefault("DATABASE__URL", "sqlite+aiosqlite:///./pytest_billing.sqlite")
# Tests must not reach a real broker
os.environ.setdefault("CELERY__BROKER_URL", "memory://")
os.environ.setdefault("CELERY__RESULT_BACKEND", "cache+memory://")

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from arkwork.billing.clock import FixedClock  # noqa: E402
from arkwork.billing.lifecycle import BillingLifecycleEngine  # noqa: E402
from arkwork.billing.memory_store import (  # noqa: E402
    InMemoryAdminDirectory,
    InMemoryPlanCatalog,
    InMemorySentWarningLedger,
    InMemoryTenantStore,
)
from arkwork.billing.models import AdminUser, BillingInterval, Plan  # noqa: E402
from arkwork.billing.warning_selector import WarningSelector  # noqa: E402


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow running tests")


class RecordingNotifier:
    """Notifier double that records every send and can fail for chosen tenants."""

    def __init__(self):
        self.sent: list[dict] = []
        self.fail_for: set[str] = set()

    async def send(self, recipients, subject, html_body, text_body=None):
        from arkwork.billing.exceptions import DeliveryFailedError

        if any(r in self.fail_for for r in recipients):
            raise DeliveryFailedError("smtp rejected", recipients=recipients)
        self.sent.append(
            {
                "recipients": list(recipients),
                "subject": subject,
                "html": html_body,
                "text": text_body,
            }
        )


@pytest.fixture
def start_time():
    return datetime(2024, 1, 1, 0, 0, tzinfo=UTC)


@pytest.fixture
def clock(start_time):
    return FixedClock(start_time)


@pytest.fixture
def plans():
    return [
        Plan(id="free", name="Free", trial_days=0, amount=0, interval=BillingInterval.MONTH),
        Plan(id="basic", name="Basic", trial_days=14, amount=99000, interval=BillingInterval.MONTH),
        Plan(id="pro", name="Pro", trial_days=0, amount=199000, interval=BillingInterval.MONTH),
        Plan(
            id="pro_yearly",
            name="Pro Yearly",
            trial_days=0,
            amount=1990000,
            interval=BillingInterval.YEAR,
        ),
    ]


@pytest.fixture
def catalog(plans):
    return InMemoryPlanCatalog(plans)


@pytest.fixture
def store():
    return InMemoryTenantStore()


@pytest.fixture
def directory():
    return InMemoryAdminDirectory()


@pytest.fixture
def ledger():
    return InMemorySentWarningLedger()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def engine(store, catalog, clock):
    return BillingLifecycleEngine(store, catalog, clock)


@pytest.fixture
def selector(store, directory, clock, ledger):
    return WarningSelector(store, directory, clock, ledger=ledger, match_mode="catch_up")


@pytest.fixture
def add_admin(directory, start_time):
    """Register an admin for a tenant."""

    def _add(tenant_id, email, *, is_owner=False, user_id=None, created_at=None):
        directory.add(
            AdminUser(
                id=user_id or f"{tenant_id}-{email}",
                tenant_id=tenant_id,
                email=email,
                is_owner=is_owner,
                created_at=created_at or start_time,
            )
        )

    return _add


@pytest_asyncio.fixture
async def sql_session_factory(tmp_path):
    """Session factory over a fresh SQLite file with all billing tables."""
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

    from arkwork.billing.db import init_db

    db_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'billing.sqlite'}")
    await init_db(db_engine)
    factory = async_sessionmaker(bind=db_engine, class_=AsyncSession, expire_on_commit=False)
    try:
        yield factory
    finally:
        await db_engine.dispose()
