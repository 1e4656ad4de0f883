#!/usr/bin/env python
"""
CLI management commands for ArkWork billing.
"""

import asyncio
import signal
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

import click

from arkwork.billing.container import BillingServices, build_services
from arkwork.billing.db import dispose_engine, init_db
from arkwork.billing.exceptions import BillingError
from arkwork.billing.logging import setup_logging
from arkwork.billing.settings import settings


@dataclass
class CLIDependencies:
    """Bundle of injectable dependencies used by CLI commands."""

    build_services: Callable[[], BillingServices]
    init_db: Callable[[], Awaitable[None]]
    dispose: Callable[[], Awaitable[None]]
    setup_logging: Callable[[], None]


def _get_cli_dependencies() -> CLIDependencies:
    """Return the default dependency bundle for CLI commands."""
    return CLIDependencies(
        build_services=build_services,
        init_db=init_db,
        dispose=dispose_engine,
        setup_logging=setup_logging,
    )


def _run(deps: CLIDependencies, coro: Awaitable[None]) -> None:
    async def _main() -> None:
        try:
            await coro
        finally:
            await deps.dispose()

    try:
        asyncio.run(_main())
    except BillingError as e:
        raise click.ClickException(f"{e.error_code}: {e.message}") from e


@click.group()
def cli() -> None:
    """ArkWork billing lifecycle CLI."""
    pass


@cli.command("init-db")
def init_database() -> None:
    """Create the billing tables."""
    deps = _get_cli_dependencies()
    click.echo("Initializing database...")
    _run(deps, deps.init_db())
    click.echo("Database initialized successfully!")


@cli.command("run-scheduler")
@click.option(
    "--stop-timeout",
    default=30.0,
    show_default=True,
    help="Seconds to wait for a running tick on shutdown",
)
def run_scheduler(stop_timeout: float) -> None:
    """Run the recompute and warning jobs until interrupted."""
    deps = _get_cli_dependencies()
    deps.setup_logging()

    async def _serve() -> None:
        services = deps.build_services()
        stop_event = asyncio.Event()
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, stop_event.set)

        services.scheduler.start()
        click.echo(
            f"Scheduler running (recompute {settings.billing.recompute_time:%H:%M}, "
            f"warnings {settings.billing.warning_time:%H:%M} {settings.billing.schedule_timezone})"
        )
        try:
            await stop_event.wait()
        finally:
            await services.scheduler.stop(timeout=stop_timeout)
        click.echo("Scheduler stopped")

    _run(deps, _serve())


@cli.command()
def recompute() -> None:
    """Expire every tenant whose access window has passed."""
    deps = _get_cli_dependencies()
    deps.setup_logging()

    async def _recompute() -> None:
        services = deps.build_services()
        result = await services.scheduler.run_recompute_tick()
        click.echo(f"Checked {result.checked}, expired {result.expired}, failed {result.failed}")
        for tenant_id in result.expired_tenant_ids:
            click.echo(f"  expired: {tenant_id}")

    _run(deps, _recompute())


@cli.command("send-warnings")
@click.option("--dry-run", is_flag=True, help="List the warnings without sending them")
def send_warnings(dry_run: bool) -> None:
    """Send expiry warnings for tenants on a threshold day."""
    deps = _get_cli_dependencies()
    deps.setup_logging()

    async def _send() -> None:
        services = deps.build_services()
        if dry_run:
            candidates = await services.selector.find_tenants_to_warn(
                settings.billing.warning_thresholds
            )
            click.echo(f"{len(candidates)} warning(s) due")
            for c in candidates:
                click.echo(
                    f"  {c.tenant_id:20} {c.kind.value:8} {c.days_left}d "
                    f"{c.warn_for_date:%Y-%m-%d} -> {', '.join(c.recipient_addresses)}"
                )
            return

        result = await services.scheduler.run_warning_tick()
        click.echo(f"Candidates {result.candidates}, sent {result.sent}, failed {result.failed}")

    _run(deps, _send())


@cli.command()
@click.argument("tenant_id")
def status(tenant_id: str) -> None:
    """Show the billing status of a tenant."""
    deps = _get_cli_dependencies()

    async def _status() -> None:
        services = deps.build_services()
        summary = await services.engine.get_billing_summary(tenant_id)
        click.echo(f"Tenant:        {summary.tenant_id} {summary.display_name}".rstrip())
        click.echo(f"Status:        {summary.billing_status.value}")
        click.echo(f"Plan:          {summary.current_plan_id or '-'}")
        click.echo(f"Access:        {'yes' if summary.active else 'no'}")
        click.echo(f"Time left:     {summary.time_left}")

    _run(deps, _status())


if __name__ == "__main__":
    cli()
