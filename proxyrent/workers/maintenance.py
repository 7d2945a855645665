# proxyrent/workers/maintenance.py
"""
Periodic maintenance jobs.

Each job is an async function of ``(session_factory, now)`` so it can run
against any database; the Celery tasks below are thin wrappers that give
every run its own engine and event loop.
"""
import asyncio
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from celery import Task

from proxyrent.core.config import settings
from proxyrent.core.logging import logger
from proxyrent.core.time import utcnow
from proxyrent.db.database import build_engine, make_session_factory
from proxyrent.services.expiry_reaper import run_expiry_sweep
from proxyrent.services.health_checker import ProxyHealthChecker, run_health_sweep
from proxyrent.services.invoice_service import InvoiceService
from proxyrent.services.subscription_manager import SubscriptionManager
from proxyrent.services.usage_aggregator import UsageAggregator
from proxyrent.workers.celery_app import celery_app

SessionFactory = Callable[[], Any]


async def expire_allocations(session_factory: SessionFactory, now: Optional[datetime] = None) -> int:
    """Renew paid-up wallet subscriptions, then reap expired allocations.

    Renewals run first so a lease whose subscription has just been charged
    is extended before the reaper looks at it.
    """
    now = now or utcnow()
    await renew_subscriptions(session_factory, now)
    return await run_expiry_sweep(session_factory, now)


async def finalize_cancellations(session_factory: SessionFactory, now: Optional[datetime] = None) -> int:
    async with session_factory() as session:
        return await SubscriptionManager(session).finalize_due_cancellations(now or utcnow())


async def renew_subscriptions(session_factory: SessionFactory, now: Optional[datetime] = None) -> int:
    async with session_factory() as session:
        return await SubscriptionManager(session).renew_due(now or utcnow())


async def enforce_usage_retention(
    session_factory: SessionFactory,
    now: Optional[datetime] = None,
    window_days: Optional[int] = None,
) -> int:
    async with session_factory() as session:
        return await UsageAggregator(session).enforce_retention(window_days, now=now)


async def archive_invoices(
    session_factory: SessionFactory,
    now: Optional[datetime] = None,
    older_than_days: Optional[int] = None,
) -> int:
    async with session_factory() as session:
        return await InvoiceService(session).archive_settled(older_than_days, now=now)


async def check_proxy_health(
    session_factory: SessionFactory, checker: Optional[ProxyHealthChecker] = None
) -> int:
    return await run_health_sweep(session_factory, checker)


def _run(job: Callable[..., Awaitable[int]], **kwargs: Any) -> int:
    async def runner() -> int:
        engine = build_engine(settings.async_database_url)
        try:
            return await job(make_session_factory(engine), **kwargs)
        finally:
            await engine.dispose()

    return asyncio.run(runner())


class MaintenanceTask(Task):
    """Base class for maintenance tasks"""

    def on_failure(self, exc, task_id, args, kwargs, einfo):
        """Handle task failure"""
        logger.error(f"Maintenance task {self.name} ({task_id}) failed: {exc}", exc_info=True)


@celery_app.task(base=MaintenanceTask, name="expire_allocations")
def expire_allocations_task() -> int:
    return _run(expire_allocations)


@celery_app.task(base=MaintenanceTask, name="finalize_cancellations")
def finalize_cancellations_task() -> int:
    return _run(finalize_cancellations)


@celery_app.task(base=MaintenanceTask, name="renew_subscriptions")
def renew_subscriptions_task() -> int:
    return _run(renew_subscriptions)


@celery_app.task(base=MaintenanceTask, name="enforce_usage_retention")
def enforce_usage_retention_task(window_days: Optional[int] = None) -> int:
    return _run(enforce_usage_retention, window_days=window_days)


@celery_app.task(base=MaintenanceTask, name="archive_invoices")
def archive_invoices_task(older_than_days: Optional[int] = None) -> int:
    return _run(archive_invoices, older_than_days=older_than_days)


@celery_app.task(base=MaintenanceTask, name="check_proxy_health")
def check_proxy_health_task() -> int:
    return _run(check_proxy_health)
