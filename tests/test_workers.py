"""
Tests for periodic maintenance jobs

Jobs open their own sessions from a factory, so the shared test session
is closed before each run and read again afterwards.
"""
import httpx
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.time import utcnow
from proxyrent.db.models.proxy import Proxy
from proxyrent.services.allocation_manager import AllocationManager
from proxyrent.services.health_checker import ProxyHealthChecker, proxy_transport
from proxyrent.services.invoice_service import InvoiceService
from proxyrent.services.resource_pool import ResourcePool
from proxyrent.services.subscription_manager import SubscriptionManager
from proxyrent.services.usage_aggregator import UsageAggregator, UsageScope
from proxyrent.workers import maintenance
from proxyrent.workers.celery_app import celery_app


@pytest.mark.asyncio
class TestMaintenanceJobs:
    """Test suite for the jobs behind the Celery beat schedule"""

    async def test_expire_allocations_renews_before_reaping(
        self,
        db_session: AsyncSession,
        session_factory,
        funded_tenant_id: str,
        proxy_id: int,
        second_proxy_id: int,
    ):
        """
        Test: Expiry run after both leases passed their end date

        Expected:
        - The wallet subscription is renewed and its lease extended
        - The plain lease is expired and its proxy freed
        """
        start = datetime(2024, 1, 1)
        subscribed = await SubscriptionManager(db_session).subscribe_to_proxy(
            funded_tenant_id, proxy_id, Decimal("40.00"), "wallet", now=start
        )
        plain = await AllocationManager(db_session).allocate(
            funded_tenant_id, second_proxy_id, Decimal("30.00"), now=start
        )
        subscribed_id, plain_id = subscribed.allocation.id, plain.id
        await db_session.close()

        expired = await maintenance.expire_allocations(session_factory, now=datetime(2024, 2, 1))

        assert expired == 1
        allocations = AllocationManager(db_session)
        assert (await allocations.get(subscribed_id)).status == "active"
        assert (await allocations.get(subscribed_id)).ends_at == datetime(2024, 3, 1)
        assert (await allocations.get(plain_id)).status == "expired"
        assert (await allocations.pool.get_proxy(second_proxy_id)).status == "available"

    async def test_finalize_cancellations(
        self, db_session: AsyncSession, session_factory, funded_tenant_id: str, proxy_id: int
    ):
        manager = SubscriptionManager(db_session)
        result = await manager.subscribe_to_proxy(
            funded_tenant_id, proxy_id, Decimal("49.00"), "wallet", now=datetime(2024, 1, 1)
        )
        subscription_id = result.subscription.id
        await manager.cancel(subscription_id, at_period_end=True)
        await db_session.close()

        assert await maintenance.finalize_cancellations(session_factory, now=datetime(2024, 2, 1)) == 1
        assert (await SubscriptionManager(db_session).get(subscription_id)).status == "canceled"

    async def test_renew_subscriptions(
        self, db_session: AsyncSession, session_factory, funded_tenant_id: str
    ):
        await SubscriptionManager(db_session).create_subscription(
            funded_tenant_id, Decimal("10.00"), "wallet", now=datetime(2024, 1, 1)
        )
        await db_session.close()

        assert await maintenance.renew_subscriptions(session_factory, now=datetime(2024, 2, 1)) == 1
        assert await SubscriptionManager(db_session).ledger.balance(funded_tenant_id) == Decimal("80.00")

    async def test_enforce_usage_retention(
        self, db_session: AsyncSession, session_factory, tenant_id: str, proxy_id: int
    ):
        now = datetime(2024, 6, 1)
        usage = UsageAggregator(db_session)
        await usage.record(proxy_id, tenant_id, 1, 1, ts=now - timedelta(days=200))
        await usage.record(proxy_id, tenant_id, 1, 1, ts=now - timedelta(days=2))
        await db_session.close()

        assert await maintenance.enforce_usage_retention(session_factory, now=now, window_days=90) == 1
        points = await UsageAggregator(db_session).series(UsageScope.for_tenant(tenant_id), None, "day")
        assert len(points) == 1

    async def test_archive_invoices(self, db_session: AsyncSession, session_factory, tenant_id: str):
        invoices = InvoiceService(db_session)
        invoice = await invoices.create_invoice(tenant_id, Decimal("10.00"))
        await invoices.cancel(invoice.id)
        await db_session.close()

        archived = await maintenance.archive_invoices(
            session_factory, now=utcnow() + timedelta(days=400), older_than_days=365
        )

        assert archived == 1
        assert await InvoiceService(db_session).list_for_tenant(tenant_id) == []

    async def test_check_proxy_health(
        self, db_session: AsyncSession, session_factory, proxy_id: int, second_proxy_id: int
    ):
        """
        Test: Health sweep over one reachable, one unreachable and one disabled proxy

        Expected:
        - Both enabled proxies are checked and stamped
        - The unreachable idle proxy goes to maintenance
        - The disabled proxy is skipped
        """
        pool = ResourcePool(db_session)
        disabled = await pool.create_proxy("10.0.0.3", 8080)
        disabled_id = disabled.id
        await pool.mark_disabled(disabled_id)
        await db_session.close()

        def transport_factory(proxy: Proxy) -> httpx.AsyncBaseTransport:
            reachable = proxy.ip_address == "10.0.0.1"

            def handler(request: httpx.Request) -> httpx.Response:
                if not reachable:
                    raise httpx.ConnectError("connection refused", request=request)
                return httpx.Response(204)

            return httpx.MockTransport(handler)

        checker = ProxyHealthChecker(check_url="http://health.test/generate_204", transport_factory=transport_factory)

        assert await maintenance.check_proxy_health(session_factory, checker) == 2

        pool = ResourcePool(db_session)
        healthy = await pool.get_proxy(proxy_id)
        assert healthy.status == "available"
        assert healthy.last_health_check is not None
        assert (await pool.get_proxy(second_proxy_id)).status == "maintenance"
        assert (await pool.get_proxy(disabled_id)).last_health_check is None


def test_proxy_transport_routes_through_proxy():
    proxy = Proxy(ip_address="10.0.0.9", port=3128, username="user", password="secret")

    assert isinstance(proxy_transport(proxy), httpx.AsyncHTTPTransport)


def test_maintenance_tasks_registered():
    for name in (
        "expire_allocations",
        "finalize_cancellations",
        "renew_subscriptions",
        "enforce_usage_retention",
        "archive_invoices",
        "check_proxy_health",
    ):
        assert name in celery_app.tasks


def test_beat_schedule_covers_every_task():
    scheduled = {entry["task"] for entry in celery_app.conf.beat_schedule.values()}

    assert scheduled == {
        "expire_allocations",
        "finalize_cancellations",
        "renew_subscriptions",
        "enforce_usage_retention",
        "archive_invoices",
        "check_proxy_health",
    }
