"""
Allocation manager: time-boxed exclusive leases of a proxy to a tenant.

Exclusivity is enforced twice. The proxy row is locked and checked for a
live lease before the insert, and the partial unique index on
``allocations(proxy_id) WHERE status = 'active'`` rejects whatever slips
past the check. Both outcomes surface as ResourceUnavailableError.
"""
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.config import settings
from proxyrent.core.constants import AllocationStatus, ProxyStatus
from proxyrent.core.exceptions import InvalidArgumentError, NotFoundError, ResourceUnavailableError
from proxyrent.core.logging import logger
from proxyrent.core.money import Amount, positive_money
from proxyrent.core.time import utcnow
from proxyrent.db.database import atomic
from proxyrent.db.models.allocation import Allocation
from proxyrent.db.repositories.allocation_repository import AllocationRepository
from proxyrent.services.resource_pool import ResourcePool

LEASABLE_PROXY_STATUSES = (ProxyStatus.AVAILABLE.value, ProxyStatus.ALLOCATED.value)


class AllocationManager:
    """Creates, releases, renews, cancels and expires allocations"""

    def __init__(self, session: AsyncSession, pool: Optional[ResourcePool] = None):
        self.session = session
        self.pool = pool or ResourcePool(session)
        self.allocations = AllocationRepository(session)

    async def allocate(
        self,
        tenant_id: str,
        proxy_id: int,
        price_monthly: Amount,
        duration_days: int = None,
        subscription_id: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> Allocation:
        """Lease ``proxy_id`` to ``tenant_id`` for ``duration_days`` starting now"""
        price = positive_money(price_monthly, "price_monthly")
        duration_days = settings.ALLOCATION_DURATION_DAYS if duration_days is None else duration_days
        if duration_days <= 0:
            raise InvalidArgumentError("duration_days must be positive", details={"duration_days": duration_days})
        now = now or utcnow()

        async with atomic(self.session):
            proxy = await self.pool.get_proxy(proxy_id, for_update=True)
            if proxy.status not in LEASABLE_PROXY_STATUSES:
                raise ResourceUnavailableError(
                    "Proxy is not available", details={"proxy_id": proxy_id, "status": proxy.status}
                )
            if not await self.pool.is_available(proxy_id, now):
                raise ResourceUnavailableError("Proxy is not available", details={"proxy_id": proxy_id})

            # Free the slot held by a lease that ended but was not reaped yet
            await self.allocations.expire_stale_for_proxy(proxy_id, now)

            try:
                allocation = await self.allocations.create({
                    "tenant_id": tenant_id,
                    "proxy_id": proxy_id,
                    "subscription_id": subscription_id,
                    "starts_at": now,
                    "ends_at": now + timedelta(days=duration_days),
                    "price_monthly": price,
                    "status": AllocationStatus.ACTIVE.value,
                })
            except IntegrityError as exc:
                raise ResourceUnavailableError(
                    "Proxy is not available", details={"proxy_id": proxy_id}
                ) from exc

            await self.pool.mark_allocated(proxy_id)

        logger.info(
            f"Proxy {proxy_id} allocated to tenant {tenant_id} until {allocation.ends_at.isoformat()}",
            extra={"tenant_id": tenant_id, "proxy_id": proxy_id, "allocation_id": allocation.id},
        )
        return allocation

    async def release(self, allocation_id: int, now: Optional[datetime] = None) -> Allocation:
        """Cancel an active allocation immediately and free its proxy"""
        async with atomic(self.session):
            allocation = await self.allocations.get_for_update(allocation_id)
            if not allocation or allocation.status != AllocationStatus.ACTIVE.value:
                raise NotFoundError("Active allocation not found", details={"allocation_id": allocation_id})
            await self._terminate(allocation, AllocationStatus.CANCELLED, now or utcnow())

        logger.info(
            f"Allocation {allocation_id} released",
            extra={"tenant_id": allocation.tenant_id, "allocation_id": allocation_id},
        )
        return allocation

    async def cancel(self, allocation_id: int, tenant_id: str, now: Optional[datetime] = None) -> Allocation:
        """Tenant-facing early termination; foreign allocations read as missing"""
        async with atomic(self.session):
            allocation = await self.allocations.get_for_tenant(allocation_id, tenant_id)
            if not allocation:
                raise NotFoundError("Allocation not found", details={"allocation_id": allocation_id})
            return await self.release(allocation_id, now=now)

    async def renew(self, allocation_id: int, days: int = None, now: Optional[datetime] = None) -> Allocation:
        """Extend by ``days`` and reactivate whatever the prior status.

        The new end is counted from the later of the current end and now, so a
        lapsed lease gets a full period. Reactivation fails with
        ResourceUnavailableError when the proxy has been leased again.
        """
        days = settings.ALLOCATION_DURATION_DAYS if days is None else days
        if days <= 0:
            raise InvalidArgumentError("days must be positive", details={"days": days})
        now = now or utcnow()

        async with atomic(self.session):
            allocation = await self.allocations.get_for_update(allocation_id)
            if not allocation:
                raise NotFoundError("Allocation not found", details={"allocation_id": allocation_id})

            reactivating = allocation.status != AllocationStatus.ACTIVE.value
            if reactivating:
                proxy = await self.pool.get_proxy(allocation.proxy_id, for_update=True)
                if proxy.status not in LEASABLE_PROXY_STATUSES or not await self.pool.is_available(proxy.id, now):
                    raise ResourceUnavailableError(
                        "Proxy is not available", details={"proxy_id": allocation.proxy_id}
                    )
                await self.allocations.expire_stale_for_proxy(allocation.proxy_id, now)

            try:
                await self.allocations.apply(allocation, {
                    "status": AllocationStatus.ACTIVE.value,
                    "ends_at": max(allocation.ends_at, now) + timedelta(days=days),
                })
            except IntegrityError as exc:
                raise ResourceUnavailableError(
                    "Proxy is not available", details={"proxy_id": allocation.proxy_id}
                ) from exc

            await self.pool.claim_from_pool(allocation.proxy_id)

        logger.info(
            f"Allocation {allocation_id} renewed until {allocation.ends_at.isoformat()}",
            extra={"tenant_id": allocation.tenant_id, "allocation_id": allocation_id},
        )
        return allocation

    async def expire_due(self, now: Optional[datetime] = None, limit: Optional[int] = None) -> int:
        """Expire every active allocation past its end date and free its proxy.

        Each row is processed in its own SAVEPOINT: the status flip and the
        proxy release land together or not at all. A failing row is logged
        and skipped so the rest of the batch still goes through.
        """
        now = now or utcnow()
        expired = 0

        async with atomic(self.session):
            for allocation_id in await self.allocations.due_ids(now, limit):
                try:
                    async with self.session.begin_nested():
                        allocation = await self.allocations.lock_due(allocation_id, now)
                        if allocation is None:
                            continue
                        await self.allocations.apply(allocation, {"status": AllocationStatus.EXPIRED.value})
                        await self.pool.release_to_pool(allocation.proxy_id)
                    expired += 1
                except Exception:
                    logger.exception(
                        f"Failed to expire allocation {allocation_id}",
                        extra={"allocation_id": allocation_id},
                    )

        if expired:
            logger.info(f"Expired {expired} allocations")
        return expired

    async def expire_for_subscription(self, subscription_id: int, now: datetime) -> List[Allocation]:
        """End every active allocation funded by the subscription and free the proxies"""
        async with atomic(self.session):
            allocations = await self.allocations.for_subscription(
                subscription_id, status=AllocationStatus.ACTIVE.value, for_update=True
            )
            for allocation in allocations:
                await self._terminate(allocation, AllocationStatus.EXPIRED, now)
        return allocations

    async def extend_for_subscription(self, subscription_id: int, until: datetime) -> List[Allocation]:
        """Push the end date of the subscription's active allocations out to ``until``"""
        async with atomic(self.session):
            allocations = await self.allocations.for_subscription(
                subscription_id, status=AllocationStatus.ACTIVE.value, for_update=True
            )
            for allocation in allocations:
                if allocation.ends_at < until:
                    await self.allocations.apply(allocation, {"ends_at": until})
        return allocations

    async def _terminate(self, allocation: Allocation, status: AllocationStatus, now: datetime) -> None:
        await self.allocations.apply(allocation, {"status": status.value, "ends_at": now})
        await self.pool.release_to_pool(allocation.proxy_id)

    # ==================== Reads ====================

    async def get(self, allocation_id: int) -> Allocation:
        allocation = await self.allocations.get(allocation_id)
        if not allocation:
            raise NotFoundError("Allocation not found", details={"allocation_id": allocation_id})
        return allocation

    async def get_for_tenant(self, allocation_id: int, tenant_id: str) -> Allocation:
        allocation = await self.allocations.get_for_tenant(allocation_id, tenant_id)
        if not allocation:
            raise NotFoundError("Allocation not found", details={"allocation_id": allocation_id})
        return allocation

    async def list_active_for_tenant(self, tenant_id: str, now: Optional[datetime] = None) -> List[Allocation]:
        """Active, unexpired allocations, most recent first"""
        return await self.allocations.active_for_tenant(tenant_id, now or utcnow())

    async def history_for_tenant(self, tenant_id: str) -> List[Allocation]:
        return await self.allocations.history_for_tenant(tenant_id)

    async def history_for_proxy(self, proxy_id: int) -> List[Allocation]:
        return await self.allocations.history_for_proxy(proxy_id)

    async def list_for_subscription(self, subscription_id: int) -> List[Allocation]:
        return await self.allocations.for_subscription(subscription_id)

