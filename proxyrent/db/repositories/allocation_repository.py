# proxyrent/db/repositories/allocation_repository.py
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, update, and_
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.constants import AllocationStatus
from proxyrent.db.models.allocation import Allocation
from proxyrent.db.repositories.base import BaseRepository

ACTIVE = AllocationStatus.ACTIVE.value


class AllocationRepository(BaseRepository[Allocation]):
    """Repository for Allocation operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Allocation, session)

    async def get_live_for_proxy(self, proxy_id: int, now: datetime) -> Optional[Allocation]:
        """The active, unexpired lease on a proxy, if any"""
        result = await self.session.execute(
            select(Allocation)
            .where(
                and_(
                    Allocation.proxy_id == proxy_id,
                    Allocation.status == ACTIVE,
                    Allocation.ends_at > now,
                )
            )
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def expire_stale_for_proxy(self, proxy_id: int, now: datetime) -> int:
        """Flip active rows already past their end date so a new lease can take the slot"""
        result = await self.session.execute(
            update(Allocation)
            .where(
                and_(
                    Allocation.proxy_id == proxy_id,
                    Allocation.status == ACTIVE,
                    Allocation.ends_at <= now,
                )
            )
            .values(status=AllocationStatus.EXPIRED.value, updated_at=now)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def get_for_tenant(self, allocation_id: int, tenant_id: str) -> Optional[Allocation]:
        result = await self.session.execute(
            select(Allocation).where(
                and_(Allocation.id == allocation_id, Allocation.tenant_id == tenant_id)
            )
        )
        return result.scalar_one_or_none()

    async def active_for_tenant(self, tenant_id: str, now: datetime) -> List[Allocation]:
        result = await self.session.execute(
            select(Allocation)
            .where(
                and_(
                    Allocation.tenant_id == tenant_id,
                    Allocation.status == ACTIVE,
                    Allocation.ends_at > now,
                )
            )
            .order_by(Allocation.starts_at.desc(), Allocation.id.desc())
        )
        return list(result.scalars().all())

    async def history_for_tenant(self, tenant_id: str) -> List[Allocation]:
        result = await self.session.execute(
            select(Allocation)
            .where(Allocation.tenant_id == tenant_id)
            .order_by(Allocation.starts_at.desc(), Allocation.id.desc())
        )
        return list(result.scalars().all())

    async def history_for_proxy(self, proxy_id: int) -> List[Allocation]:
        result = await self.session.execute(
            select(Allocation)
            .where(Allocation.proxy_id == proxy_id)
            .order_by(Allocation.starts_at.desc(), Allocation.id.desc())
        )
        return list(result.scalars().all())

    async def for_subscription(
        self, subscription_id: int, status: Optional[str] = None, for_update: bool = False
    ) -> List[Allocation]:
        query = select(Allocation).where(Allocation.subscription_id == subscription_id)
        if status:
            query = query.where(Allocation.status == status)
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query.order_by(Allocation.id))
        return list(result.scalars().all())

    async def due_ids(self, now: datetime, limit: Optional[int] = None) -> List[int]:
        """Ids of active allocations whose end date has passed"""
        query = (
            select(Allocation.id)
            .where(and_(Allocation.status == ACTIVE, Allocation.ends_at < now))
            .order_by(Allocation.ends_at)
        )
        if limit:
            query = query.limit(limit)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def lock_due(self, allocation_id: int, now: datetime) -> Optional[Allocation]:
        """Lock one allocation if it is still due; rows held elsewhere are skipped"""
        result = await self.session.execute(
            select(Allocation)
            .where(
                and_(
                    Allocation.id == allocation_id,
                    Allocation.status == ACTIVE,
                    Allocation.ends_at < now,
                )
            )
            .with_for_update(skip_locked=True)
        )
        return result.scalar_one_or_none()
