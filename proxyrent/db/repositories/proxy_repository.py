# proxyrent/db/repositories/proxy_repository.py
from typing import List, Optional
from sqlalchemy import select, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.db.models.proxy import Proxy
from proxyrent.db.repositories.base import BaseRepository


class ProxyRepository(BaseRepository[Proxy]):
    """Repository for Proxy operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Proxy, session)

    async def get_live(self, proxy_id: int, for_update: bool = False) -> Optional[Proxy]:
        """Get a proxy that has not been soft-deleted"""
        query = select(Proxy).where(and_(Proxy.id == proxy_id, Proxy.deleted_at.is_(None)))
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_address(
        self, ip_address: str, port: int, exclude_id: Optional[int] = None
    ) -> Optional[Proxy]:
        query = select(Proxy).where(
            and_(
                Proxy.ip_address == ip_address,
                Proxy.port == port,
                Proxy.deleted_at.is_(None),
            )
        )
        if exclude_id is not None:
            query = query.where(Proxy.id != exclude_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def list(self, status: Optional[str] = None, include_deleted: bool = False) -> List[Proxy]:
        query = select(Proxy)
        if not include_deleted:
            query = query.where(Proxy.deleted_at.is_(None))
        if status:
            query = query.where(Proxy.status == status)
        result = await self.session.execute(query.order_by(Proxy.id))
        return list(result.scalars().all())

    async def count_by_status(self, status: str) -> int:
        result = await self.session.execute(
            select(func.count(Proxy.id)).where(
                and_(Proxy.status == status, Proxy.deleted_at.is_(None))
            )
        )
        return result.scalar() or 0
