# proxyrent/db/repositories/tenant_repository.py
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.db.models.tenant import Tenant
from proxyrent.db.repositories.base import BaseRepository


class TenantRepository(BaseRepository[Tenant]):
    """Repository for Tenant operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Tenant, session)

    async def lock(self, tenant_id: str) -> Optional[Tenant]:
        """Row-lock the tenant; serializes balance-checked writes per tenant"""
        result = await self.session.execute(
            select(Tenant).where(Tenant.id == tenant_id).with_for_update()
        )
        return result.scalar_one_or_none()
