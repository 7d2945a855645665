# proxyrent/db/repositories/subscription_repository.py
from datetime import datetime
from typing import List, Optional
from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.constants import PaymentMethod, SubscriptionStatus
from proxyrent.db.models.subscription import Subscription
from proxyrent.db.repositories.base import BaseRepository


class SubscriptionRepository(BaseRepository[Subscription]):
    """Repository for Subscription operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Subscription, session)

    async def get_for_tenant(self, subscription_id: int, tenant_id: str) -> Optional[Subscription]:
        result = await self.session.execute(
            select(Subscription).where(
                and_(Subscription.id == subscription_id, Subscription.tenant_id == tenant_id)
            )
        )
        return result.scalar_one_or_none()

    async def list_for_tenant(self, tenant_id: str) -> List[Subscription]:
        result = await self.session.execute(
            select(Subscription)
            .where(Subscription.tenant_id == tenant_id)
            .order_by(Subscription.created_at.desc(), Subscription.id.desc())
        )
        return list(result.scalars().all())

    async def due_cancellation_ids(self, now: datetime) -> List[int]:
        result = await self.session.execute(
            select(Subscription.id).where(
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.cancel_at.is_not(None),
                    Subscription.cancel_at <= now,
                )
            )
        )
        return list(result.scalars().all())

    async def due_renewal_ids(self, now: datetime) -> List[int]:
        """Active wallet subscriptions whose period has ended and that are not winding down"""
        result = await self.session.execute(
            select(Subscription.id).where(
                and_(
                    Subscription.status == SubscriptionStatus.ACTIVE.value,
                    Subscription.payment_method == PaymentMethod.WALLET.value,
                    Subscription.cancel_at.is_(None),
                    Subscription.current_period_end.is_not(None),
                    Subscription.current_period_end <= now,
                )
            )
        )
        return list(result.scalars().all())
