# proxyrent/db/repositories/invoice_repository.py
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Sequence
from sqlalchemy import select, update, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.constants import InvoiceStatus
from proxyrent.db.models.invoice import Invoice
from proxyrent.db.repositories.base import BaseRepository


class InvoiceRepository(BaseRepository[Invoice]):
    """Repository for Invoice operations"""

    def __init__(self, session: AsyncSession):
        super().__init__(Invoice, session)

    async def get_live(self, invoice_id: int, for_update: bool = False) -> Optional[Invoice]:
        query = select(Invoice).where(and_(Invoice.id == invoice_id, Invoice.deleted_at.is_(None)))
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def get_by_number(self, tenant_id: str, invoice_number: str) -> Optional[Invoice]:
        result = await self.session.execute(
            select(Invoice).where(
                and_(
                    Invoice.tenant_id == tenant_id,
                    Invoice.invoice_number == invoice_number,
                    Invoice.deleted_at.is_(None),
                )
            )
        )
        return result.scalar_one_or_none()

    async def number_taken(self, tenant_id: str, invoice_number: str) -> bool:
        # Deleted rows still hold their number in the unique constraint
        result = await self.session.execute(
            select(func.count(Invoice.id)).where(
                and_(Invoice.tenant_id == tenant_id, Invoice.invoice_number == invoice_number)
            )
        )
        return (result.scalar() or 0) > 0

    async def list_for_tenant(self, tenant_id: str, include_deleted: bool = False) -> List[Invoice]:
        query = select(Invoice).where(Invoice.tenant_id == tenant_id)
        if not include_deleted:
            query = query.where(Invoice.deleted_at.is_(None))
        result = await self.session.execute(
            query.order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )
        return list(result.scalars().all())

    async def list_for_subscription(self, subscription_id: int) -> List[Invoice]:
        result = await self.session.execute(
            select(Invoice)
            .where(and_(Invoice.subscription_id == subscription_id, Invoice.deleted_at.is_(None)))
            .order_by(Invoice.created_at.desc(), Invoice.id.desc())
        )
        return list(result.scalars().all())

    async def totals_by_status(self, tenant_id: str) -> Sequence:
        result = await self.session.execute(
            select(Invoice.status, func.count(Invoice.id), func.coalesce(func.sum(Invoice.amount), 0))
            .where(and_(Invoice.tenant_id == tenant_id, Invoice.deleted_at.is_(None)))
            .group_by(Invoice.status)
        )
        return result.all()

    async def total_paid_between(self, tenant_id: str, start: datetime, end: datetime) -> Decimal:
        result = await self.session.execute(
            select(func.coalesce(func.sum(Invoice.amount), 0)).where(
                and_(
                    Invoice.tenant_id == tenant_id,
                    Invoice.status == InvoiceStatus.PAID.value,
                    Invoice.deleted_at.is_(None),
                    Invoice.paid_at >= start,
                    Invoice.paid_at < end,
                )
            )
        )
        return Decimal(str(result.scalar() or 0))

    async def archive_settled_before(self, cutoff: datetime, now: datetime) -> int:
        result = await self.session.execute(
            update(Invoice)
            .where(
                and_(
                    Invoice.deleted_at.is_(None),
                    Invoice.created_at < cutoff,
                    Invoice.status.in_((InvoiceStatus.PAID.value, InvoiceStatus.CANCELLED.value)),
                )
            )
            .values(deleted_at=now, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
