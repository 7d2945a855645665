# proxyrent/db/repositories/ledger_repository.py
from decimal import Decimal
from typing import List, Optional
from sqlalchemy import select, func, case, and_
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.constants import EntryType, SETTLED_ENTRY_STATUSES
from proxyrent.db.models.ledger import LedgerEntry
from proxyrent.db.repositories.base import BaseRepository


class LedgerRepository(BaseRepository[LedgerEntry]):
    """Repository for wallet ledger entries"""

    def __init__(self, session: AsyncSession):
        super().__init__(LedgerEntry, session)

    async def settled_sum(self, tenant_id: str) -> Decimal:
        """Settled credits minus settled debits, computed in the store"""
        signed = case(
            (LedgerEntry.entry_type == EntryType.CREDIT.value, LedgerEntry.amount),
            else_=-LedgerEntry.amount,
        )
        result = await self.session.execute(
            select(func.coalesce(func.sum(signed), 0)).where(
                and_(
                    LedgerEntry.tenant_id == tenant_id,
                    LedgerEntry.status.in_(SETTLED_ENTRY_STATUSES),
                    LedgerEntry.deleted_at.is_(None),
                )
            )
        )
        return Decimal(str(result.scalar() or 0))

    async def get_live(self, entry_id: int, for_update: bool = False) -> Optional[LedgerEntry]:
        query = select(LedgerEntry).where(
            and_(LedgerEntry.id == entry_id, LedgerEntry.deleted_at.is_(None))
        )
        if for_update:
            query = query.with_for_update()
        result = await self.session.execute(query)
        return result.scalar_one_or_none()

    async def history(self, tenant_id: str) -> List[LedgerEntry]:
        result = await self.session.execute(
            select(LedgerEntry)
            .where(and_(LedgerEntry.tenant_id == tenant_id, LedgerEntry.deleted_at.is_(None)))
            .order_by(LedgerEntry.created_at.desc(), LedgerEntry.id.desc())
        )
        return list(result.scalars().all())
