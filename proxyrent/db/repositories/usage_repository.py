# proxyrent/db/repositories/usage_repository.py
from datetime import datetime
from typing import Any, Dict, List, Sequence
from sqlalchemy import select, delete, insert, func, and_
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.db.models.usage import UsageSample
from proxyrent.db.repositories.base import BaseRepository


class UsageRepository(BaseRepository[UsageSample]):
    """Repository for raw usage samples"""

    def __init__(self, session: AsyncSession):
        super().__init__(UsageSample, session)

    async def insert_many(self, rows: List[Dict[str, Any]]) -> int:
        if not rows:
            return 0
        await self.session.execute(insert(UsageSample), rows)
        return len(rows)

    async def bucketed(self, bucket, conditions: list) -> Sequence:
        """Sum bytes per bucket expression, ascending"""
        bucket = bucket.label("bucket")
        result = await self.session.execute(
            select(
                bucket,
                func.sum(UsageSample.bytes_in),
                func.sum(UsageSample.bytes_out),
            )
            .where(and_(*conditions))
            .group_by(bucket)
            .order_by(bucket)
        )
        return result.all()

    async def totals(self, conditions: list) -> Sequence:
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(UsageSample.bytes_in), 0),
                func.coalesce(func.sum(UsageSample.bytes_out), 0),
            ).where(and_(*conditions))
        )
        return result.one()

    async def top_proxies(self, conditions: list, limit: int) -> Sequence:
        total = func.sum(UsageSample.bytes_in + UsageSample.bytes_out)
        result = await self.session.execute(
            select(UsageSample.proxy_id, total.label("bytes_total"))
            .where(and_(*conditions))
            .group_by(UsageSample.proxy_id)
            .order_by(total.desc(), UsageSample.proxy_id)
            .limit(limit)
        )
        return result.all()

    async def ids_older_than(self, cutoff: datetime, limit: int, after_id: int = 0) -> List[int]:
        """Next page of sample ids older than ``cutoff``, keyed by id"""
        result = await self.session.execute(
            select(UsageSample.id)
            .where(and_(UsageSample.ts < cutoff, UsageSample.id > after_id))
            .order_by(UsageSample.id)
            .limit(limit)
        )
        return list(result.scalars().all())

    async def delete_ids(self, ids: List[int]) -> int:
        if not ids:
            return 0
        result = await self.session.execute(
            delete(UsageSample).where(UsageSample.id.in_(ids)).execution_options(synchronize_session=False)
        )
        return result.rowcount or 0
