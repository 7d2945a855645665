# proxyrent/api/v1/usage.py
from datetime import datetime, timedelta
from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from proxyrent.db.database import get_db
from proxyrent.api.dependencies import get_tenant_id
from proxyrent.core.time import as_naive_utc, utcnow
from proxyrent.schemas.usage import ProxyConsumption, UsageBatch, UsagePoint
from proxyrent.services.usage_aggregator import TimeRange, UsageAggregator, UsageScope

router = APIRouter()

DEFAULT_WINDOW = timedelta(days=7)


def _time_range(start: Optional[datetime], end: Optional[datetime]) -> TimeRange:
    """Explicit bounds, defaulting to the last seven days"""
    end = as_naive_utc(end) if end else utcnow()
    start = as_naive_utc(start) if start else end - DEFAULT_WINDOW
    return TimeRange(start=start, end=end)


@router.get("/series", response_model=List[UsagePoint])
async def usage_series(
    granularity: str = "hour",
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    proxy_id: Optional[int] = None,
    allocation_id: Optional[int] = None,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Bandwidth per time bucket, optionally narrowed to one proxy or allocation"""
    scope = UsageScope(tenant_id=tenant_id, proxy_id=proxy_id, allocation_id=allocation_id)
    return await UsageAggregator(db).series(scope, _time_range(start, end), granularity)


@router.get("/top", response_model=List[ProxyConsumption])
async def top_consumers(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = Query(10, ge=1, le=100),
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await UsageAggregator(db).top_consumers(tenant_id, _time_range(start, end), limit)


@router.post("/samples")
async def record_samples(
    batch: UsageBatch,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Metering ingestion for the current tenant"""
    recorded = await UsageAggregator(db).record_batch(
        {
            **sample.model_dump(),
            "ts": as_naive_utc(sample.ts) if sample.ts else None,
            "tenant_id": tenant_id,
        }
        for sample in batch.samples
    )
    return {"recorded": recorded}
