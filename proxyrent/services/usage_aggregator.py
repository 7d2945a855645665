"""
Usage aggregator: bandwidth metering ingestion and time-bucketed reporting.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Mapping, Optional

from sqlalchemy import func, literal_column
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.config import settings
from proxyrent.core.constants import Granularity
from proxyrent.core.exceptions import InvalidArgumentError
from proxyrent.core.logging import logger
from proxyrent.core.time import as_naive_utc, utcnow
from proxyrent.db.database import atomic
from proxyrent.db.models.usage import UsageSample
from proxyrent.db.repositories.usage_repository import UsageRepository

# strftime patterns that truncate an SQLite timestamp to a bucket boundary
SQLITE_BUCKET_FORMATS = {
    Granularity.MINUTE: "%Y-%m-%d %H:%M:00",
    Granularity.HOUR: "%Y-%m-%d %H:00:00",
    Granularity.DAY: "%Y-%m-%d 00:00:00",
}


@dataclass
class TimeRange:
    """Closed interval ``[start, end]``"""
    start: datetime
    end: datetime

    def __post_init__(self):
        self.start = as_naive_utc(self.start)
        self.end = as_naive_utc(self.end)


@dataclass
class UsageScope:
    """Which samples a query covers.

    Tenant-wide, proxy-scoped (optionally narrowed to one tenant) or
    allocation-scoped.
    """
    tenant_id: Optional[str] = None
    proxy_id: Optional[int] = None
    allocation_id: Optional[int] = None

    @classmethod
    def for_tenant(cls, tenant_id: str) -> "UsageScope":
        return cls(tenant_id=tenant_id)

    @classmethod
    def for_proxy(cls, proxy_id: int, tenant_id: Optional[str] = None) -> "UsageScope":
        return cls(tenant_id=tenant_id, proxy_id=proxy_id)

    @classmethod
    def for_allocation(cls, allocation_id: int, tenant_id: Optional[str] = None) -> "UsageScope":
        return cls(tenant_id=tenant_id, allocation_id=allocation_id)


@dataclass
class UsagePoint:
    bucket: datetime
    bytes_in: int
    bytes_out: int
    bytes_total: int


@dataclass
class UsageTotals:
    bytes_in: int
    bytes_out: int
    bytes_total: int


@dataclass
class ProxyConsumption:
    proxy_id: int
    bytes_total: int


class UsageAggregator:
    """Records usage samples and aggregates them per tenant, proxy or allocation"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.samples = UsageRepository(session)

    # ==================== Ingestion ====================

    async def record(
        self,
        proxy_id: int,
        tenant_id: str,
        bytes_in: int,
        bytes_out: int,
        allocation_id: Optional[int] = None,
        ts: Optional[datetime] = None,
    ) -> UsageSample:
        row = _sample_row({
            "proxy_id": proxy_id,
            "tenant_id": tenant_id,
            "allocation_id": allocation_id,
            "bytes_in": bytes_in,
            "bytes_out": bytes_out,
            "ts": ts,
        })
        async with atomic(self.session):
            return await self.samples.create(row)

    async def record_batch(self, items: Iterable[Mapping[str, Any]]) -> int:
        """Append many samples in one statement; every item is validated first"""
        rows = [_sample_row(item) for item in items]
        if not rows:
            return 0
        async with atomic(self.session):
            inserted = await self.samples.insert_many(rows)
        logger.debug(f"Recorded {inserted} usage samples")
        return inserted

    # ==================== Reporting ====================

    async def series(
        self,
        scope: UsageScope,
        time_range: Optional[TimeRange],
        granularity: str,
    ) -> List[UsagePoint]:
        """Bytes per time bucket, ascending by bucket.

        ``granularity`` is one of minute, hour or day. A range that holds no
        samples yields an empty list.
        """
        try:
            granularity = Granularity(granularity)
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid granularity: {granularity}",
                details={"allowed": [g.value for g in Granularity]},
            )
        conditions = _conditions(scope, time_range)

        dialect = self.session.get_bind().dialect.name
        if dialect == "sqlite":
            bucket = func.strftime(literal_column(f"'{SQLITE_BUCKET_FORMATS[granularity]}'"), UsageSample.ts)
        else:
            # Inlined so SELECT and GROUP BY render the same expression
            bucket = func.date_trunc(literal_column(f"'{granularity.value}'"), UsageSample.ts)

        points = []
        for value, bytes_in, bytes_out in await self.samples.bucketed(bucket, conditions):
            if isinstance(value, str):
                value = datetime.strptime(value, "%Y-%m-%d %H:%M:%S")
            bytes_in, bytes_out = int(bytes_in or 0), int(bytes_out or 0)
            points.append(UsagePoint(
                bucket=value,
                bytes_in=bytes_in,
                bytes_out=bytes_out,
                bytes_total=bytes_in + bytes_out,
            ))
        return points

    async def summary(self, tenant_id: str, time_range: Optional[TimeRange] = None) -> UsageTotals:
        bytes_in, bytes_out = await self.samples.totals(_conditions(UsageScope.for_tenant(tenant_id), time_range))
        bytes_in, bytes_out = int(bytes_in), int(bytes_out)
        return UsageTotals(bytes_in=bytes_in, bytes_out=bytes_out, bytes_total=bytes_in + bytes_out)

    async def top_consumers(
        self,
        tenant_id: str,
        time_range: Optional[TimeRange] = None,
        limit: int = 10,
    ) -> List[ProxyConsumption]:
        """Proxies by total bytes, heaviest first"""
        if limit <= 0:
            raise InvalidArgumentError("limit must be positive", details={"limit": limit})
        rows = await self.samples.top_proxies(_conditions(UsageScope.for_tenant(tenant_id), time_range), limit)
        return [ProxyConsumption(proxy_id=proxy_id, bytes_total=int(total)) for proxy_id, total in rows]

    # ==================== Retention ====================

    async def enforce_retention(self, window_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Delete samples older than ``now - window_days``; returns the count deleted.

        Samples go in batches of RETENTION_BATCH_SIZE. A batch that fails is
        retried one row at a time so a single bad row is logged and skipped
        rather than stopping the sweep.
        """
        window_days = settings.USAGE_RETENTION_DAYS if window_days is None else window_days
        if window_days <= 0:
            raise InvalidArgumentError("window_days must be positive", details={"window_days": window_days})
        cutoff = (now or utcnow()) - timedelta(days=window_days)

        deleted = 0
        after_id = 0
        async with atomic(self.session):
            while True:
                ids = await self.samples.ids_older_than(cutoff, settings.RETENTION_BATCH_SIZE, after_id)
                if not ids:
                    break
                after_id = ids[-1]
                try:
                    async with self.session.begin_nested():
                        deleted += await self.samples.delete_ids(ids)
                except Exception:
                    logger.exception(f"Retention batch ending at sample {after_id} failed; retrying per row")
                    deleted += await self._delete_each(ids)

        logger.info(f"Usage retention removed {deleted} samples older than {cutoff.isoformat()}")
        return deleted

    async def _delete_each(self, ids: List[int]) -> int:
        deleted = 0
        for sample_id in ids:
            try:
                async with self.session.begin_nested():
                    deleted += await self.samples.delete_ids([sample_id])
            except Exception:
                logger.exception(f"Failed to delete usage sample {sample_id}")
        return deleted


def _conditions(scope: UsageScope, time_range: Optional[TimeRange]) -> list:
    if scope.tenant_id is None and scope.proxy_id is None and scope.allocation_id is None:
        raise InvalidArgumentError("Usage scope needs a tenant, proxy or allocation")

    conditions = []
    if scope.tenant_id is not None:
        conditions.append(UsageSample.tenant_id == scope.tenant_id)
    if scope.proxy_id is not None:
        conditions.append(UsageSample.proxy_id == scope.proxy_id)
    if scope.allocation_id is not None:
        conditions.append(UsageSample.allocation_id == scope.allocation_id)

    if time_range is not None:
        if time_range.start > time_range.end:
            raise InvalidArgumentError(
                "Range start is after its end",
                details={"start": time_range.start.isoformat(), "end": time_range.end.isoformat()},
            )
        conditions.append(UsageSample.ts >= time_range.start)
        conditions.append(UsageSample.ts <= time_range.end)
    return conditions


def _sample_row(item: Mapping[str, Any]) -> Dict[str, Any]:
    try:
        proxy_id = item["proxy_id"]
        tenant_id = item["tenant_id"]
    except KeyError as exc:
        raise InvalidArgumentError(f"Usage sample is missing {exc.args[0]}")

    counters = {}
    for field in ("bytes_in", "bytes_out"):
        value = item.get(field, 0)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise InvalidArgumentError(f"{field} must be a non-negative integer", details={field: value})
        counters[field] = value

    ts = item.get("ts")
    if ts is not None and not isinstance(ts, datetime):
        raise InvalidArgumentError("ts must be a datetime", details={"ts": str(ts)})

    return {
        "proxy_id": proxy_id,
        "tenant_id": tenant_id,
        "allocation_id": item.get("allocation_id"),
        "ts": as_naive_utc(ts) if ts else utcnow(),
        **counters,
    }
