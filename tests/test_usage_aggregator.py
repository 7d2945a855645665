"""
Tests for bandwidth metering

Samples are append-only; reporting groups them into minute, hour or
day buckets over a closed time range.
"""
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.exceptions import InvalidArgumentError
from proxyrent.services.allocation_manager import AllocationManager
from proxyrent.services.usage_aggregator import TimeRange, UsageAggregator, UsageScope

START = datetime(2024, 3, 1)


@pytest.mark.asyncio
class TestUsageAggregator:
    """Test suite for usage ingestion, bucketing and retention"""

    @pytest.fixture
    async def usage(self, db_session: AsyncSession):
        return UsageAggregator(db_session)

    @pytest.fixture
    async def two_days_of_samples(self, usage: UsageAggregator, tenant_id: str, proxy_id: int):
        """300 samples spread evenly over 48 hours"""
        step = timedelta(hours=48) / 300
        samples = [
            {
                "proxy_id": proxy_id,
                "tenant_id": tenant_id,
                "bytes_in": i,
                "bytes_out": 2 * i,
                "ts": START + i * step,
            }
            for i in range(300)
        ]
        await usage.record_batch(samples)
        return samples

    # ==================== Ingestion ====================

    async def test_record_single_sample(self, usage: UsageAggregator, tenant_id: str, proxy_id: int):
        sample = await usage.record(proxy_id, tenant_id, bytes_in=1024, bytes_out=2048, ts=START)

        assert sample.id is not None
        assert sample.bytes_in == 1024
        assert sample.ts == START

    async def test_negative_counters_rejected(self, usage: UsageAggregator, tenant_id: str, proxy_id: int):
        with pytest.raises(InvalidArgumentError):
            await usage.record(proxy_id, tenant_id, bytes_in=-1, bytes_out=0)

    async def test_batch_is_validated_before_insert(
        self, usage: UsageAggregator, tenant_id: str, proxy_id: int
    ):
        """One bad item rejects the whole batch"""
        batch = [
            {"proxy_id": proxy_id, "tenant_id": tenant_id, "bytes_in": 10, "bytes_out": 10, "ts": START},
            {"proxy_id": proxy_id, "tenant_id": tenant_id, "bytes_in": "10", "bytes_out": 10, "ts": START},
        ]

        with pytest.raises(InvalidArgumentError):
            await usage.record_batch(batch)

        assert await usage.series(UsageScope.for_tenant(tenant_id), None, "day") == []

    async def test_aware_timestamps_stored_as_utc(self, usage: UsageAggregator, tenant_id: str, proxy_id: int):
        """23:30 at UTC-2 is 01:30 UTC the next day"""
        local = datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-2)))

        sample = await usage.record(proxy_id, tenant_id, 10, 10, ts=local)
        await usage.record_batch([
            {"proxy_id": proxy_id, "tenant_id": tenant_id, "bytes_in": 5, "bytes_out": 0, "ts": local},
        ])

        assert sample.ts == datetime(2024, 1, 2, 1, 30)
        points = await usage.series(UsageScope.for_tenant(tenant_id), None, "day")
        assert [(p.bucket, p.bytes_total) for p in points] == [(datetime(2024, 1, 2), 25)]

    async def test_empty_batch(self, usage: UsageAggregator):
        assert await usage.record_batch([]) == 0

    # ==================== Series ====================

    async def test_daily_series_over_two_days(
        self, usage: UsageAggregator, tenant_id: str, two_days_of_samples: list
    ):
        """
        Test: Bucket 300 samples over 48h by day

        Expected:
        - Exactly two buckets, ascending
        - Each bucket sums the samples of its day
        """
        time_range = TimeRange(start=START, end=START + timedelta(hours=48))

        points = await usage.series(UsageScope.for_tenant(tenant_id), time_range, "day")

        assert [p.bucket for p in points] == [START, START + timedelta(days=1)]
        for point in points:
            day = [s for s in two_days_of_samples if s["ts"].date() == point.bucket.date()]
            assert point.bytes_in == sum(s["bytes_in"] for s in day)
            assert point.bytes_out == sum(s["bytes_out"] for s in day)
            assert point.bytes_total == point.bytes_in + point.bytes_out

    async def test_hourly_series_covers_every_hour(
        self, usage: UsageAggregator, tenant_id: str, two_days_of_samples: list
    ):
        time_range = TimeRange(start=START, end=START + timedelta(hours=48))

        points = await usage.series(UsageScope.for_tenant(tenant_id), time_range, "hour")

        assert len(points) == 48
        assert sum(p.bytes_in for p in points) == sum(range(300))

    async def test_range_bounds_are_inclusive(self, usage: UsageAggregator, tenant_id: str, proxy_id: int):
        await usage.record(proxy_id, tenant_id, 100, 0, ts=START)
        await usage.record(proxy_id, tenant_id, 200, 0, ts=START + timedelta(minutes=30))
        await usage.record(proxy_id, tenant_id, 400, 0, ts=START + timedelta(minutes=31))

        points = await usage.series(
            UsageScope.for_tenant(tenant_id),
            TimeRange(start=START, end=START + timedelta(minutes=30)),
            "hour",
        )

        assert len(points) == 1
        assert points[0].bytes_in == 300

    async def test_empty_range_yields_no_points(
        self, usage: UsageAggregator, tenant_id: str, two_days_of_samples: list
    ):
        time_range = TimeRange(start=START + timedelta(days=10), end=START + timedelta(days=11))

        assert await usage.series(UsageScope.for_tenant(tenant_id), time_range, "minute") == []

    async def test_invalid_granularity(self, usage: UsageAggregator, tenant_id: str):
        with pytest.raises(InvalidArgumentError):
            await usage.series(UsageScope.for_tenant(tenant_id), None, "week")

    async def test_inverted_range_rejected(self, usage: UsageAggregator, tenant_id: str):
        with pytest.raises(InvalidArgumentError):
            await usage.series(
                UsageScope.for_tenant(tenant_id),
                TimeRange(start=START + timedelta(days=1), end=START),
                "day",
            )

    async def test_scope_requires_a_filter(self, usage: UsageAggregator):
        with pytest.raises(InvalidArgumentError):
            await usage.series(UsageScope(), None, "day")

    async def test_series_scoped_to_proxy_and_allocation(
        self,
        db_session: AsyncSession,
        usage: UsageAggregator,
        tenant_id: str,
        proxy_id: int,
        second_proxy_id: int,
    ):
        allocation = await AllocationManager(db_session).allocate(tenant_id, proxy_id, Decimal("49.00"))
        await usage.record(proxy_id, tenant_id, 10, 1, allocation_id=allocation.id, ts=START)
        await usage.record(second_proxy_id, tenant_id, 20, 2, ts=START)

        by_proxy = await usage.series(UsageScope.for_proxy(second_proxy_id), None, "day")
        by_allocation = await usage.series(
            UsageScope.for_allocation(allocation.id, tenant_id=tenant_id), None, "day"
        )

        assert [p.bytes_total for p in by_proxy] == [22]
        assert [p.bytes_total for p in by_allocation] == [11]

    async def test_tenants_do_not_see_each_other(
        self, usage: UsageAggregator, tenant_id: str, other_tenant_id: str, proxy_id: int
    ):
        await usage.record(proxy_id, other_tenant_id, 500, 500, ts=START)

        assert await usage.series(UsageScope.for_tenant(tenant_id), None, "day") == []

    # ==================== Totals ====================

    async def test_summary_and_top_consumers(
        self, usage: UsageAggregator, tenant_id: str, proxy_id: int, second_proxy_id: int
    ):
        await usage.record(proxy_id, tenant_id, 100, 50, ts=START)
        await usage.record(second_proxy_id, tenant_id, 1000, 500, ts=START)
        await usage.record(second_proxy_id, tenant_id, 10, 5, ts=START + timedelta(hours=1))

        totals = await usage.summary(tenant_id)
        top = await usage.top_consumers(tenant_id, limit=1)

        assert (totals.bytes_in, totals.bytes_out, totals.bytes_total) == (1110, 555, 1665)
        assert [(c.proxy_id, c.bytes_total) for c in top] == [(second_proxy_id, 1515)]

    async def test_summary_of_no_samples(self, usage: UsageAggregator, tenant_id: str):
        totals = await usage.summary(tenant_id)

        assert totals.bytes_total == 0

    # ==================== Retention ====================

    async def test_enforce_retention(self, usage: UsageAggregator, tenant_id: str, proxy_id: int):
        """
        Test: Retention with a 90 day window

        Expected:
        - Samples older than the window are deleted
        - Recent samples remain
        - A second run deletes nothing
        """
        now = datetime(2024, 6, 1)
        await usage.record(proxy_id, tenant_id, 1, 1, ts=now - timedelta(days=120))
        await usage.record(proxy_id, tenant_id, 2, 2, ts=now - timedelta(days=91))
        await usage.record(proxy_id, tenant_id, 3, 3, ts=now - timedelta(days=1))

        assert await usage.enforce_retention(window_days=90, now=now) == 2
        assert await usage.enforce_retention(window_days=90, now=now) == 0

        totals = await usage.summary(tenant_id)
        assert totals.bytes_in == 3

    async def test_retention_window_must_be_positive(self, usage: UsageAggregator):
        with pytest.raises(InvalidArgumentError):
            await usage.enforce_retention(window_days=0)
