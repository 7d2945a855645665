"""
Expiry reaper: terminates allocations past their end date.

A stateless function of a session factory and a clock, driven by an external
scheduler. Running it again with nothing newly due processes zero rows.
"""
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.logging import logger
from proxyrent.core.time import utcnow
from proxyrent.services.allocation_manager import AllocationManager


async def run_expiry_sweep(
    session_factory: Callable[[], AsyncSession],
    now: Optional[datetime] = None,
    limit: Optional[int] = None,
) -> int:
    now = now or utcnow()
    async with session_factory() as session:
        expired = await AllocationManager(session).expire_due(now, limit=limit)
    logger.info(f"Expiry sweep at {now.isoformat()} expired {expired} allocations")
    return expired
