# proxyrent/api/v1/allocations.py
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from proxyrent.db.database import get_db
from proxyrent.api.dependencies import get_tenant_id
from proxyrent.schemas.allocation import Allocation
from proxyrent.services.allocation_manager import AllocationManager

router = APIRouter()


@router.get("", response_model=List[Allocation])
async def list_active_allocations(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Active leases for the current tenant, most recent first"""
    return await AllocationManager(db).list_active_for_tenant(tenant_id)


@router.get("/history", response_model=List[Allocation])
async def allocation_history(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await AllocationManager(db).history_for_tenant(tenant_id)


@router.post("/{allocation_id}/cancel", response_model=Allocation)
async def cancel_allocation(
    allocation_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """End a lease early and return the proxy to the pool"""
    return await AllocationManager(db).cancel(allocation_id, tenant_id)
