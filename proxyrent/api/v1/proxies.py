# proxyrent/api/v1/proxies.py
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List, Optional

from proxyrent.db.database import get_db
from proxyrent.core.constants import ProxyStatus
from proxyrent.schemas.proxy import Proxy, ProxyCreate
from proxyrent.services.resource_pool import ResourcePool

router = APIRouter()


@router.get("", response_model=List[Proxy])
async def list_proxies(
    status_filter: Optional[str] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db)
):
    """List proxies in the inventory"""
    return await ResourcePool(db).list_proxies(status=status_filter)


@router.get("/available", response_model=List[Proxy])
async def list_available_proxies(db: AsyncSession = Depends(get_db)):
    """List proxies that can be leased right now"""
    return await ResourcePool(db).list_proxies(status=ProxyStatus.AVAILABLE.value)


@router.post("", response_model=Proxy, status_code=status.HTTP_201_CREATED)
async def create_proxy(
    proxy_in: ProxyCreate,
    db: AsyncSession = Depends(get_db)
):
    """Add a proxy to the inventory"""
    return await ResourcePool(db).create_proxy(**proxy_in.model_dump())


@router.post("/{proxy_id}/disable", response_model=Proxy)
async def disable_proxy(proxy_id: int, db: AsyncSession = Depends(get_db)):
    return await ResourcePool(db).mark_disabled(proxy_id)


@router.post("/{proxy_id}/enable", response_model=Proxy)
async def enable_proxy(proxy_id: int, db: AsyncSession = Depends(get_db)):
    return await ResourcePool(db).enable(proxy_id)
