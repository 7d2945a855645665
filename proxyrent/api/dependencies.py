# proxyrent/api/dependencies.py
from fastapi import Depends, Header, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from proxyrent.db.database import get_db
from proxyrent.db.repositories.tenant_repository import TenantRepository
from proxyrent.services.payment_provider import PaymentProviderClient


async def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-ID"),
    db: AsyncSession = Depends(get_db)
) -> str:
    """Tenant identity resolved by the upstream gateway"""
    if not x_tenant_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Tenant identity required"
        )

    tenant = await TenantRepository(db).get(x_tenant_id)
    if not tenant or not tenant.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Tenant not found or inactive"
        )

    return tenant.id


def get_payment_provider() -> PaymentProviderClient:
    return PaymentProviderClient()
