# proxyrent/api/v1/subscriptions.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from proxyrent.db.database import get_db
from proxyrent.api.dependencies import get_tenant_id
from proxyrent.schemas.subscription import (
    ProxySubscription,
    Subscription,
    SubscriptionCancel,
    SubscriptionCreate,
)
from proxyrent.services.subscription_manager import SubscriptionManager

router = APIRouter()


@router.get("", response_model=List[Subscription])
async def list_subscriptions(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await SubscriptionManager(db).list_for_tenant(tenant_id)


@router.post("", response_model=ProxySubscription, status_code=status.HTTP_201_CREATED)
async def subscribe_to_proxy(
    subscription_in: SubscriptionCreate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """
    Subscribe to a proxy and lease it in one step

    Wallet subscriptions are charged immediately. External subscriptions
    come back ``incomplete`` with a pending invoice, paid through
    ``POST /billing/invoices/{id}/checkout``.
    """
    result = await SubscriptionManager(db).subscribe_to_proxy(
        tenant_id,
        subscription_in.proxy_id,
        subscription_in.price_monthly,
        subscription_in.payment_method.value,
        currency=subscription_in.currency,
    )
    return ProxySubscription.model_validate(result)


@router.post("/{subscription_id}/cancel", response_model=Subscription)
async def cancel_subscription(
    subscription_id: int,
    cancel_in: SubscriptionCancel,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await SubscriptionManager(db).cancel(
        subscription_id, at_period_end=cancel_in.at_period_end, tenant_id=tenant_id
    )
