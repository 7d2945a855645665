# proxyrent/schemas/subscription.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime
from decimal import Decimal

from proxyrent.core.constants import PaymentMethod
from proxyrent.schemas.allocation import Allocation
from proxyrent.schemas.billing import Invoice


class SubscriptionCreate(BaseModel):
    proxy_id: int
    price_monthly: Decimal = Field(..., gt=0)
    payment_method: PaymentMethod
    currency: Optional[str] = None


class SubscriptionCancel(BaseModel):
    at_period_end: bool = True


class Subscription(BaseModel):
    id: int
    tenant_id: str
    payment_method: str
    status: str
    amount_monthly: Decimal
    currency: str
    current_period_start: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    cancel_at: Optional[datetime] = None
    canceled_at: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True


class ProxySubscription(BaseModel):
    subscription: Subscription
    allocation: Allocation
    invoice: Invoice

    class Config:
        from_attributes = True
