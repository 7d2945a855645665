# proxyrent/schemas/allocation.py
from pydantic import BaseModel
from typing import Optional
from datetime import datetime
from decimal import Decimal


class Allocation(BaseModel):
    id: int
    tenant_id: str
    proxy_id: int
    subscription_id: Optional[int] = None
    starts_at: datetime
    ends_at: datetime
    price_monthly: Decimal
    status: str

    class Config:
        from_attributes = True
