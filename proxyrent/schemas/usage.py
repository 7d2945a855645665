# proxyrent/schemas/usage.py
from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


class UsageSampleIn(BaseModel):
    proxy_id: int
    allocation_id: Optional[int] = None
    bytes_in: int = Field(..., ge=0)
    bytes_out: int = Field(..., ge=0)
    ts: Optional[datetime] = None


class UsageBatch(BaseModel):
    samples: List[UsageSampleIn]


class UsagePoint(BaseModel):
    bucket: datetime
    bytes_in: int
    bytes_out: int
    bytes_total: int

    class Config:
        from_attributes = True


class ProxyConsumption(BaseModel):
    proxy_id: int
    bytes_total: int

    class Config:
        from_attributes = True
