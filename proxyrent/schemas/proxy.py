# proxyrent/schemas/proxy.py
from pydantic import BaseModel, Field
from typing import Optional
from datetime import datetime


class ProxyBase(BaseModel):
    ip_address: str
    port: int = Field(..., ge=1, le=65535)
    label: Optional[str] = None
    location: Optional[str] = None
    isp: Optional[str] = None


class ProxyCreate(ProxyBase):
    username: Optional[str] = None
    password: Optional[str] = None
    dongle_id: Optional[str] = None


class Proxy(ProxyBase):
    id: int
    status: str
    last_health_check: Optional[datetime] = None
    created_at: datetime

    class Config:
        from_attributes = True
