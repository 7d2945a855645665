# proxyrent/schemas/funds.py
from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal


class LedgerEntry(BaseModel):
    id: int
    tenant_id: str
    amount: Decimal
    currency: str
    entry_type: str
    status: str
    payment_provider: Optional[str] = None
    payment_reference: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime

    class Config:
        from_attributes = True


class Balance(BaseModel):
    tenant_id: str
    balance: Decimal
    currency: str


class TopupCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    currency: Optional[str] = None


class TopupResponse(BaseModel):
    entry: LedgerEntry
    checkout_id: Optional[str] = None
    checkout_url: Optional[str] = None
