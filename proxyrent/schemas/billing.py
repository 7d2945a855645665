# proxyrent/schemas/billing.py
from pydantic import AliasChoices, BaseModel, Field
from typing import Optional, Dict, Any
from datetime import datetime
from decimal import Decimal


class Invoice(BaseModel):
    id: int
    tenant_id: str
    subscription_id: Optional[int] = None
    invoice_number: str
    amount: Decimal
    currency: str
    status: str
    payment_method: str
    payment_reference: Optional[str] = None
    due_date: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    wallet_entry_id: Optional[int] = None
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias=AliasChoices("meta", "metadata"))
    created_at: datetime

    class Config:
        from_attributes = True


class BillingSummary(BaseModel):
    total_paid: Decimal
    total_pending: Decimal
    total_cancelled: Decimal
    total_failed: Decimal
    invoice_count: int
    paid_invoice_count: int
    pending_invoice_count: int
    cancelled_invoice_count: int
    failed_invoice_count: int


class PaymentWebhook(BaseModel):
    """Provider callback for a top-up or invoice charge"""
    correlation_id: str
    tenant_id: str
    success: bool = True
    external_reference: Optional[str] = None
    amount_confirmed: Optional[Decimal] = None
    reason: Optional[str] = None


class InvoiceCheckout(BaseModel):
    invoice: Invoice
    checkout_id: Optional[str] = None
    checkout_url: Optional[str] = None


class CheckoutSettlement(BaseModel):
    """Outcome of confirming a checkout with the provider"""
    checkout_id: str
    correlation_id: str
    status: str
