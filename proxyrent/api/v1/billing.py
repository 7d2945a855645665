# proxyrent/api/v1/billing.py
from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from proxyrent.db.database import get_db
from proxyrent.api.dependencies import get_payment_provider, get_tenant_id
from proxyrent.core.config import settings
from proxyrent.core.constants import INVOICE_CORRELATION_PREFIX, InvoiceStatus, TOPUP_CORRELATION_PREFIX
from proxyrent.core.exceptions import ConflictError
from proxyrent.core.logging import logger
from proxyrent.db.models.invoice import Invoice as InvoiceModel
from proxyrent.schemas.billing import (
    BillingSummary,
    CheckoutSettlement,
    Invoice,
    InvoiceCheckout,
    PaymentWebhook,
)
from proxyrent.services.invoice_service import InvoiceService
from proxyrent.services.payment_provider import PaymentProviderClient
from proxyrent.services.payment_reconciler import PaymentConfirmation, PaymentReconciler, correlation_id_for

router = APIRouter()


@router.get("/invoices", response_model=List[Invoice])
async def list_invoices(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    return await InvoiceService(db).list_for_tenant(tenant_id)


@router.get("/summary", response_model=BillingSummary)
async def billing_summary(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Invoice totals and counts by status"""
    return await InvoiceService(db).summary(tenant_id)


@router.post("/invoices/{invoice_id}/retry", response_model=Invoice)
async def retry_invoice(
    invoice_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Reopen a failed or cancelled invoice for another payment attempt"""
    service = InvoiceService(db)
    invoice = await service.get_for_tenant(invoice_id, tenant_id)
    return await service.retry(invoice.id)


@router.post("/invoices/{invoice_id}/checkout", response_model=InvoiceCheckout)
async def checkout_invoice(
    invoice_id: int,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProviderClient = Depends(get_payment_provider)
):
    """
    Start an external payment for a pending invoice

    The invoice is paid when the provider confirms the charge through the
    webhook or a checkout confirm.
    """
    invoice = await InvoiceService(db).get_for_tenant(invoice_id, tenant_id)
    if invoice.status != InvoiceStatus.PENDING.value:
        raise ConflictError(
            f"Invoice is {invoice.status}",
            details={"invoice_id": invoice_id, "status": invoice.status},
        )

    checkout = await provider.create_checkout(
        amount=invoice.amount,
        currency=invoice.currency or settings.DEFAULT_CURRENCY,
        correlation_id=correlation_id_for(INVOICE_CORRELATION_PREFIX, invoice.id),
        tenant_id=tenant_id,
        metadata={"invoice_number": invoice.invoice_number},
    )

    return InvoiceCheckout(
        invoice=Invoice.model_validate(invoice),
        checkout_id=checkout["checkout_id"],
        checkout_url=checkout["checkout_url"],
    )


@router.post("/checkouts/{checkout_id}/confirm", response_model=CheckoutSettlement)
async def confirm_checkout(
    checkout_id: str,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProviderClient = Depends(get_payment_provider)
):
    """Settle a top-up or invoice from the provider's record of the checkout"""
    result = await PaymentReconciler(db).settle_checkout(provider, checkout_id, tenant_id)

    kind = INVOICE_CORRELATION_PREFIX if isinstance(result, InvoiceModel) else TOPUP_CORRELATION_PREFIX
    return CheckoutSettlement(
        checkout_id=checkout_id,
        correlation_id=correlation_id_for(kind, result.id),
        status=result.status,
    )


@router.post("/webhook")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    provider: PaymentProviderClient = Depends(get_payment_provider)
):
    """Handle payment provider webhooks"""

    # Get raw body for signature verification
    body = await request.body()
    signature = request.headers.get("X-Signature", "")

    if not provider.verify_webhook_signature(body.decode(), signature):
        logger.warning("Invalid webhook signature")
        raise HTTPException(status_code=400, detail="Invalid signature")

    try:
        event = PaymentWebhook.model_validate_json(body)
    except ValidationError:
        raise HTTPException(status_code=400, detail="Invalid payload")

    reconciler = PaymentReconciler(db)
    if event.success:
        if not event.external_reference or event.amount_confirmed is None:
            raise HTTPException(status_code=400, detail="Confirmation requires a reference and amount")
        await reconciler.confirm(PaymentConfirmation(
            external_reference=event.external_reference,
            amount_confirmed=event.amount_confirmed,
            tenant_id=event.tenant_id,
            correlation_id=event.correlation_id,
        ))
    else:
        await reconciler.fail(event.correlation_id, event.tenant_id, reason=event.reason)

    return {"status": "success"}
