# proxyrent/api/v1/funds.py
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from proxyrent.db.database import get_db
from proxyrent.api.dependencies import get_payment_provider, get_tenant_id
from proxyrent.core.config import settings
from proxyrent.core.constants import TOPUP_CORRELATION_PREFIX
from proxyrent.core.exceptions import PaymentProviderError
from proxyrent.schemas.funds import Balance, LedgerEntry, TopupCreate, TopupResponse
from proxyrent.services.ledger_service import LedgerService
from proxyrent.services.payment_provider import PaymentProviderClient
from proxyrent.services.payment_reconciler import correlation_id_for

router = APIRouter()


@router.get("", response_model=List[LedgerEntry])
async def funds_history(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    """Wallet movements, newest first"""
    return await LedgerService(db).history(tenant_id)


@router.get("/balance", response_model=Balance)
async def get_balance(
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db)
):
    balance = await LedgerService(db).balance(tenant_id)
    return Balance(tenant_id=tenant_id, balance=balance, currency=settings.DEFAULT_CURRENCY)


@router.post("/topups", response_model=TopupResponse, status_code=status.HTTP_201_CREATED)
async def create_topup(
    topup_in: TopupCreate,
    tenant_id: str = Depends(get_tenant_id),
    db: AsyncSession = Depends(get_db),
    provider: PaymentProviderClient = Depends(get_payment_provider)
):
    """
    Start a wallet top-up

    The pending credit is recorded first; it settles when the provider
    confirms the payment through the billing webhook or a checkout confirm.
    A checkout the provider refuses marks the credit failed.
    """
    currency = topup_in.currency or settings.DEFAULT_CURRENCY
    ledger = LedgerService(db)
    entry = await ledger.create_pending_topup(tenant_id, topup_in.amount, currency=currency)

    try:
        checkout = await provider.create_checkout(
            amount=entry.amount,
            currency=currency,
            correlation_id=correlation_id_for(TOPUP_CORRELATION_PREFIX, entry.id),
            tenant_id=tenant_id,
        )
    except PaymentProviderError:
        await ledger.fail_topup(entry.id, reason="checkout_failed")
        raise

    return TopupResponse(
        entry=LedgerEntry.model_validate(entry),
        checkout_id=checkout["checkout_id"],
        checkout_url=checkout["checkout_url"],
    )
