"""
Applies payment provider outcomes to the ledger and to invoices.

The provider echoes back the correlation id given at checkout: ``topup:<entry
id>`` for a wallet top-up or ``invoice:<invoice id>`` for an invoice charge.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional, Tuple, Union

from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.constants import (
    INVOICE_CORRELATION_PREFIX,
    SubscriptionStatus,
    TOPUP_CORRELATION_PREFIX,
)
from proxyrent.core.exceptions import InvalidArgumentError
from proxyrent.core.logging import logger
from proxyrent.core.money import Amount, positive_money, to_money
from proxyrent.db.database import atomic
from proxyrent.db.models.invoice import Invoice
from proxyrent.db.models.ledger import LedgerEntry
from proxyrent.services.invoice_service import InvoiceService
from proxyrent.services.ledger_service import LedgerService
from proxyrent.services.payment_provider import PaymentProviderClient
from proxyrent.services.subscription_manager import SubscriptionManager

ACTIVATABLE_SUBSCRIPTION_STATUSES = (SubscriptionStatus.INCOMPLETE.value, SubscriptionStatus.PAST_DUE.value)


@dataclass(frozen=True)
class PaymentConfirmation:
    """Provider callback saying a charge went through"""
    external_reference: str
    amount_confirmed: Amount
    tenant_id: str
    correlation_id: str


def correlation_id_for(kind: str, target_id: int) -> str:
    return f"{kind}:{target_id}"


def parse_correlation_id(correlation_id: str) -> Tuple[str, int]:
    kind, _, raw_id = (correlation_id or "").partition(":")
    if kind not in (TOPUP_CORRELATION_PREFIX, INVOICE_CORRELATION_PREFIX) or not raw_id.isdigit():
        raise InvalidArgumentError(
            f"Unrecognised correlation id: {correlation_id!r}",
            details={"correlation_id": correlation_id},
        )
    return kind, int(raw_id)


class PaymentReconciler:
    """Turns confirmed or failed external payments into ledger and invoice transitions"""

    def __init__(
        self,
        session: AsyncSession,
        ledger: Optional[LedgerService] = None,
        invoices: Optional[InvoiceService] = None,
        subscriptions: Optional[SubscriptionManager] = None,
    ):
        self.session = session
        self.ledger = ledger or LedgerService(session)
        self.invoices = invoices or InvoiceService(session)
        self.subscriptions = subscriptions or SubscriptionManager(
            session, ledger=self.ledger, invoices=self.invoices
        )

    async def confirm(self, confirmation: PaymentConfirmation) -> Union[LedgerEntry, Invoice]:
        """Settle the top-up or invoice named by the correlation id.

        A target owned by another tenant is reported as missing. The confirmed
        amount must match the expected amount to the cent. Repeating a
        confirmation with the same reference changes nothing.
        """
        kind, target_id = parse_correlation_id(confirmation.correlation_id)
        amount = positive_money(confirmation.amount_confirmed, "amount_confirmed")

        async with atomic(self.session):
            if kind == TOPUP_CORRELATION_PREFIX:
                entry = await self.ledger.get_entry_for_tenant(target_id, confirmation.tenant_id)
                _check_amount(entry.amount, amount, confirmation.correlation_id)
                result = await self.ledger.complete_topup(entry.id, confirmation.external_reference)
            else:
                invoice = await self.invoices.get_for_tenant(target_id, confirmation.tenant_id)
                _check_amount(invoice.amount, amount, confirmation.correlation_id)
                result = await self.invoices.mark_paid(invoice.id, payment_reference=confirmation.external_reference)
                if invoice.subscription_id is not None:
                    subscription = await self.subscriptions.get(invoice.subscription_id)
                    if subscription.status in ACTIVATABLE_SUBSCRIPTION_STATUSES:
                        await self.subscriptions.activate(subscription.id)

        logger.info(
            f"Payment {confirmation.external_reference} applied to {confirmation.correlation_id}",
            extra={"tenant_id": confirmation.tenant_id},
        )
        return result

    async def settle_checkout(
        self, provider: PaymentProviderClient, checkout_id: str, tenant_id: str
    ) -> Union[LedgerEntry, Invoice]:
        """Ask the provider how a checkout ended and confirm it if it was paid.

        An unpaid checkout changes nothing; the provider may still settle it
        and the webhook will deliver the outcome.
        """
        payment = await provider.get_payment_status(checkout_id)
        if not payment["success"]:
            raise InvalidArgumentError(
                "Payment not completed",
                details={"checkout_id": checkout_id, "result_code": payment["result_code"]},
            )

        return await self.confirm(PaymentConfirmation(
            external_reference=payment["transaction_id"] or checkout_id,
            amount_confirmed=payment["amount"],
            tenant_id=tenant_id,
            correlation_id=payment["correlation_id"],
        ))

    async def fail(
        self, correlation_id: str, tenant_id: str, reason: Optional[str] = None
    ) -> Union[LedgerEntry, Invoice]:
        kind, target_id = parse_correlation_id(correlation_id)

        async with atomic(self.session):
            if kind == TOPUP_CORRELATION_PREFIX:
                entry = await self.ledger.get_entry_for_tenant(target_id, tenant_id)
                return await self.ledger.fail_topup(entry.id, reason=reason)

            invoice = await self.invoices.get_for_tenant(target_id, tenant_id)
            return await self.invoices.mark_failed(invoice.id, reason=reason)


def _check_amount(expected: Decimal, confirmed: Decimal, correlation_id: str) -> None:
    if to_money(expected) != confirmed:
        raise InvalidArgumentError(
            "Confirmed amount does not match",
            details={
                "correlation_id": correlation_id,
                "expected": str(to_money(expected)),
                "confirmed": str(confirmed),
            },
        )
