"""
Invoice service: billing documents and their payment lifecycle.

An invoice says what is owed; how it is paid (wallet debit or external
provider) is recorded on it but decided elsewhere. Nothing here retries a
charge on its own: ``retry`` is always an explicit caller action.
"""
import secrets
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.config import settings
from proxyrent.core.constants import (
    InvoiceStatus,
    PaymentMethod,
    RETRYABLE_INVOICE_STATUSES,
)
from proxyrent.core.exceptions import (
    ConflictError,
    DuplicateError,
    InvalidArgumentError,
    NotFoundError,
)
from proxyrent.core.logging import logger
from proxyrent.core.money import Amount, positive_money, to_money
from proxyrent.core.time import utcnow
from proxyrent.db.database import atomic
from proxyrent.db.models.invoice import Invoice
from proxyrent.db.repositories.invoice_repository import InvoiceRepository


def generate_invoice_number(tenant_id: str, now: Optional[datetime] = None) -> str:
    """INV-<yyyymmdd>-U<tenant>-<6 random digits>"""
    now = now or utcnow()
    return f"INV-{now:%Y%m%d}-U{tenant_id}-{secrets.randbelow(1_000_000):06d}"


class InvoiceService:
    """Service for invoice creation, payment and reporting"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.invoices = InvoiceRepository(session)

    async def create_invoice(
        self,
        tenant_id: str,
        amount: Amount,
        currency: Optional[str] = None,
        payment_method: str = PaymentMethod.EXTERNAL.value,
        due_date: Optional[datetime] = None,
        subscription_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        invoice_number: Optional[str] = None,
    ) -> Invoice:
        """Insert a pending invoice under a fresh per-tenant number.

        Generated numbers are re-rolled on collision up to
        INVOICE_NUMBER_MAX_ATTEMPTS times; an explicit ``invoice_number`` is
        tried once. Both end in DuplicateError when no free number is found.
        """
        value = positive_money(amount)
        method = parse_payment_method(payment_method)
        attempts = 1 if invoice_number else settings.INVOICE_NUMBER_MAX_ATTEMPTS

        async with atomic(self.session):
            for _ in range(attempts):
                number = invoice_number or generate_invoice_number(tenant_id)
                if await self.invoices.number_taken(tenant_id, number):
                    continue
                try:
                    async with self.session.begin_nested():
                        invoice = await self.invoices.create({
                            "tenant_id": tenant_id,
                            "subscription_id": subscription_id,
                            "invoice_number": number,
                            "amount": value,
                            "currency": currency or settings.DEFAULT_CURRENCY,
                            "status": InvoiceStatus.PENDING.value,
                            "payment_method": method,
                            "payment_provider": "external" if method == PaymentMethod.EXTERNAL.value else None,
                            "due_date": due_date,
                            "meta": dict(metadata) if metadata else None,
                        })
                except IntegrityError:
                    # Lost a race for the same number
                    continue
                break
            else:
                raise DuplicateError(
                    "Could not allocate a unique invoice number",
                    details={"tenant_id": tenant_id, "attempts": attempts},
                )

        logger.info(
            f"Invoice {invoice.invoice_number} created for {value}",
            extra={"tenant_id": tenant_id, "invoice_id": invoice.id},
        )
        return invoice

    async def mark_paid(
        self,
        invoice_id: int,
        payment_reference: Optional[str] = None,
        wallet_entry_id: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Invoice:
        async with atomic(self.session):
            invoice = await self._get_live(invoice_id, for_update=True)
            if invoice.status == InvoiceStatus.PAID.value:
                if payment_reference and invoice.payment_reference == payment_reference:
                    return invoice
                raise ConflictError("Invoice is already paid", details={"invoice_id": invoice_id})

            changes: Dict[str, Any] = {
                "status": InvoiceStatus.PAID.value,
                "paid_at": now or utcnow(),
                "payment_reference": payment_reference,
                "wallet_entry_id": wallet_entry_id,
            }
            if metadata:
                changes["meta"] = {**(invoice.meta or {}), **metadata}
            await self.invoices.apply(invoice, changes)

        logger.info(f"Invoice {invoice.invoice_number} paid", extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice_id})
        return invoice

    async def cancel(self, invoice_id: int, reason: Optional[str] = None) -> Invoice:
        """Cancel, keeping prior metadata keys and adding ``cancel_reason``"""
        async with atomic(self.session):
            invoice = await self._get_live(invoice_id, for_update=True)
            if invoice.status == InvoiceStatus.PAID.value:
                raise ConflictError("Paid invoices cannot be cancelled", details={"invoice_id": invoice_id})

            changes: Dict[str, Any] = {"status": InvoiceStatus.CANCELLED.value}
            if reason:
                changes["meta"] = {**(invoice.meta or {}), "cancel_reason": reason}
            await self.invoices.apply(invoice, changes)

        logger.info(
            f"Invoice {invoice.invoice_number} cancelled",
            extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice_id},
        )
        return invoice

    async def mark_failed(self, invoice_id: int, reason: Optional[str] = None) -> Invoice:
        async with atomic(self.session):
            invoice = await self._get_live(invoice_id, for_update=True)
            if invoice.status == InvoiceStatus.PAID.value:
                raise ConflictError("Paid invoices cannot fail", details={"invoice_id": invoice_id})

            changes: Dict[str, Any] = {"status": InvoiceStatus.FAILED.value}
            if reason:
                changes["meta"] = {**(invoice.meta or {}), "failure_reason": reason}
            await self.invoices.apply(invoice, changes)

        logger.warning(
            f"Invoice {invoice.invoice_number} failed",
            extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice_id},
        )
        return invoice

    async def retry(self, invoice_id: int) -> Invoice:
        """Reopen a failed or cancelled invoice so the charge can be attempted again"""
        async with atomic(self.session):
            invoice = await self._get_live(invoice_id, for_update=True)
            if invoice.status not in RETRYABLE_INVOICE_STATUSES:
                raise InvalidArgumentError(
                    f"Cannot retry an invoice that is {invoice.status}",
                    details={"invoice_id": invoice_id, "status": invoice.status},
                )
            await self.invoices.apply(invoice, {
                "status": InvoiceStatus.PENDING.value,
                "paid_at": None,
                "payment_reference": None,
                "wallet_entry_id": None,
            })

        logger.info(
            f"Invoice {invoice.invoice_number} reopened for retry",
            extra={"tenant_id": invoice.tenant_id, "invoice_id": invoice_id},
        )
        return invoice

    async def delete(self, invoice_id: int, now: Optional[datetime] = None) -> Invoice:
        async with atomic(self.session):
            invoice = await self._get_live(invoice_id, for_update=True)
            await self.invoices.apply(invoice, {"deleted_at": now or utcnow()})
        return invoice

    # ==================== Reporting ====================

    async def summary(self, tenant_id: str) -> Dict[str, Any]:
        """Amounts and counts by status over the tenant's non-deleted invoices"""
        totals = {status.value: (0, Decimal("0")) for status in InvoiceStatus}
        for status, count, amount in await self.invoices.totals_by_status(tenant_id):
            totals[status] = (count, to_money(amount))

        return {
            "total_paid": totals[InvoiceStatus.PAID.value][1],
            "total_pending": totals[InvoiceStatus.PENDING.value][1],
            "total_cancelled": totals[InvoiceStatus.CANCELLED.value][1],
            "total_failed": totals[InvoiceStatus.FAILED.value][1],
            "invoice_count": sum(count for count, _ in totals.values()),
            "paid_invoice_count": totals[InvoiceStatus.PAID.value][0],
            "pending_invoice_count": totals[InvoiceStatus.PENDING.value][0],
            "cancelled_invoice_count": totals[InvoiceStatus.CANCELLED.value][0],
            "failed_invoice_count": totals[InvoiceStatus.FAILED.value][0],
        }

    async def total_paid_in_month(
        self, tenant_id: str, year: Optional[int] = None, month: Optional[int] = None
    ) -> Decimal:
        today = utcnow()
        year = year or today.year
        month = month or today.month
        if not 1 <= month <= 12:
            raise InvalidArgumentError("month must be between 1 and 12", details={"month": month})

        start = datetime(year, month, 1)
        end = datetime(year + 1, 1, 1) if month == 12 else datetime(year, month + 1, 1)
        return to_money(await self.invoices.total_paid_between(tenant_id, start, end))

    async def archive_settled(self, older_than_days: Optional[int] = None, now: Optional[datetime] = None) -> int:
        """Soft-delete paid and cancelled invoices created before the cutoff"""
        older_than_days = settings.INVOICE_ARCHIVE_DAYS if older_than_days is None else older_than_days
        now = now or utcnow()
        async with atomic(self.session):
            archived = await self.invoices.archive_settled_before(now - timedelta(days=older_than_days), now)
        if archived:
            logger.info(f"Archived {archived} settled invoices")
        return archived

    # ==================== Reads ====================

    async def get(self, invoice_id: int) -> Invoice:
        return await self._get_live(invoice_id)

    async def get_for_tenant(self, invoice_id: int, tenant_id: str) -> Invoice:
        invoice = await self.invoices.get_live(invoice_id)
        if not invoice or invoice.tenant_id != tenant_id:
            raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        return invoice

    async def get_by_number(self, tenant_id: str, invoice_number: str) -> Invoice:
        invoice = await self.invoices.get_by_number(tenant_id, invoice_number)
        if not invoice:
            raise NotFoundError("Invoice not found", details={"invoice_number": invoice_number})
        return invoice

    async def list_for_tenant(self, tenant_id: str, include_deleted: bool = False) -> List[Invoice]:
        return await self.invoices.list_for_tenant(tenant_id, include_deleted=include_deleted)

    async def list_for_subscription(self, subscription_id: int) -> List[Invoice]:
        return await self.invoices.list_for_subscription(subscription_id)

    async def _get_live(self, invoice_id: int, for_update: bool = False) -> Invoice:
        invoice = await self.invoices.get_live(invoice_id, for_update=for_update)
        if not invoice:
            raise NotFoundError("Invoice not found", details={"invoice_id": invoice_id})
        return invoice


def parse_payment_method(value: str) -> str:
    try:
        return PaymentMethod(value).value
    except ValueError:
        raise InvalidArgumentError(f"Unknown payment method: {value}")
