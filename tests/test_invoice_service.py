"""
Tests for invoices

Numbers are unique per tenant, payment is recorded once, and failed or
cancelled invoices reopen only through an explicit retry.
"""
import re
import pytest
from datetime import datetime, timedelta
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.exceptions import (
    ConflictError,
    DuplicateError,
    InvalidArgumentError,
    NotFoundError,
)
from proxyrent.core.time import utcnow
from proxyrent.services import invoice_service
from proxyrent.services.invoice_service import InvoiceService, generate_invoice_number


@pytest.mark.asyncio
class TestInvoiceService:
    """Test suite for invoice lifecycle and reporting"""

    @pytest.fixture
    async def invoices(self, db_session: AsyncSession):
        return InvoiceService(db_session)

    # ==================== Numbering ====================

    async def test_generated_number_format(self):
        number = generate_invoice_number("tenant-1", now=datetime(2024, 5, 17))

        assert re.fullmatch(r"INV-20240517-Utenant-1-\d{6}", number)

    async def test_create_invoice_is_pending(self, invoices: InvoiceService, tenant_id: str):
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"), metadata={"source": "test"})

        assert invoice.status == "pending"
        assert invoice.payment_method == "external"
        assert invoice.currency == "USD"
        assert invoice.meta == {"source": "test"}
        assert invoice.invoice_number.startswith("INV-")

    async def test_explicit_number_collision(self, invoices: InvoiceService, tenant_id: str):
        await invoices.create_invoice(tenant_id, Decimal("10.00"), invoice_number="INV-CUSTOM-1")

        with pytest.raises(DuplicateError):
            await invoices.create_invoice(tenant_id, Decimal("10.00"), invoice_number="INV-CUSTOM-1")

    async def test_same_number_allowed_for_other_tenant(
        self, invoices: InvoiceService, tenant_id: str, other_tenant_id: str
    ):
        await invoices.create_invoice(tenant_id, Decimal("10.00"), invoice_number="INV-CUSTOM-1")
        other = await invoices.create_invoice(other_tenant_id, Decimal("10.00"), invoice_number="INV-CUSTOM-1")

        assert other.tenant_id == other_tenant_id

    async def test_generated_number_rerolled_until_exhausted(
        self, invoices: InvoiceService, monkeypatch, tenant_id: str
    ):
        """
        Test: The generator keeps producing a number that is already taken

        Expected:
        - The first invoice takes the number
        - The second gives up with DuplicateError after the configured attempts
        """
        calls = []

        def fixed_number(tenant_id, now=None):
            calls.append(tenant_id)
            return "INV-20240101-Utenant-1-000001"

        monkeypatch.setattr(invoice_service, "generate_invoice_number", fixed_number)

        await invoices.create_invoice(tenant_id, Decimal("10.00"))
        with pytest.raises(DuplicateError):
            await invoices.create_invoice(tenant_id, Decimal("10.00"))

        assert len(calls) == 1 + invoice_service.settings.INVOICE_NUMBER_MAX_ATTEMPTS

    async def test_non_positive_amount_rejected(self, invoices: InvoiceService, tenant_id: str):
        with pytest.raises(InvalidArgumentError):
            await invoices.create_invoice(tenant_id, Decimal("0.00"))

    async def test_unknown_payment_method_rejected(self, invoices: InvoiceService, tenant_id: str):
        with pytest.raises(InvalidArgumentError):
            await invoices.create_invoice(tenant_id, Decimal("10.00"), payment_method="cheque")

    # ==================== Lifecycle ====================

    async def test_mark_paid_is_idempotent_per_reference(self, invoices: InvoiceService, tenant_id: str):
        """
        Test: Pay an invoice, then repeat with the same and a different reference

        Expected:
        - First call sets status and paid_at
        - Same reference returns the invoice unchanged
        - Different reference is a conflict
        """
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"))
        invoice_id = invoice.id

        paid = await invoices.mark_paid(invoice_id, payment_reference="pay_1")
        paid_at = paid.paid_at
        assert paid.status == "paid"
        assert paid_at is not None

        again = await invoices.mark_paid(invoice_id, payment_reference="pay_1")
        assert again.paid_at == paid_at

        with pytest.raises(ConflictError):
            await invoices.mark_paid(invoice_id, payment_reference="pay_2")

    async def test_cancel_keeps_existing_metadata(self, invoices: InvoiceService, tenant_id: str):
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"), metadata={"source": "test"})

        cancelled = await invoices.cancel(invoice.id, reason="customer request")

        assert cancelled.status == "cancelled"
        assert cancelled.meta == {"source": "test", "cancel_reason": "customer request"}

    async def test_paid_invoice_cannot_be_cancelled(self, invoices: InvoiceService, tenant_id: str):
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"))
        invoice_id = invoice.id
        await invoices.mark_paid(invoice_id, payment_reference="pay_1")

        with pytest.raises(ConflictError):
            await invoices.cancel(invoice_id)
        with pytest.raises(ConflictError):
            await invoices.mark_failed(invoice_id)

    async def test_retry_reopens_failed_invoice(self, invoices: InvoiceService, tenant_id: str):
        """
        Test: Fail an invoice and retry it

        Expected:
        - Failure reason is kept in metadata
        - Retry puts the invoice back to pending
        - Retrying a pending invoice is rejected
        """
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"))
        invoice_id = invoice.id

        failed = await invoices.mark_failed(invoice_id, reason="insufficient_funds")
        assert failed.status == "failed"
        assert failed.meta == {"failure_reason": "insufficient_funds"}

        retried = await invoices.retry(invoice_id)
        assert retried.status == "pending"
        assert retried.paid_at is None

        with pytest.raises(InvalidArgumentError):
            await invoices.retry(invoice_id)

    async def test_unknown_invoice(self, invoices: InvoiceService, tenant_id: str):
        with pytest.raises(NotFoundError):
            await invoices.mark_paid(9999)

    async def test_tenant_scoped_lookup(
        self, invoices: InvoiceService, tenant_id: str, other_tenant_id: str
    ):
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"))

        assert (await invoices.get_by_number(tenant_id, invoice.invoice_number)).id == invoice.id
        with pytest.raises(NotFoundError):
            await invoices.get_for_tenant(invoice.id, other_tenant_id)
        with pytest.raises(NotFoundError):
            await invoices.get_by_number(other_tenant_id, invoice.invoice_number)

    async def test_deleted_invoice_is_hidden(self, invoices: InvoiceService, tenant_id: str):
        invoice = await invoices.create_invoice(tenant_id, Decimal("49.00"))
        invoice_id = invoice.id

        await invoices.delete(invoice_id)

        with pytest.raises(NotFoundError):
            await invoices.get(invoice_id)
        assert await invoices.list_for_tenant(tenant_id) == []

    # ==================== Reporting ====================

    async def test_summary_by_status(self, invoices: InvoiceService, tenant_id: str, other_tenant_id: str):
        """
        Test: Summarize paid, pending, cancelled and failed invoices

        Expected:
        - Amounts and counts per status
        - Other tenants' invoices are excluded
        """
        paid = await invoices.create_invoice(tenant_id, Decimal("10.00"))
        await invoices.mark_paid(paid.id, payment_reference="pay_1")
        await invoices.create_invoice(tenant_id, Decimal("20.00"))
        cancelled = await invoices.create_invoice(tenant_id, Decimal("5.00"))
        await invoices.cancel(cancelled.id)
        failed = await invoices.create_invoice(tenant_id, Decimal("7.50"))
        await invoices.mark_failed(failed.id)
        await invoices.create_invoice(other_tenant_id, Decimal("999.00"))

        summary = await invoices.summary(tenant_id)

        assert summary["total_paid"] == Decimal("10.00")
        assert summary["total_pending"] == Decimal("20.00")
        assert summary["total_cancelled"] == Decimal("5.00")
        assert summary["total_failed"] == Decimal("7.50")
        assert summary["invoice_count"] == 4
        assert summary["paid_invoice_count"] == 1
        assert summary["pending_invoice_count"] == 1

    async def test_summary_of_no_invoices(self, invoices: InvoiceService, tenant_id: str):
        summary = await invoices.summary(tenant_id)

        assert summary["total_paid"] == Decimal("0")
        assert summary["invoice_count"] == 0

    async def test_total_paid_in_month(self, invoices: InvoiceService, tenant_id: str):
        may = await invoices.create_invoice(tenant_id, Decimal("49.00"))
        await invoices.mark_paid(may.id, payment_reference="pay_may", now=datetime(2024, 5, 20))
        june = await invoices.create_invoice(tenant_id, Decimal("59.00"))
        await invoices.mark_paid(june.id, payment_reference="pay_june", now=datetime(2024, 6, 2))

        assert await invoices.total_paid_in_month(tenant_id, 2024, 5) == Decimal("49.00")
        assert await invoices.total_paid_in_month(tenant_id, 2024, 6) == Decimal("59.00")
        assert await invoices.total_paid_in_month(tenant_id, 2024, 7) == Decimal("0.00")

    async def test_archive_settled_keeps_open_invoices(self, invoices: InvoiceService, tenant_id: str):
        paid = await invoices.create_invoice(tenant_id, Decimal("10.00"))
        await invoices.mark_paid(paid.id, payment_reference="pay_1")
        pending = await invoices.create_invoice(tenant_id, Decimal("20.00"))
        pending_id = pending.id

        archived = await invoices.archive_settled(older_than_days=30, now=utcnow() + timedelta(days=60))

        assert archived == 1
        assert [i.id for i in await invoices.list_for_tenant(tenant_id)] == [pending_id]
