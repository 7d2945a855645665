"""
Tests for the wallet ledger

Balance is derived, never stored: settled credits minus settled debits.
A refused debit must leave no trace.
"""
import asyncio
import os
import random
import pytest
from decimal import Decimal
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.exceptions import (
    ConflictError,
    InsufficientFundsError,
    InvalidArgumentError,
    NotFoundError,
)
from proxyrent.services.ledger_service import LedgerService

SQLITE = os.environ.get("TEST_DATABASE_URL", "sqlite").startswith("sqlite")


@pytest.mark.asyncio
class TestLedgerService:
    """Test suite for credits, debits and top-ups"""

    @pytest.fixture
    async def ledger(self, db_session: AsyncSession):
        return LedgerService(db_session)

    # ==================== Balance ====================

    async def test_credit_then_debit(self, ledger: LedgerService, tenant_id: str):
        """
        Test: Credit 100.00, debit 49.00, then try to debit 60.00

        Expected:
        - Balance is 51.00 after the first debit
        - The 60.00 debit is refused and nothing is written
        """
        await ledger.credit(tenant_id, Decimal("100.00"))
        await ledger.debit(tenant_id, Decimal("49.00"))

        assert await ledger.balance(tenant_id) == Decimal("51.00")

        with pytest.raises(InsufficientFundsError):
            await ledger.debit(tenant_id, Decimal("60.00"))

        assert await ledger.balance(tenant_id) == Decimal("51.00")
        assert len(await ledger.history(tenant_id)) == 2

    async def test_empty_wallet_balance_is_zero(self, ledger: LedgerService, tenant_id: str):
        assert await ledger.balance(tenant_id) == Decimal("0.00")

    async def test_allow_negative_overdraws(self, ledger: LedgerService, tenant_id: str):
        await ledger.credit(tenant_id, Decimal("10.00"))
        await ledger.debit(tenant_id, Decimal("25.50"), allow_negative=True)

        assert await ledger.balance(tenant_id) == Decimal("-15.50")

    async def test_refund_counts_toward_balance(self, ledger: LedgerService, tenant_id: str):
        await ledger.credit(tenant_id, Decimal("20.00"))
        await ledger.debit(tenant_id, Decimal("20.00"))
        refund = await ledger.refund(tenant_id, Decimal("5.00"), reference="allocation:1")

        assert refund.status == "refunded"
        assert await ledger.balance(tenant_id) == Decimal("5.00")

    async def test_balances_are_per_tenant(
        self, ledger: LedgerService, tenant_id: str, other_tenant_id: str
    ):
        await ledger.credit(tenant_id, Decimal("30.00"))
        await ledger.credit(other_tenant_id, Decimal("7.25"))

        assert await ledger.balance(tenant_id) == Decimal("30.00")
        assert await ledger.balance(other_tenant_id) == Decimal("7.25")

    async def test_non_positive_amounts_rejected(self, ledger: LedgerService, tenant_id: str):
        with pytest.raises(InvalidArgumentError):
            await ledger.credit(tenant_id, Decimal("0"))
        with pytest.raises(InvalidArgumentError):
            await ledger.debit(tenant_id, Decimal("-5"))

    async def test_debit_unknown_tenant(self, ledger: LedgerService, tenant_id: str):
        with pytest.raises(NotFoundError):
            await ledger.debit("no-such-tenant", Decimal("1.00"))

    async def test_balance_matches_running_total(self, ledger: LedgerService, tenant_id: str):
        """
        Test: A seeded sequence of credits and debits

        Expected:
        - After every step the balance equals the running total of what was accepted
        - Refused debits change nothing
        """
        rng = random.Random(20240501)
        expected = Decimal("0.00")

        for _ in range(40):
            amount = Decimal(rng.randint(1, 20000)) / 100
            if rng.random() < 0.5:
                await ledger.credit(tenant_id, amount)
                expected += amount
            elif amount <= expected:
                await ledger.debit(tenant_id, amount)
                expected -= amount
            else:
                with pytest.raises(InsufficientFundsError):
                    await ledger.debit(tenant_id, amount)

            assert await ledger.balance(tenant_id) == expected
            assert expected >= 0

    async def test_debit_locks_tenant_before_reading_balance(
        self, monkeypatch, ledger: LedgerService, funded_tenant_id: str
    ):
        """The balance check runs under the tenant row lock"""
        calls = []
        lock, balance = ledger.tenants.lock, ledger.balance

        async def recording_lock(tenant_id):
            calls.append("lock")
            return await lock(tenant_id)

        async def recording_balance(tenant_id):
            calls.append("balance")
            return await balance(tenant_id)

        monkeypatch.setattr(ledger.tenants, "lock", recording_lock)
        monkeypatch.setattr(ledger, "balance", recording_balance)

        await ledger.debit(funded_tenant_id, Decimal("10.00"))

        assert calls == ["lock", "balance"]

    @pytest.mark.skipif(SQLITE, reason="needs a server database with row locks")
    async def test_concurrent_debits_cannot_overdraw(
        self, db_session: AsyncSession, session_factory, funded_tenant_id: str
    ):
        """
        Test: Ten debits of 30.00 race against a balance of 100.00

        Expected:
        - Exactly three succeed, the rest are refused
        - Balance ends at 10.00, never below zero
        """
        await db_session.close()

        async def debit_once():
            async with session_factory() as session:
                return await LedgerService(session).debit(funded_tenant_id, Decimal("30.00"))

        results = await asyncio.gather(*(debit_once() for _ in range(10)), return_exceptions=True)

        refused = [r for r in results if isinstance(r, InsufficientFundsError)]
        assert len(refused) == 7
        assert len(results) - len(refused) == 3
        assert await LedgerService(db_session).balance(funded_tenant_id) == Decimal("10.00")

    # ==================== Top-ups ====================

    async def test_pending_topup_not_counted(self, ledger: LedgerService, tenant_id: str):
        entry = await ledger.create_pending_topup(tenant_id, Decimal("50.00"))

        assert entry.status == "pending"
        assert entry.payment_provider == "external"
        assert await ledger.balance(tenant_id) == Decimal("0.00")

    async def test_complete_topup_settles_once(self, ledger: LedgerService, tenant_id: str):
        """
        Test: Complete a top-up, then repeat with the same and a different reference

        Expected:
        - Balance rises by the top-up amount exactly once
        - The same reference is a no-op
        - A different reference is a conflict
        """
        entry = await ledger.create_pending_topup(tenant_id, Decimal("50.00"))
        entry_id = entry.id

        completed = await ledger.complete_topup(entry_id, "pay_123")
        assert completed.status == "completed"
        assert completed.payment_reference == "pay_123"

        await ledger.complete_topup(entry_id, "pay_123")
        assert await ledger.balance(tenant_id) == Decimal("50.00")

        with pytest.raises(ConflictError):
            await ledger.complete_topup(entry_id, "pay_456")
        assert await ledger.balance(tenant_id) == Decimal("50.00")

    async def test_failed_topup_records_reason(self, ledger: LedgerService, tenant_id: str):
        entry = await ledger.create_pending_topup(tenant_id, Decimal("50.00"), metadata={"source": "checkout"})
        entry_id = entry.id

        failed = await ledger.fail_topup(entry_id, reason="card_declined")

        assert failed.status == "failed"
        assert failed.meta == {"source": "checkout", "failure_reason": "card_declined"}
        assert await ledger.balance(tenant_id) == Decimal("0.00")

        with pytest.raises(ConflictError):
            await ledger.complete_topup(entry_id, "pay_late")

    async def test_debit_is_not_a_topup(self, ledger: LedgerService, tenant_id: str):
        await ledger.credit(tenant_id, Decimal("10.00"))
        debit = await ledger.debit(tenant_id, Decimal("5.00"))

        with pytest.raises(NotFoundError):
            await ledger.complete_topup(debit.id, "pay_123")

    async def test_entry_lookup_is_tenant_scoped(
        self, ledger: LedgerService, tenant_id: str, other_tenant_id: str
    ):
        entry = await ledger.create_pending_topup(tenant_id, Decimal("50.00"))

        assert (await ledger.get_entry_for_tenant(entry.id, tenant_id)).id == entry.id
        with pytest.raises(NotFoundError):
            await ledger.get_entry_for_tenant(entry.id, other_tenant_id)
