"""
Wallet ledger: append-only credits and debits per tenant.

The balance is always derived from the entries. Balance-checked debits lock
the tenant row first, so two debits for the same tenant cannot both pass
the funds check against the same stale balance.
"""
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.config import settings
from proxyrent.core.constants import EntryStatus, EntryType
from proxyrent.core.exceptions import ConflictError, InsufficientFundsError, NotFoundError
from proxyrent.core.logging import logger
from proxyrent.core.money import Amount, positive_money, to_money
from proxyrent.db.database import atomic
from proxyrent.db.models.ledger import LedgerEntry
from proxyrent.db.repositories.ledger_repository import LedgerRepository
from proxyrent.db.repositories.tenant_repository import TenantRepository


class LedgerService:
    """Service for wallet entries and balance derivation"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.entries = LedgerRepository(session)
        self.tenants = TenantRepository(session)

    async def balance(self, tenant_id: str) -> Decimal:
        """Settled credits minus settled debits, rounded to cents"""
        return to_money(await self.entries.settled_sum(tenant_id))

    async def credit(
        self,
        tenant_id: str,
        amount: Amount,
        reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> LedgerEntry:
        value = positive_money(amount)
        async with atomic(self.session):
            entry = await self._insert(
                tenant_id, value, EntryType.CREDIT, EntryStatus.COMPLETED,
                reference=reference, metadata=metadata, currency=currency,
            )
        logger.info(f"Credited {value} to tenant {tenant_id}", extra={"tenant_id": tenant_id, "entry_id": entry.id})
        return entry

    async def debit(
        self,
        tenant_id: str,
        amount: Amount,
        allow_negative: bool = False,
        reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> LedgerEntry:
        """Insert a completed debit.

        Without ``allow_negative`` the debit is refused with
        InsufficientFundsError when it exceeds the balance, and nothing is
        written.
        """
        value = positive_money(amount)
        async with atomic(self.session):
            if not await self.tenants.lock(tenant_id):
                raise NotFoundError("Tenant not found", details={"tenant_id": tenant_id})

            balance = await self.balance(tenant_id)
            if not allow_negative and balance < value:
                raise InsufficientFundsError(
                    "Insufficient balance",
                    details={"balance": str(balance), "amount": str(value)},
                )

            entry = await self._insert(
                tenant_id, value, EntryType.DEBIT, EntryStatus.COMPLETED,
                reference=reference, metadata=metadata, currency=currency,
            )

        logger.info(f"Debited {value} from tenant {tenant_id}", extra={"tenant_id": tenant_id, "entry_id": entry.id})
        return entry

    async def refund(
        self,
        tenant_id: str,
        amount: Amount,
        reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
    ) -> LedgerEntry:
        """Settled credit tagged 'refunded' to tell it apart from top-ups"""
        value = positive_money(amount)
        async with atomic(self.session):
            entry = await self._insert(
                tenant_id, value, EntryType.CREDIT, EntryStatus.REFUNDED,
                reference=reference, metadata=metadata, currency=currency,
            )
        logger.info(f"Refunded {value} to tenant {tenant_id}", extra={"tenant_id": tenant_id, "entry_id": entry.id})
        return entry

    # ==================== External top-ups ====================

    async def create_pending_topup(
        self,
        tenant_id: str,
        amount: Amount,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
        payment_provider: str = "external",
    ) -> LedgerEntry:
        """Pending credit awaiting confirmation from the payment provider"""
        value = positive_money(amount)
        async with atomic(self.session):
            entry = await self._insert(
                tenant_id, value, EntryType.CREDIT, EntryStatus.PENDING,
                metadata=metadata, currency=currency, payment_provider=payment_provider,
            )
        logger.info(f"Top-up of {value} initiated", extra={"tenant_id": tenant_id, "entry_id": entry.id})
        return entry

    async def complete_topup(self, entry_id: int, payment_reference: str) -> LedgerEntry:
        """Settle a pending top-up.

        Completing an entry that is already completed with the same reference
        returns it unchanged; a different reference is a ConflictError.
        """
        async with atomic(self.session):
            entry = await self._get_topup(entry_id)

            if entry.status == EntryStatus.COMPLETED.value:
                if entry.payment_reference == payment_reference:
                    return entry
                raise ConflictError(
                    "Top-up already completed with another reference",
                    details={"entry_id": entry_id},
                )
            if entry.status != EntryStatus.PENDING.value:
                raise ConflictError(
                    f"Top-up is {entry.status}", details={"entry_id": entry_id, "status": entry.status}
                )

            await self.entries.apply(entry, {
                "status": EntryStatus.COMPLETED.value,
                "payment_reference": payment_reference,
            })

        logger.info(
            f"Top-up {entry_id} completed ({payment_reference})",
            extra={"tenant_id": entry.tenant_id, "entry_id": entry_id},
        )
        return entry

    async def fail_topup(self, entry_id: int, reason: Optional[str] = None) -> LedgerEntry:
        async with atomic(self.session):
            entry = await self._get_topup(entry_id)
            if entry.status == EntryStatus.FAILED.value:
                return entry
            if entry.status != EntryStatus.PENDING.value:
                raise ConflictError(
                    f"Top-up is {entry.status}", details={"entry_id": entry_id, "status": entry.status}
                )
            changes: Dict[str, Any] = {"status": EntryStatus.FAILED.value}
            if reason:
                changes["meta"] = {**(entry.meta or {}), "failure_reason": reason}
            await self.entries.apply(entry, changes)

        logger.warning(f"Top-up {entry_id} failed", extra={"tenant_id": entry.tenant_id, "entry_id": entry_id})
        return entry

    # ==================== Reads ====================

    async def history(self, tenant_id: str) -> List[LedgerEntry]:
        """All non-deleted entries, newest first"""
        return await self.entries.history(tenant_id)

    async def get_entry_for_tenant(self, entry_id: int, tenant_id: str) -> LedgerEntry:
        entry = await self.entries.get_live(entry_id)
        if not entry or entry.tenant_id != tenant_id:
            raise NotFoundError("Ledger entry not found", details={"entry_id": entry_id})
        return entry

    async def _get_topup(self, entry_id: int) -> LedgerEntry:
        entry = await self.entries.get_live(entry_id, for_update=True)
        if not entry or entry.entry_type != EntryType.CREDIT.value:
            raise NotFoundError("Top-up not found", details={"entry_id": entry_id})
        return entry

    async def _insert(
        self,
        tenant_id: str,
        amount: Decimal,
        entry_type: EntryType,
        status: EntryStatus,
        reference: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        currency: Optional[str] = None,
        payment_provider: Optional[str] = None,
    ) -> LedgerEntry:
        return await self.entries.create({
            "tenant_id": tenant_id,
            "amount": amount,
            "currency": currency or settings.DEFAULT_CURRENCY,
            "entry_type": entry_type.value,
            "status": status.value,
            "payment_provider": payment_provider,
            "payment_reference": reference,
            "meta": dict(metadata) if metadata else None,
        })
