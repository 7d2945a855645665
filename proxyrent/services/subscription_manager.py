"""
Subscription manager: recurring commitments and their coupling to allocations.

``subscribe_to_proxy`` is the combined "pay + lease" operation. Subscription,
charge, invoice, allocation and proxy status are written in one unit of work
and either all land or none do.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.config import settings
from proxyrent.core.constants import (
    InvoiceStatus,
    PaymentMethod,
    SubscriptionStatus,
    SUBSCRIPTION_TRANSITIONS,
)
from proxyrent.core.exceptions import (
    InsufficientFundsError,
    InvalidArgumentError,
    NotFoundError,
    ResourceUnavailableError,
)
from proxyrent.core.logging import logger
from proxyrent.core.money import Amount, positive_money
from proxyrent.core.time import utcnow
from proxyrent.db.database import atomic
from proxyrent.db.models.allocation import Allocation
from proxyrent.db.models.invoice import Invoice
from proxyrent.db.models.subscription import Subscription
from proxyrent.db.repositories.subscription_repository import SubscriptionRepository
from proxyrent.services.allocation_manager import AllocationManager
from proxyrent.services.invoice_service import InvoiceService, parse_payment_method
from proxyrent.services.ledger_service import LedgerService


@dataclass
class ProxySubscription:
    """Result of subscribing to a proxy"""
    subscription: Subscription
    allocation: Allocation
    invoice: Invoice


class SubscriptionManager:
    """Orchestrates subscriptions, their charges and the allocations they fund"""

    def __init__(
        self,
        session: AsyncSession,
        allocations: Optional[AllocationManager] = None,
        ledger: Optional[LedgerService] = None,
        invoices: Optional[InvoiceService] = None,
    ):
        self.session = session
        self.subscriptions = SubscriptionRepository(session)
        self.allocation_manager = allocations or AllocationManager(session)
        self.pool = self.allocation_manager.pool
        self.ledger = ledger or LedgerService(session)
        self.invoices = invoices or InvoiceService(session)

    # ==================== Creation ====================

    async def create_subscription(
        self,
        tenant_id: str,
        amount_monthly: Amount,
        payment_method: str,
        currency: Optional[str] = None,
        external_subscription_id: Optional[str] = None,
        external_price_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Create a subscription and bill its first period.

        Wallet subscriptions are debited immediately, start ``active`` and get
        a paid invoice. External ones start ``incomplete`` with a pending
        invoice until the provider confirms payment.
        """
        subscription, _ = await self._create(
            tenant_id, positive_money(amount_monthly, "amount_monthly"), parse_payment_method(payment_method),
            currency=currency,
            external_subscription_id=external_subscription_id,
            external_price_id=external_price_id,
            metadata=metadata,
            now=now or utcnow(),
        )
        return subscription

    async def subscribe_to_proxy(
        self,
        tenant_id: str,
        proxy_id: int,
        price_monthly: Amount,
        payment_method: str,
        currency: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> ProxySubscription:
        price = positive_money(price_monthly, "price_monthly")
        method = parse_payment_method(payment_method)
        now = now or utcnow()

        async with atomic(self.session):
            if not await self.pool.is_available(proxy_id, now):
                raise ResourceUnavailableError("Proxy is not available", details={"proxy_id": proxy_id})

            subscription, invoice = await self._create(
                tenant_id, price, method, currency=currency, metadata=metadata, now=now
            )
            allocation = await self.allocation_manager.allocate(
                tenant_id, proxy_id, price, subscription_id=subscription.id, now=now
            )

        logger.info(
            f"Tenant {tenant_id} subscribed to proxy {proxy_id} ({method})",
            extra={
                "tenant_id": tenant_id,
                "proxy_id": proxy_id,
                "subscription_id": subscription.id,
                "allocation_id": allocation.id,
            },
        )
        return ProxySubscription(subscription=subscription, allocation=allocation, invoice=invoice)

    async def _create(
        self,
        tenant_id: str,
        amount,
        method: str,
        now: datetime,
        currency: Optional[str] = None,
        external_subscription_id: Optional[str] = None,
        external_price_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Tuple[Subscription, Invoice]:
        wallet = method == PaymentMethod.WALLET.value
        currency = currency or settings.DEFAULT_CURRENCY

        async with atomic(self.session):
            if wallet:
                # Refuse before writing anything; the debit re-checks under lock
                balance = await self.ledger.balance(tenant_id)
                if balance < amount:
                    raise InsufficientFundsError(
                        "Insufficient balance",
                        details={"balance": str(balance), "amount": str(amount)},
                    )

            subscription = await self.subscriptions.create({
                "tenant_id": tenant_id,
                "payment_method": method,
                "status": (SubscriptionStatus.ACTIVE if wallet else SubscriptionStatus.INCOMPLETE).value,
                "amount_monthly": amount,
                "currency": currency,
                "external_subscription_id": external_subscription_id,
                "external_price_id": external_price_id,
                "meta": dict(metadata) if metadata else None,
            })

            if wallet:
                invoice = await self._charge_period(subscription, now, now)
            else:
                invoice = await self.invoices.create_invoice(
                    tenant_id, amount, currency=currency,
                    payment_method=method, due_date=now, subscription_id=subscription.id,
                )

        logger.info(
            f"Subscription {subscription.id} created ({subscription.status})",
            extra={"tenant_id": tenant_id, "subscription_id": subscription.id},
        )
        return subscription, invoice

    async def _charge_period(self, subscription: Subscription, period_start: datetime, now: datetime) -> Invoice:
        """Debit the wallet for one period, record the paid invoice and advance the period"""
        period_end = period_start + timedelta(days=settings.BILLING_PERIOD_DAYS)
        entry = await self.ledger.debit(
            subscription.tenant_id,
            subscription.amount_monthly,
            reference=f"subscription:{subscription.id}",
            metadata={"subscription_id": subscription.id, "period_start": period_start.isoformat()},
            currency=subscription.currency,
        )
        invoice = await self.invoices.create_invoice(
            subscription.tenant_id,
            subscription.amount_monthly,
            currency=subscription.currency,
            payment_method=PaymentMethod.WALLET.value,
            due_date=period_start,
            subscription_id=subscription.id,
        )
        await self.invoices.mark_paid(invoice.id, wallet_entry_id=entry.id, now=now)
        await self.subscriptions.apply(subscription, {
            "current_period_start": period_start,
            "current_period_end": period_end,
        })
        return invoice

    # ==================== Cancellation ====================

    async def cancel(
        self,
        subscription_id: int,
        at_period_end: bool = True,
        tenant_id: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Subscription:
        """Cancel at the end of the current period or immediately.

        At period end, ``cancel_at`` takes the current period end and the
        subscription and its allocations are left running. A subscription with
        no period end gets no cancellation date at all. Immediate cancellation
        expires every active allocation it funds and frees their proxies.

        When ``tenant_id`` is given, a subscription owned by anyone else is
        reported as missing.
        """
        now = now or utcnow()

        async with atomic(self.session):
            subscription = await self._get_for_update(subscription_id, tenant_id)
            if subscription.status == SubscriptionStatus.CANCELED.value:
                return subscription

            if at_period_end:
                if subscription.current_period_end is None:
                    logger.warning(
                        f"Subscription {subscription_id} has no period end; cancel_at left unset",
                        extra={"tenant_id": subscription.tenant_id, "subscription_id": subscription_id},
                    )
                await self.subscriptions.apply(subscription, {"cancel_at": subscription.current_period_end})
            else:
                await self._hard_cancel(subscription, now)

        logger.info(
            f"Subscription {subscription_id} cancelled (at_period_end={at_period_end})",
            extra={"tenant_id": subscription.tenant_id, "subscription_id": subscription_id},
        )
        return subscription

    async def _hard_cancel(self, subscription: Subscription, now: datetime) -> None:
        self._check_transition(subscription, SubscriptionStatus.CANCELED)
        await self.subscriptions.apply(subscription, {
            "status": SubscriptionStatus.CANCELED.value,
            "canceled_at": now,
        })
        await self.allocation_manager.expire_for_subscription(subscription.id, now)

        for invoice in await self.invoices.list_for_subscription(subscription.id):
            if invoice.status == InvoiceStatus.PENDING.value:
                await self.invoices.cancel(invoice.id, reason="subscription_canceled")

    # ==================== Transitions ====================

    async def activate(
        self,
        subscription_id: int,
        period_start: Optional[datetime] = None,
        tenant_id: Optional[str] = None,
    ) -> Subscription:
        """Move to ``active`` and open a billing period starting at ``period_start``"""
        period_start = period_start or utcnow()
        async with atomic(self.session):
            subscription = await self._get_for_update(subscription_id, tenant_id)
            self._check_transition(subscription, SubscriptionStatus.ACTIVE)
            await self.subscriptions.apply(subscription, {
                "status": SubscriptionStatus.ACTIVE.value,
                "current_period_start": period_start,
                "current_period_end": period_start + timedelta(days=settings.BILLING_PERIOD_DAYS),
            })
        self._log_transition(subscription)
        return subscription

    async def mark_past_due(self, subscription_id: int) -> Subscription:
        return await self._transition(subscription_id, SubscriptionStatus.PAST_DUE)

    async def pause(self, subscription_id: int, tenant_id: Optional[str] = None) -> Subscription:
        return await self._transition(subscription_id, SubscriptionStatus.PAUSED, tenant_id)

    async def resume(self, subscription_id: int, tenant_id: Optional[str] = None) -> Subscription:
        """Paused back to active, keeping the current billing period"""
        async with atomic(self.session):
            subscription = await self._get_for_update(subscription_id, tenant_id)
            if subscription.status != SubscriptionStatus.PAUSED.value:
                raise InvalidArgumentError(
                    f"Cannot resume a subscription that is {subscription.status}",
                    details={"subscription_id": subscription_id},
                )
            await self.subscriptions.apply(subscription, {"status": SubscriptionStatus.ACTIVE.value})
        self._log_transition(subscription)
        return subscription

    async def _transition(
        self, subscription_id: int, target: SubscriptionStatus, tenant_id: Optional[str] = None
    ) -> Subscription:
        async with atomic(self.session):
            subscription = await self._get_for_update(subscription_id, tenant_id)
            self._check_transition(subscription, target)
            await self.subscriptions.apply(subscription, {"status": target.value})
        self._log_transition(subscription)
        return subscription

    @staticmethod
    def _check_transition(subscription: Subscription, target: SubscriptionStatus) -> None:
        allowed = SUBSCRIPTION_TRANSITIONS[SubscriptionStatus(subscription.status)]
        if target not in allowed:
            raise InvalidArgumentError(
                f"Cannot move subscription from {subscription.status} to {target.value}",
                details={"subscription_id": subscription.id},
            )

    @staticmethod
    def _log_transition(subscription: Subscription) -> None:
        logger.info(
            f"Subscription {subscription.id} -> {subscription.status}",
            extra={"tenant_id": subscription.tenant_id, "subscription_id": subscription.id},
        )

    # ==================== Sweeps ====================

    async def finalize_due_cancellations(self, now: Optional[datetime] = None) -> int:
        """Hard-cancel active subscriptions whose ``cancel_at`` has passed"""
        now = now or utcnow()
        finalized = 0

        async with atomic(self.session):
            for subscription_id in await self.subscriptions.due_cancellation_ids(now):
                try:
                    async with self.session.begin_nested():
                        subscription = await self.subscriptions.get_for_update(subscription_id)
                        if not _cancellation_due(subscription, now):
                            continue
                        await self._hard_cancel(subscription, now)
                    finalized += 1
                except Exception:
                    logger.exception(
                        f"Failed to finalize cancellation of subscription {subscription_id}",
                        extra={"subscription_id": subscription_id},
                    )

        if finalized:
            logger.info(f"Finalized {finalized} scheduled cancellations")
        return finalized

    async def renew_due(self, now: Optional[datetime] = None) -> int:
        """Charge wallet subscriptions whose billing period has ended.

        A successful charge advances the period by one and extends the funded
        allocations to the new period end. When the wallet cannot cover the
        charge the subscription goes ``past_due`` and a failed invoice is
        recorded. Each subscription is handled in its own savepoint.
        """
        now = now or utcnow()
        renewed = 0

        async with atomic(self.session):
            for subscription_id in await self.subscriptions.due_renewal_ids(now):
                try:
                    async with self.session.begin_nested():
                        subscription = await self.subscriptions.get_for_update(subscription_id)
                        if not _renewal_due(subscription, now):
                            continue
                        if await self._renew(subscription, now):
                            renewed += 1
                except Exception:
                    logger.exception(
                        f"Failed to renew subscription {subscription_id}",
                        extra={"subscription_id": subscription_id},
                    )

        if renewed:
            logger.info(f"Renewed {renewed} subscriptions")
        return renewed

    async def _renew(self, subscription: Subscription, now: datetime) -> bool:
        period_start = subscription.current_period_end
        try:
            await self._charge_period(subscription, period_start, now)
        except InsufficientFundsError:
            invoice = await self.invoices.create_invoice(
                subscription.tenant_id,
                subscription.amount_monthly,
                currency=subscription.currency,
                payment_method=PaymentMethod.WALLET.value,
                due_date=period_start,
                subscription_id=subscription.id,
            )
            await self.invoices.mark_failed(invoice.id, reason="insufficient_funds")
            self._check_transition(subscription, SubscriptionStatus.PAST_DUE)
            await self.subscriptions.apply(subscription, {"status": SubscriptionStatus.PAST_DUE.value})
            logger.warning(
                f"Subscription {subscription.id} is past due",
                extra={"tenant_id": subscription.tenant_id, "subscription_id": subscription.id},
            )
            return False

        await self.allocation_manager.extend_for_subscription(subscription.id, subscription.current_period_end)
        return True

    # ==================== Reads ====================

    async def get(self, subscription_id: int) -> Subscription:
        subscription = await self.subscriptions.get(subscription_id)
        if not subscription:
            raise NotFoundError("Subscription not found", details={"subscription_id": subscription_id})
        return subscription

    async def get_for_tenant(self, subscription_id: int, tenant_id: str) -> Subscription:
        subscription = await self.subscriptions.get_for_tenant(subscription_id, tenant_id)
        if not subscription:
            raise NotFoundError("Subscription not found", details={"subscription_id": subscription_id})
        return subscription

    async def list_for_tenant(self, tenant_id: str) -> List[Subscription]:
        return await self.subscriptions.list_for_tenant(tenant_id)

    async def _get_for_update(self, subscription_id: int, tenant_id: Optional[str] = None) -> Subscription:
        subscription = await self.subscriptions.get_for_update(subscription_id)
        if not subscription or (tenant_id is not None and subscription.tenant_id != tenant_id):
            raise NotFoundError("Subscription not found", details={"subscription_id": subscription_id})
        return subscription


def _cancellation_due(subscription: Optional[Subscription], now: datetime) -> bool:
    return (
        subscription is not None
        and subscription.status == SubscriptionStatus.ACTIVE.value
        and subscription.cancel_at is not None
        and subscription.cancel_at <= now
    )


def _renewal_due(subscription: Optional[Subscription], now: datetime) -> bool:
    return (
        subscription is not None
        and subscription.status == SubscriptionStatus.ACTIVE.value
        and subscription.payment_method == PaymentMethod.WALLET.value
        and subscription.cancel_at is None
        and subscription.current_period_end is not None
        and subscription.current_period_end <= now
    )
