# proxyrent/core/constants.py
from enum import Enum
from typing import Dict, Set


class ProxyStatus(str, Enum):
    AVAILABLE = "available"
    ALLOCATED = "allocated"
    MAINTENANCE = "maintenance"
    DISABLED = "disabled"


class AllocationStatus(str, Enum):
    ACTIVE = "active"
    EXPIRED = "expired"
    CANCELLED = "cancelled"


class SubscriptionStatus(str, Enum):
    ACTIVE = "active"
    INCOMPLETE = "incomplete"
    PAST_DUE = "past_due"
    CANCELED = "canceled"
    PAUSED = "paused"


class PaymentMethod(str, Enum):
    WALLET = "wallet"
    EXTERNAL = "external"


class EntryType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"


class EntryStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class InvoiceStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    FAILED = "failed"


class Granularity(str, Enum):
    MINUTE = "minute"
    HOUR = "hour"
    DAY = "day"


# Ledger statuses that count toward a wallet balance. Refund credits are
# settled money returned to the tenant.
SETTLED_ENTRY_STATUSES = (EntryStatus.COMPLETED.value, EntryStatus.REFUNDED.value)

SUBSCRIPTION_TRANSITIONS: Dict[SubscriptionStatus, Set[SubscriptionStatus]] = {
    SubscriptionStatus.INCOMPLETE: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.ACTIVE: {
        SubscriptionStatus.PAST_DUE,
        SubscriptionStatus.CANCELED,
        SubscriptionStatus.PAUSED,
    },
    SubscriptionStatus.PAST_DUE: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.PAUSED: {SubscriptionStatus.ACTIVE, SubscriptionStatus.CANCELED},
    SubscriptionStatus.CANCELED: set(),
}

RETRYABLE_INVOICE_STATUSES = (InvoiceStatus.FAILED.value, InvoiceStatus.CANCELLED.value)

# Correlation id prefixes used with the external payment provider
TOPUP_CORRELATION_PREFIX = "topup"
INVOICE_CORRELATION_PREFIX = "invoice"
