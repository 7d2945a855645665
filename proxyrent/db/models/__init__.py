# proxyrent/db/models/__init__.py
from proxyrent.db.models.tenant import Tenant
from proxyrent.db.models.proxy import Proxy
from proxyrent.db.models.subscription import Subscription
from proxyrent.db.models.allocation import Allocation
from proxyrent.db.models.ledger import LedgerEntry
from proxyrent.db.models.invoice import Invoice
from proxyrent.db.models.usage import UsageSample

__all__ = ["Tenant", "Proxy", "Subscription", "Allocation", "LedgerEntry", "Invoice", "UsageSample"]
