# proxyrent/db/models/ledger.py
from sqlalchemy import Column, String, Integer, Numeric, ForeignKey, CheckConstraint, JSON, Index
from proxyrent.db.base import BaseModel, SoftDeleteMixin


class LedgerEntry(SoftDeleteMixin, BaseModel):
    """
    Append-only wallet movement.

    Balance is never stored: it is the sum of settled credits minus
    settled debits for the tenant.
    """
    __tablename__ = "funds"
    __table_args__ = (
        CheckConstraint("amount > 0", name="funds_amount_positive"),
        CheckConstraint("entry_type IN ('credit', 'debit')", name="funds_entry_type_check"),
        CheckConstraint(
            "status IN ('pending', 'completed', 'failed', 'refunded')",
            name="funds_status_check",
        ),
        Index("ix_funds_tenant_status", "tenant_id", "status"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), ForeignKey("tenants.id"), nullable=False, index=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    entry_type = Column(String(10), nullable=False)
    status = Column(String(20), nullable=False, default="pending")
    payment_provider = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True, index=True)
    meta = Column("metadata", JSON, nullable=True)
