# proxyrent/db/models/invoice.py
from sqlalchemy import (
    Column, String, Integer, DateTime, Numeric, ForeignKey, CheckConstraint, JSON, UniqueConstraint,
)
from sqlalchemy.orm import relationship
from proxyrent.db.base import BaseModel, SoftDeleteMixin


class Invoice(SoftDeleteMixin, BaseModel):
    """
    Billing document, independent of how it is paid.

    Invoice numbers are unique within a tenant.
    """
    __tablename__ = "billing"
    __table_args__ = (
        UniqueConstraint("tenant_id", "invoice_number", name="billing_invoice_tenant_unique"),
        CheckConstraint(
            "status IN ('pending', 'paid', 'cancelled', 'failed')",
            name="billing_status_check",
        ),
        CheckConstraint(
            "payment_method IN ('wallet', 'external')",
            name="billing_payment_method_check",
        ),
        CheckConstraint("amount > 0", name="billing_amount_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), ForeignKey("tenants.id"), nullable=False, index=True)
    subscription_id = Column(
        Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    invoice_number = Column(String(100), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    status = Column(String(20), nullable=False, default="pending", index=True)
    payment_method = Column(String(20), nullable=False, default="external")
    payment_provider = Column(String(50), nullable=True)
    payment_reference = Column(String(255), nullable=True)
    due_date = Column(DateTime, nullable=True)
    paid_at = Column(DateTime, nullable=True)
    wallet_entry_id = Column(Integer, ForeignKey("funds.id"), nullable=True)
    meta = Column("metadata", JSON, nullable=True)

    # Relationships
    wallet_entry = relationship("LedgerEntry")
