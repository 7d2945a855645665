# proxyrent/db/models/subscription.py
from sqlalchemy import Column, String, Integer, DateTime, Numeric, ForeignKey, CheckConstraint, JSON
from sqlalchemy.orm import relationship
from proxyrent.db.base import BaseModel


class Subscription(BaseModel):
    """
    Recurring commitment funding one or more allocations.

    cancel_at is a soft, future cancellation; canceled_at marks the terminal
    hard cancellation.
    """
    __tablename__ = "subscriptions"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'incomplete', 'past_due', 'canceled', 'paused')",
            name="subscriptions_status_check",
        ),
        CheckConstraint(
            "payment_method IN ('wallet', 'external')",
            name="subscriptions_payment_method_check",
        ),
        CheckConstraint("amount_monthly > 0", name="subscriptions_amount_positive"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), ForeignKey("tenants.id"), nullable=False, index=True)
    payment_method = Column(String(20), nullable=False, default="external")
    status = Column(String(20), nullable=False, default="active", index=True)
    amount_monthly = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")

    # External provider references (unused for wallet subscriptions)
    external_subscription_id = Column(String(255), nullable=True)
    external_price_id = Column(String(255), nullable=True)

    # Billing period
    current_period_start = Column(DateTime, nullable=True)
    current_period_end = Column(DateTime, nullable=True)
    cancel_at = Column(DateTime, nullable=True)
    canceled_at = Column(DateTime, nullable=True)

    meta = Column("metadata", JSON, nullable=True)

    # Relationships
    tenant = relationship("Tenant", back_populates="subscriptions")
