# proxyrent/db/models/allocation.py
from sqlalchemy import Column, String, Integer, DateTime, Numeric, ForeignKey, CheckConstraint, Index, text
from sqlalchemy.orm import relationship
from proxyrent.db.base import BaseModel


class Allocation(BaseModel):
    """
    Lease binding one tenant to one proxy for [starts_at, ends_at).

    The partial unique index allows a single 'active' row per proxy; it is
    the authoritative guard against double leasing.
    """
    __tablename__ = "allocations"
    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'expired', 'cancelled')",
            name="allocations_status_check",
        ),
        CheckConstraint("price_monthly > 0", name="allocations_price_positive"),
        Index(
            "uq_allocations_active_proxy",
            "proxy_id",
            unique=True,
            postgresql_where=text("status = 'active'"),
            sqlite_where=text("status = 'active'"),
        ),
        Index("ix_allocations_status_ends_at", "status", "ends_at"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    tenant_id = Column(String(100), ForeignKey("tenants.id"), nullable=False, index=True)
    proxy_id = Column(Integer, ForeignKey("proxies.id"), nullable=False, index=True)
    subscription_id = Column(
        Integer, ForeignKey("subscriptions.id", ondelete="SET NULL"), nullable=True, index=True
    )
    starts_at = Column(DateTime, nullable=False)
    ends_at = Column(DateTime, nullable=False)
    price_monthly = Column(Numeric(12, 2), nullable=False)
    status = Column(String(20), nullable=False, default="active")

    # Relationships
    tenant = relationship("Tenant", back_populates="allocations")
    proxy = relationship("Proxy")
