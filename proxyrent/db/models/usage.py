# proxyrent/db/models/usage.py
from sqlalchemy import Column, String, Integer, BigInteger, DateTime, ForeignKey, CheckConstraint, Index
from proxyrent.core.time import utcnow
from proxyrent.db.base import Base


class UsageSample(Base):
    """Raw bandwidth metering point; immutable once written"""
    __tablename__ = "proxy_usage_samples"
    __table_args__ = (
        CheckConstraint("bytes_in >= 0 AND bytes_out >= 0", name="usage_bytes_non_negative"),
        Index("ix_usage_tenant_ts", "tenant_id", "ts"),
        Index("ix_usage_proxy_ts", "proxy_id", "ts"),
        Index("ix_usage_allocation_ts", "allocation_id", "ts"),
    )

    # BigInteger ids autoincrement only as INTEGER on SQLite
    id = Column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    proxy_id = Column(Integer, ForeignKey("proxies.id"), nullable=False)
    tenant_id = Column(String(100), ForeignKey("tenants.id"), nullable=False)
    allocation_id = Column(Integer, ForeignKey("allocations.id", ondelete="SET NULL"), nullable=True)
    ts = Column(DateTime, nullable=False, default=utcnow, index=True)
    bytes_in = Column(BigInteger, nullable=False, default=0)
    bytes_out = Column(BigInteger, nullable=False, default=0)
    created_at = Column(DateTime, nullable=False, default=utcnow)
