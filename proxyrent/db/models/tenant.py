# proxyrent/db/models/tenant.py
from sqlalchemy import Column, String, Boolean, JSON
from sqlalchemy.orm import relationship
from proxyrent.db.base import BaseModel


class Tenant(BaseModel):
    """Tenant identity resolved upstream; rows anchor per-tenant locks"""
    __tablename__ = "tenants"

    id = Column(String(100), primary_key=True, index=True)
    name = Column(String(255), nullable=False)
    default_currency = Column(String(3), default="USD", nullable=False)

    # Settings
    settings = Column(JSON, default=dict)

    # Status
    is_active = Column(Boolean, default=True, nullable=False)

    # Relationships
    allocations = relationship("Allocation", back_populates="tenant")
    subscriptions = relationship("Subscription", back_populates="tenant")
