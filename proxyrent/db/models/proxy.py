# proxyrent/db/models/proxy.py
from sqlalchemy import Column, String, Integer, DateTime, CheckConstraint, Index, text
from proxyrent.db.base import BaseModel, SoftDeleteMixin


class Proxy(SoftDeleteMixin, BaseModel):
    """
    Leasable network resource.

    Status must be one of: available, allocated, maintenance, disabled.
    Never physically deleted: disabling stamps deleted_at as well.
    """
    __tablename__ = "proxies"
    __table_args__ = (
        CheckConstraint(
            "status IN ('available', 'allocated', 'maintenance', 'disabled')",
            name="proxies_status_check",
        ),
        CheckConstraint("port > 0 AND port < 65536", name="proxies_port_range"),
        Index(
            "uq_proxies_ip_port_live",
            "ip_address",
            "port",
            unique=True,
            postgresql_where=text("deleted_at IS NULL"),
            sqlite_where=text("deleted_at IS NULL"),
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    label = Column(String(100), nullable=True)  # e.g. FR-4G-ORANGE-01
    ip_address = Column(String(45), nullable=False)
    port = Column(Integer, nullable=False)
    username = Column(String(100), nullable=True)
    password = Column(String(100), nullable=True)
    location = Column(String(100), nullable=True)
    isp = Column(String(100), nullable=True)
    dongle_id = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="available", index=True)
    last_health_check = Column(DateTime, nullable=True)

    def __repr__(self) -> str:
        return f"<Proxy id={self.id} {self.ip_address}:{self.port} status={self.status}>"
