"""
Resource pool: owns proxy records and their availability status.

Status flips here are pure transitions; whether a proxy can be leased is
decided by the allocation table, not by the status column.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.constants import ProxyStatus
from proxyrent.core.exceptions import DuplicateError, InvalidArgumentError, NotFoundError
from proxyrent.core.logging import logger
from proxyrent.core.time import utcnow
from proxyrent.db.database import atomic
from proxyrent.db.models.proxy import Proxy
from proxyrent.db.repositories.allocation_repository import AllocationRepository
from proxyrent.db.repositories.proxy_repository import ProxyRepository

UPDATABLE_FIELDS = {"label", "ip_address", "port", "username", "password", "location", "isp", "dongle_id"}


class ResourcePool:
    """Service for the proxy inventory"""

    def __init__(self, session: AsyncSession):
        self.session = session
        self.proxies = ProxyRepository(session)
        self.allocations = AllocationRepository(session)

    async def get_proxy(self, proxy_id: int, for_update: bool = False) -> Proxy:
        proxy = await self.proxies.get_live(proxy_id, for_update=for_update)
        if not proxy:
            raise NotFoundError("Proxy not found", details={"proxy_id": proxy_id})
        return proxy

    async def is_available(self, proxy_id: int, now: Optional[datetime] = None) -> bool:
        """True iff no allocation on the proxy is active with an end date in the future"""
        await self.get_proxy(proxy_id)
        live = await self.allocations.get_live_for_proxy(proxy_id, now or utcnow())
        return live is None

    async def list_proxies(self, status: Optional[str] = None, include_deleted: bool = False) -> List[Proxy]:
        if status is not None and status not in {s.value for s in ProxyStatus}:
            raise InvalidArgumentError(f"Unknown proxy status: {status}")
        return await self.proxies.list(status=status, include_deleted=include_deleted)

    async def count_available(self) -> int:
        return await self.proxies.count_by_status(ProxyStatus.AVAILABLE.value)

    # ==================== Inventory ====================

    async def create_proxy(
        self,
        ip_address: str,
        port: int,
        label: Optional[str] = None,
        username: Optional[str] = None,
        password: Optional[str] = None,
        location: Optional[str] = None,
        isp: Optional[str] = None,
        dongle_id: Optional[str] = None,
    ) -> Proxy:
        if not ip_address:
            raise InvalidArgumentError("ip_address is required")
        if not 0 < int(port) < 65536:
            raise InvalidArgumentError("port must be between 1 and 65535", details={"port": port})

        async with atomic(self.session):
            if await self.proxies.get_by_address(ip_address, port):
                raise DuplicateError(
                    "A proxy with this IP and port already exists",
                    details={"ip_address": ip_address, "port": port},
                )
            proxy = await self.proxies.create({
                "ip_address": ip_address,
                "port": port,
                "label": label,
                "username": username,
                "password": password,
                "location": location,
                "isp": isp,
                "dongle_id": dongle_id,
                "status": ProxyStatus.AVAILABLE.value,
            })

        logger.info(f"Proxy {proxy.id} created at {ip_address}:{port}", extra={"proxy_id": proxy.id})
        return proxy

    async def update_proxy(self, proxy_id: int, **fields: Any) -> Proxy:
        unknown = set(fields) - UPDATABLE_FIELDS
        if unknown:
            raise InvalidArgumentError(f"Cannot update fields: {', '.join(sorted(unknown))}")

        async with atomic(self.session):
            proxy = await self.get_proxy(proxy_id, for_update=True)
            if not fields:
                return proxy

            if "ip_address" in fields or "port" in fields:
                ip_address = fields.get("ip_address", proxy.ip_address)
                port = fields.get("port", proxy.port)
                if await self.proxies.get_by_address(ip_address, port, exclude_id=proxy.id):
                    raise DuplicateError(
                        "Another proxy already uses this IP and port",
                        details={"ip_address": ip_address, "port": port},
                    )

            return await self.proxies.apply(proxy, fields)

    async def delete_proxy(self, proxy_id: int) -> Proxy:
        """Soft delete: disable and stamp deleted_at"""
        async with atomic(self.session):
            proxy = await self.get_proxy(proxy_id, for_update=True)
            now = utcnow()
            await self.proxies.apply(proxy, {
                "status": ProxyStatus.DISABLED.value,
                "deleted_at": now,
            })

        logger.info(f"Proxy {proxy_id} deleted", extra={"proxy_id": proxy_id})
        return proxy

    # ==================== Status transitions ====================

    async def _set_status(self, proxy_id: int, status: ProxyStatus) -> Proxy:
        proxy = await self.get_proxy(proxy_id, for_update=True)
        if proxy.status != status.value:
            await self.proxies.apply(proxy, {"status": status.value})
            logger.info(
                f"Proxy {proxy_id} -> {status.value}",
                extra={"proxy_id": proxy_id},
            )
        return proxy

    async def mark_allocated(self, proxy_id: int) -> Proxy:
        async with atomic(self.session):
            return await self._set_status(proxy_id, ProxyStatus.ALLOCATED)

    async def mark_available(self, proxy_id: int) -> Proxy:
        async with atomic(self.session):
            return await self._set_status(proxy_id, ProxyStatus.AVAILABLE)

    async def mark_disabled(self, proxy_id: int) -> Proxy:
        async with atomic(self.session):
            return await self._set_status(proxy_id, ProxyStatus.DISABLED)

    async def mark_maintenance(self, proxy_id: int) -> Proxy:
        async with atomic(self.session):
            return await self._set_status(proxy_id, ProxyStatus.MAINTENANCE)

    async def enable(self, proxy_id: int) -> Proxy:
        """Return a disabled or maintenance proxy to service"""
        async with atomic(self.session):
            await self.get_proxy(proxy_id, for_update=True)
            leased = not await self.is_available(proxy_id)
            target = ProxyStatus.ALLOCATED if leased else ProxyStatus.AVAILABLE
            return await self._set_status(proxy_id, target)

    async def claim_from_pool(self, proxy_id: int) -> None:
        """Flip an available proxy to allocated; other statuses are kept"""
        proxy = await self.proxies.get_live(proxy_id, for_update=True)
        if proxy and proxy.status == ProxyStatus.AVAILABLE.value:
            await self.proxies.apply(proxy, {"status": ProxyStatus.ALLOCATED.value})

    async def release_to_pool(self, proxy_id: int) -> None:
        """Return a leased proxy to the pool.

        Proxies pulled into maintenance or disabled while leased keep that
        status; soft-deleted proxies are left alone.
        """
        proxy = await self.proxies.get_live(proxy_id, for_update=True)
        if proxy and proxy.status == ProxyStatus.ALLOCATED.value:
            await self.proxies.apply(proxy, {"status": ProxyStatus.AVAILABLE.value})

    async def record_health_check(self, proxy_id: int, healthy: bool) -> Proxy:
        async with atomic(self.session):
            proxy = await self.get_proxy(proxy_id, for_update=True)
            changes: Dict[str, Any] = {"last_health_check": utcnow()}

            if not healthy and proxy.status == ProxyStatus.AVAILABLE.value:
                changes["status"] = ProxyStatus.MAINTENANCE.value
            elif healthy and proxy.status == ProxyStatus.MAINTENANCE.value:
                changes["status"] = ProxyStatus.AVAILABLE.value

            await self.proxies.apply(proxy, changes)

        if not healthy:
            logger.warning(f"Proxy {proxy_id} failed health check", extra={"proxy_id": proxy_id})
        return proxy
