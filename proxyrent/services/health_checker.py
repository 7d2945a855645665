"""
Proxy health checks.

Each live proxy is checked by fetching a known URL through it. The outcome is
recorded on the proxy: a failing idle proxy goes to maintenance and a passing
one comes back. Disabled proxies are skipped.
"""
from typing import Callable, Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.core.config import settings
from proxyrent.core.constants import ProxyStatus
from proxyrent.core.logging import logger
from proxyrent.db.models.proxy import Proxy
from proxyrent.services.resource_pool import ResourcePool

TransportFactory = Callable[[Proxy], httpx.AsyncBaseTransport]


def proxy_transport(proxy: Proxy) -> httpx.AsyncBaseTransport:
    """Transport that sends every request through ``proxy``"""
    auth = (proxy.username, proxy.password or "") if proxy.username else None
    return httpx.AsyncHTTPTransport(
        proxy=httpx.Proxy(f"http://{proxy.ip_address}:{proxy.port}", auth=auth)
    )


class ProxyHealthChecker:
    """Checks proxies over HTTP"""

    def __init__(
        self,
        check_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport_factory: Optional[TransportFactory] = None,
    ):
        self.check_url = check_url or settings.PROXY_HEALTH_CHECK_URL
        self.timeout = timeout or settings.PROXY_HEALTH_CHECK_TIMEOUT_SECONDS
        self.transport_factory = transport_factory or proxy_transport

    async def check(self, proxy: Proxy) -> bool:
        """True when the check URL answers through the proxy without an error status"""
        try:
            async with httpx.AsyncClient(
                transport=self.transport_factory(proxy), timeout=self.timeout
            ) as client:
                response = await client.get(self.check_url)
        except httpx.HTTPError as e:
            logger.info(f"Proxy {proxy.id} unreachable: {str(e)}", extra={"proxy_id": proxy.id})
            return False
        return response.status_code < 400


async def run_health_sweep(
    session_factory: Callable[[], AsyncSession],
    checker: Optional[ProxyHealthChecker] = None,
) -> int:
    """Check every live, enabled proxy and record the result; returns the count checked"""
    checker = checker or ProxyHealthChecker()
    checked = 0

    async with session_factory() as session:
        pool = ResourcePool(session)
        proxy_ids = [
            proxy.id for proxy in await pool.list_proxies()
            if proxy.status != ProxyStatus.DISABLED.value
        ]
        for proxy_id in proxy_ids:
            try:
                proxy = await pool.get_proxy(proxy_id)
                healthy = await checker.check(proxy)
                await pool.record_health_check(proxy_id, healthy)
                checked += 1
            except Exception:
                logger.exception(f"Health check failed for proxy {proxy_id}", extra={"proxy_id": proxy_id})

    logger.info(f"Health sweep checked {checked} proxies")
    return checked
