"""
Pytest configuration and fixtures
Shared test setup for all test modules
"""
import os

# Settings are read at import time, so the environment is fixed first
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("PAYMENT_WEBHOOK_SECRET", "test-webhook-secret")

import pytest
from typing import AsyncGenerator
from decimal import Decimal

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from proxyrent.main import app
from proxyrent.api.dependencies import get_payment_provider
from proxyrent.db.base import Base
from proxyrent.db import models  # noqa: F401
from proxyrent.db.database import build_engine, get_db, make_session_factory
from proxyrent.db.models.proxy import Proxy
from proxyrent.db.models.tenant import Tenant
from proxyrent.services.ledger_service import LedgerService
from proxyrent.services.payment_provider import PaymentProviderClient

# Point TEST_DATABASE_URL at PostgreSQL to run the suite against a server
TEST_DATABASE_URL = os.environ.get("TEST_DATABASE_URL", "sqlite+aiosqlite://")

test_engine = build_engine(TEST_DATABASE_URL)
TestSessionLocal = make_session_factory(test_engine)

TENANT_ID = "tenant-1"
OTHER_TENANT_ID = "tenant-2"


@pytest.fixture(scope="function")
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """Create clean database for each test"""

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        await conn.run_sync(Base.metadata.create_all)

    async with TestSessionLocal() as session:
        yield session
        await session.rollback()

    await test_engine.dispose()


@pytest.fixture
def session_factory(db_session: AsyncSession):
    """Factory for the sessions sweeps open on their own"""
    return TestSessionLocal


@pytest.fixture
async def tenant_id(db_session: AsyncSession) -> str:
    """Create test tenant"""
    db_session.add(Tenant(id=TENANT_ID, name="Test Tenant"))
    await db_session.commit()
    return TENANT_ID


@pytest.fixture
async def other_tenant_id(db_session: AsyncSession) -> str:
    """Create a second tenant to check isolation"""
    db_session.add(Tenant(id=OTHER_TENANT_ID, name="Other Tenant"))
    await db_session.commit()
    return OTHER_TENANT_ID


@pytest.fixture
async def proxy_id(db_session: AsyncSession) -> int:
    """Create an available proxy"""
    proxy = Proxy(ip_address="10.0.0.1", port=8080, label="FR-4G-TEST-01", status="available")
    db_session.add(proxy)
    await db_session.commit()
    return proxy.id


@pytest.fixture
async def second_proxy_id(db_session: AsyncSession) -> int:
    proxy = Proxy(ip_address="10.0.0.2", port=8080, label="FR-4G-TEST-02", status="available")
    db_session.add(proxy)
    await db_session.commit()
    return proxy.id


@pytest.fixture
async def funded_tenant_id(db_session: AsyncSession, tenant_id: str) -> str:
    """Tenant with 100.00 in the wallet"""
    await LedgerService(db_session).credit(tenant_id, Decimal("100.00"), reference="seed")
    return tenant_id


def provider_handler(request: httpx.Request) -> httpx.Response:
    """Stand-in for the payment provider's checkout API"""
    if request.method == "POST" and request.url.path == "/v1/checkouts":
        return httpx.Response(200, json={"id": "chk_test_1", "result": {"code": "000.200.100"}})
    return httpx.Response(404, json={"result": {"description": "Not found"}})


@pytest.fixture
def payment_provider() -> PaymentProviderClient:
    return PaymentProviderClient(
        base_url="https://provider.test",
        entity_id="entity-test",
        access_token="token-test",
        webhook_secret="test-webhook-secret",
        transport=httpx.MockTransport(provider_handler),
    )


@pytest.fixture
async def client(db_session: AsyncSession, payment_provider: PaymentProviderClient):
    """Create test client with database and payment provider overrides"""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_payment_provider] = lambda: payment_provider

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def tenant_headers(tenant_id: str) -> dict:
    return {"X-Tenant-ID": tenant_id}
