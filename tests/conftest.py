"""
Pytest Configuration and Fixtures

Provides fixtures for:
- Database sessions (async, in-memory SQLite)
- API client with the admin key configured
- Fake Redis
- Endpoint / integration descriptors and a controllable clock
- Mock webhook receivers (httpx.MockTransport)
"""
# ENCRYPTION_KEY must be set before importing app; the validator requires it when DEBUG=False
import os
os.environ.setdefault("ENCRYPTION_KEY", "test-encryption-key-for-testing-only-do-not-use-in-production")

import pytest
from datetime import datetime, timedelta
from typing import AsyncGenerator, Callable
from unittest.mock import patch

import httpx
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import StaticPool

from app.db.database import Base, get_db
from app.db.models.queued_delivery import DeliveryPlatform
from app.domain.entities import EndpointContext, IncomingRequest, IntegrationTarget
from app.core.config import settings
from app.main import app


# Test database URL (SQLite in memory for fast tests)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

TEST_ADMIN_API_KEY = "test-admin-api-key"

SAMPLE_XML = (
    "<notification>"
    "<DeviceName>SRV-01</DeviceName>"
    "<CustomerName>Acme</CustomerName>"
    "<QualitativeNewState>Failed</QualitativeNewState>"
    "<AffectedService>Disk Usage</AffectedService>"
    "</notification>"
)


@pytest.fixture(scope="function")
async def async_engine():
    """Create async test database engine"""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(async_engine) -> AsyncGenerator[AsyncSession, None]:
    """Create async database session for tests"""
    async_session_maker = async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


@pytest.fixture(autouse=True)
def admin_api_key():
    """Configure a known admin key for every test"""
    with patch.object(settings, "ADMIN_API_KEY", TEST_ADMIN_API_KEY):
        yield TEST_ADMIN_API_KEY


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return {"X-Admin-API-Key": TEST_ADMIN_API_KEY}


@pytest.fixture(scope="function")
async def test_client(db_session: AsyncSession):
    """Create test client with database override"""
    from httpx import AsyncClient, ASGITransport

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ============================================================================
# Fake Redis
# ============================================================================

class FakeRedis:
    """In-memory stand-in for Redis with the commands the counters use."""

    def __init__(self) -> None:
        self._store: dict[str, str] = {}
        self._ttls: dict[str, int] = {}

    async def ping(self) -> bool:
        return True

    async def get(self, key: str) -> str | None:
        return self._store.get(key)

    async def incr(self, key: str) -> int:
        current = self._store.get(key)
        new_val = int(current) + 1 if current is not None else 1
        self._store[key] = str(new_val)
        return new_val

    async def expire(self, key: str, ttl: int) -> None:
        if key in self._store:
            self._ttls[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._store.pop(key, None)
            self._ttls.pop(key, None)

    async def aclose(self) -> None:
        self._store.clear()
        self._ttls.clear()


@pytest.fixture(autouse=True)
def fake_redis():
    """Replace get_redis with FakeRedis for all tests."""
    _fake = FakeRedis()

    async def _get_fake_redis():
        return _fake

    with patch("app.core.redis_client.get_redis", _get_fake_redis), \
         patch("app.domain.services.health_service.get_redis", _get_fake_redis):
        yield _fake


# ============================================================================
# Clock
# ============================================================================

class FrozenClock:
    """Callable clock for services that accept ``clock=``"""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 1, 15, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current = self.current + timedelta(seconds=seconds)


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock()


# ============================================================================
# Descriptors
# ============================================================================

@pytest.fixture
def integration_factory() -> Callable[..., IntegrationTarget]:
    counter = {"n": 0}

    def _create(
        platform: DeliveryPlatform = DeliveryPlatform.SLACK,
        *,
        id: str | None = None,
        name: str | None = None,
        webhook_url: str | None = None,
        enabled: bool = True,
        field_filter_id: str | None = None,
    ) -> IntegrationTarget:
        counter["n"] += 1
        n = counter["n"]
        return IntegrationTarget(
            id=id or f"int-{n}",
            name=name or f"{platform.value} #{n}",
            platform=platform,
            webhook_url=webhook_url or f"https://hooks.example.com/{platform.value}/{n}",
            enabled=enabled,
            field_filter_id=field_filter_id,
        )

    return _create


@pytest.fixture
def endpoint_factory() -> Callable[..., EndpointContext]:
    def _create(
        integrations: list[IntegrationTarget] = (),
        *,
        id: str = "ep-1",
        name: str = "ncentral-alerts",
        path: str = "/api/custom/acme/ncentral-alerts",
        tenant_id: str | None = "tenant-1",
    ) -> EndpointContext:
        return EndpointContext(
            id=id,
            name=name,
            path=path,
            tenant_id=tenant_id,
            associated_integration_ids=frozenset(i.id for i in integrations),
        )

    return _create


@pytest.fixture
def incoming_request() -> IncomingRequest:
    return IncomingRequest(
        ip="203.0.113.7",
        method="POST",
        headers={"content-type": "application/xml", "x-source": "ncentral"},
        body=SAMPLE_XML,
    )


# ============================================================================
# Mock webhook receivers
# ============================================================================

class WebhookRecorder:
    """MockTransport handler answering with a scripted status per URL"""

    def __init__(self, default_status: int = 200) -> None:
        self.default_status = default_status
        self.status_by_url: dict[str, int] = {}
        self.errors_by_url: dict[str, Exception] = {}
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        url = str(request.url)
        if url in self.errors_by_url:
            raise self.errors_by_url[url]
        status = self.status_by_url.get(url, self.default_status)
        return httpx.Response(status, text="ok" if status < 400 else "upstream error")

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))


@pytest.fixture
def webhook_recorder() -> WebhookRecorder:
    return WebhookRecorder()
