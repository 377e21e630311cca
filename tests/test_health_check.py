"""
Unit tests for the health endpoints and the dependency checks behind them.
"""
from contextlib import contextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import httpx
import pytest
from redis.exceptions import ConnectionError as RedisConnectionError
from sqlalchemy.exc import OperationalError

from app.domain.services import health_service


@contextmanager
def _checks(db: str = "ok", redis: str = "ok", celery: str = "ok"):
    with patch.object(health_service, "_check_db", AsyncMock(return_value=db)), \
         patch.object(health_service, "_check_redis", AsyncMock(return_value=redis)), \
         patch.object(health_service, "_check_celery", AsyncMock(return_value=celery)):
        yield


# ============================================================================
# Endpoints
# ============================================================================


class TestLivenessProbe:
    @pytest.mark.unit
    async def test_liveness_returns_healthy(self, test_client: httpx.AsyncClient) -> None:
        response = await test_client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    @pytest.mark.unit
    async def test_liveness_needs_no_admin_key(self, test_client: httpx.AsyncClient) -> None:
        with _checks(db="error: db_unavailable"):
            response = await test_client.get("/health")

        assert response.status_code == 200


class TestReadinessProbe:
    @pytest.mark.unit
    async def test_all_healthy(self, test_client: httpx.AsyncClient) -> None:
        with _checks():
            response = await test_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "db": "ok", "redis": "ok", "celery": "ok"}

    @pytest.mark.unit
    @pytest.mark.parametrize("failing", ["db", "redis", "celery"])
    async def test_any_dependency_down_degrades(
        self, test_client: httpx.AsyncClient, failing: str
    ) -> None:
        with _checks(**{failing: f"error: {failing}_unavailable"}):
            response = await test_client.get("/health/ready")

        assert response.status_code == 503
        data = response.json()
        assert data["status"] == "degraded"
        assert data[failing] == f"error: {failing}_unavailable"
        assert all(v == "ok" for k, v in data.items() if k not in ("status", failing))


# ============================================================================
# Individual checks
# ============================================================================


class TestDependencyChecks:
    @pytest.mark.unit
    async def test_redis_ok_with_fake_client(self) -> None:
        assert await health_service._check_redis() == "ok"

    @pytest.mark.unit
    async def test_redis_failure_is_reported_generically(self) -> None:
        broken = AsyncMock(side_effect=RedisConnectionError("redis://:secret@host refused"))

        with patch.object(health_service, "get_redis", broken):
            result = await health_service._check_redis()

        assert result == "error: redis_unavailable"
        assert "secret" not in result

    @pytest.mark.unit
    async def test_db_failure(self) -> None:
        session = MagicMock()
        session.__aenter__ = AsyncMock(return_value=session)
        session.__aexit__ = AsyncMock(return_value=None)
        session.execute = AsyncMock(side_effect=OperationalError("SELECT 1", {}, Exception("down")))

        with patch.object(health_service, "AsyncSessionLocal", MagicMock(return_value=session)):
            assert await health_service._check_db() == "error: db_unavailable"

    @pytest.mark.unit
    async def test_celery_broker_ping(self) -> None:
        client = MagicMock()
        client.ping = AsyncMock(return_value=True)
        client.aclose = AsyncMock()

        with patch.object(health_service.aioredis, "from_url", return_value=client):
            assert await health_service._check_celery() == "ok"

        client.aclose.assert_awaited_once()

    @pytest.mark.unit
    async def test_celery_broker_down(self) -> None:
        client = MagicMock()
        client.ping = AsyncMock(side_effect=RedisConnectionError("refused"))
        client.aclose = AsyncMock()

        with patch.object(health_service.aioredis, "from_url", return_value=client):
            assert await health_service._check_celery() == "error: celery_unavailable"

        client.aclose.assert_awaited_once()
