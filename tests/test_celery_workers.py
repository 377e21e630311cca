"""
Tests for Celery workers - app/workers/tasks.py

Covers:
- the periodic queue tick (happy path, paused queue)
- the completed-delivery retention sweep
- event loop handling inside tasks
- beat schedule wiring
"""
from contextlib import contextmanager
from datetime import datetime, timedelta
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from app.db.models.queued_delivery import DeliveryPlatform, DeliveryStatus
from app.domain.services.delivery_queue_service import DeliveryQueueService
from app.domain.services.system_settings_service import SystemSettingsService


@contextmanager
def _task_context(db_session: AsyncSession, http_client=None):
    """
    Run task bodies inside the test's event loop.

    run_async is replaced by a pass-through so the task returns its coroutine,
    and get_task_session yields the test session.
    """
    with patch("app.workers.tasks.run_async", side_effect=lambda coro: coro), \
         patch("app.workers.tasks.get_task_session") as mock_session_ctx:
        mock_session_ctx.return_value.__aenter__ = AsyncMock(return_value=db_session)
        mock_session_ctx.return_value.__aexit__ = AsyncMock(return_value=None)
        if http_client is not None:
            with patch(
                "app.workers.tasks.DeliveryQueueService",
                side_effect=lambda db: DeliveryQueueService(db, http_client=http_client),
            ):
                yield
        else:
            yield


async def _enqueue(db_session, integration_factory, endpoint_factory) -> int:
    integration = integration_factory(DeliveryPlatform.DISCORD)
    delivery = await DeliveryQueueService(db_session).enqueue(
        integration, '{"embeds": []}', endpoint_factory([integration]), "req-1"
    )
    return delivery.id


class TestProcessDeliveryQueue:
    @pytest.mark.asyncio
    async def test_dispatches_ready_deliveries(
        self, db_session, webhook_recorder, integration_factory, endpoint_factory
    ) -> None:
        from app.workers.tasks import process_delivery_queue

        delivery_id = await _enqueue(db_session, integration_factory, endpoint_factory)

        with _task_context(db_session, webhook_recorder.client()):
            result = await process_delivery_queue()

        assert result["processed"] == 1
        assert result["succeeded"] == 1
        assert result["paused"] is False
        row = await DeliveryQueueService(db_session).get(delivery_id)
        assert row.status == DeliveryStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_paused_queue_returns_zero_counters(
        self, db_session, webhook_recorder, integration_factory, endpoint_factory
    ) -> None:
        from app.workers.tasks import process_delivery_queue

        await _enqueue(db_session, integration_factory, endpoint_factory)
        await SystemSettingsService(db_session).set_queue_processing_enabled(False)

        with _task_context(db_session, webhook_recorder.client()):
            result = await process_delivery_queue()

        assert result == {
            "processed": 0, "succeeded": 0, "retried": 0,
            "failed": 0, "skipped": 0, "paused": True,
        }
        assert webhook_recorder.requests == []

    @pytest.mark.asyncio
    async def test_limit_is_honoured(
        self, db_session, webhook_recorder, integration_factory, endpoint_factory
    ) -> None:
        from app.workers.tasks import process_delivery_queue

        for _ in range(3):
            await _enqueue(db_session, integration_factory, endpoint_factory)

        with _task_context(db_session, webhook_recorder.client()):
            result = await process_delivery_queue(limit=2)

        assert result["processed"] == 2


class TestCleanupCompletedDeliveries:
    @pytest.mark.asyncio
    async def test_removes_old_completed_rows(
        self, db_session, integration_factory, endpoint_factory
    ) -> None:
        from app.workers.tasks import cleanup_completed_deliveries

        delivery_id = await _enqueue(db_session, integration_factory, endpoint_factory)
        row = await DeliveryQueueService(db_session).get(delivery_id)
        row.status = DeliveryStatus.COMPLETED
        row.updated_at = datetime.utcnow() - timedelta(days=45)
        await db_session.commit()

        with _task_context(db_session):
            result = await cleanup_completed_deliveries(days=30)

        assert result == {"deleted": 1}

    @pytest.mark.asyncio
    async def test_keeps_pending_rows(self, db_session, integration_factory, endpoint_factory) -> None:
        from app.workers.tasks import cleanup_completed_deliveries

        await _enqueue(db_session, integration_factory, endpoint_factory)

        with _task_context(db_session):
            result = await cleanup_completed_deliveries(days=0)

        assert result == {"deleted": 0}


class TestEventLoop:
    @pytest.mark.unit
    def test_run_async_runs_on_a_fresh_loop(self) -> None:
        from app.workers.tasks import run_async

        async def _work():
            return "done"

        assert run_async(_work()) == "done"

    @pytest.mark.unit
    def test_run_async_sets_correlation_id(self) -> None:
        from app.core.logging import correlation_id_var
        from app.workers.tasks import run_async

        async def _read_cid():
            return correlation_id_var.get()

        assert run_async(_read_cid())

    @pytest.mark.unit
    def test_loop_is_closed_after_task(self) -> None:
        from app.workers.tasks import get_event_loop

        with get_event_loop() as loop:
            assert not loop.is_closed()

        assert loop.is_closed()


class TestBeatSchedule:
    @pytest.mark.unit
    def test_periodic_tasks_are_registered(self) -> None:
        from app.core.config import settings
        from app.workers.celery_app import celery_app

        schedule = celery_app.conf.beat_schedule

        tick = schedule["process-delivery-queue"]
        assert tick["task"] == "app.workers.tasks.process_delivery_queue"
        assert tick["schedule"] == settings.QUEUE_PROCESS_INTERVAL_SECONDS
        assert schedule["cleanup-completed-deliveries-daily"]["task"] == (
            "app.workers.tasks.cleanup_completed_deliveries"
        )
