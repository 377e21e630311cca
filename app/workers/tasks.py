"""
Celery Tasks for the Delivery Queue

The beat schedule drives the queue tick and the retention sweep. Each task
runs its coroutine on a fresh event loop with its own database engine.
"""
from __future__ import annotations

import asyncio
from contextlib import contextmanager
from dataclasses import asdict

from app.workers.celery_app import celery_app
from app.db.database import get_task_session
from app.domain.services.delivery_queue_service import DeliveryQueueService
from app.core.config import settings
from app.core.logging import get_logger, set_correlation_id

logger = get_logger(__name__)


@contextmanager
def get_event_loop():
    """
    Context manager for proper event loop handling in Celery tasks.
    Creates a new event loop and ensures proper cleanup to prevent resource leaks.
    """
    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        yield loop
    finally:
        try:
            # The Redis singleton is bound to this loop; drop it before closing
            from app.core.redis_client import close_redis
            loop.run_until_complete(close_redis())
        except (OSError, RuntimeError) as e:
            logger.warning(
                "Failed to close Redis at end of task",
                extra_data={"error": str(e)},
            )
        try:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            loop.close()


def run_async(coro):
    """Helper to run async code in sync Celery task with proper cleanup"""
    # Set correlation ID for task tracking
    set_correlation_id()

    with get_event_loop() as loop:
        return loop.run_until_complete(coro)


@celery_app.task(name="app.workers.tasks.process_delivery_queue")
def process_delivery_queue(limit: int | None = None):
    """
    Dispatch one batch of ready deliveries.
    Returns zero counters while queue processing is paused.
    """

    async def _process():
        async with get_task_session() as db:
            service = DeliveryQueueService(db)
            result = await service.process_batch(limit or settings.QUEUE_BATCH_SIZE)
            return asdict(result)

    return run_async(_process())


@celery_app.task(name="app.workers.tasks.cleanup_completed_deliveries")
def cleanup_completed_deliveries(days: int | None = None):
    """Remove completed deliveries older than the retention window"""

    async def _cleanup():
        async with get_task_session() as db:
            service = DeliveryQueueService(db)
            deleted = await service.cleanup_completed(days)
            return {"deleted": deleted}

    return run_async(_cleanup())
