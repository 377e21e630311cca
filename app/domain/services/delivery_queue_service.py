"""
Delivery Queue Service - durable webhook delivery with retry/backoff

Rows move through a small state machine:

    pending --claim--> processing --2xx--> completed
                                  --failure, retries left--> pending (next_retry_at set)
                                  --failure, exhausted--> failed
    failed --manual retry--> pending (retry_count reset)
    any non-completed --cancel--> removed

The pending -> processing claim is a conditional UPDATE; a worker that loses
the race skips the row.
"""
from __future__ import annotations

import asyncio
import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Sequence

import httpx
from sqlalchemy import select, update, delete, func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.exceptions import (
    AppException,
    ConfigurationError,
    DeliveryError,
    DeliveryNotFoundError,
    ErrorCode,
    InvalidStateTransitionError,
    ValidationException,
)
from app.core.logging import get_logger, log_async_operation
from app.db.models.queued_delivery import QueuedDelivery, DeliveryStatus
from app.domain.entities import EndpointContext, IntegrationTarget
from app.domain.services.request_log_service import RequestLogService
from app.domain.services.system_settings_service import SystemSettingsService

logger = get_logger(__name__)

MAX_STORED_RESPONSE_CHARS = 1000


def compute_retry_delay(retry_count: int, delays: Sequence[int] | None = None) -> int:
    """
    Seconds to wait before the next attempt.

    ``retry_count`` is the count *before* the failed attempt; lookups past the
    end of the table reuse its last entry.
    """
    table = list(delays if delays is not None else settings.DELIVERY_RETRY_DELAYS_SECONDS)
    if not table:
        return 0
    index = min(max(retry_count, 0), len(table) - 1)
    return table[index]


class BulkAction(str, enum.Enum):
    RETRY = "retry"
    DELETE = "delete"
    CANCEL = "cancel"


@dataclass
class BatchResult:
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    paused: bool = False


@dataclass
class BulkActionResult:
    successful: int = 0
    failed: int = 0
    errors: list[dict] = field(default_factory=list)


@dataclass
class QueueStats:
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed


@dataclass(frozen=True)
class _DispatchJob:
    """Immutable snapshot of a claimed row; dispatch never touches the session"""

    id: int
    webhook_url: str
    payload: str
    content_type: str
    retry_count: int
    max_retries: int
    integration_id: str
    integration_name: str
    request_id: str


@dataclass(frozen=True)
class _DispatchOutcome:
    success: bool
    response_status: int | None = None
    response_body: str | None = None
    error: DeliveryError | None = None


class DeliveryQueueService:
    """Durable queue of formatted notifications awaiting HTTP delivery."""

    def __init__(
        self,
        db: AsyncSession,
        *,
        http_client: httpx.AsyncClient | None = None,
        request_log: RequestLogService | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self._http_client = http_client
        self._request_log = request_log or RequestLogService(db)
        self._now = clock

    # ==================== Enqueue / lookup ====================

    async def enqueue(
        self,
        integration: IntegrationTarget,
        payload: str,
        endpoint: EndpointContext,
        request_id: str,
        *,
        content_type: str = "application/json",
        priority: int = 0,
        max_retries: int | None = None,
    ) -> QueuedDelivery:
        """Insert a pending delivery and return it; the integration must be enabled and associated"""
        if max_retries is None:
            max_retries = settings.DELIVERY_DEFAULT_MAX_RETRIES
        if max_retries < 0:
            raise ValidationException("max_retries must be >= 0", field="max_retries")
        if not integration.enabled:
            raise ConfigurationError(
                f"Integration {integration.id} is disabled",
                ErrorCode.INTEGRATION_DISABLED,
                details={"integration_id": integration.id},
            )
        if integration.id not in endpoint.associated_integration_ids:
            raise ConfigurationError(
                f"Integration {integration.id} is not associated with endpoint {endpoint.id}",
                ErrorCode.INTEGRATION_NOT_ASSOCIATED,
                details={"integration_id": integration.id, "endpoint_id": endpoint.id},
            )

        now = self._now()
        delivery = QueuedDelivery(
            status=DeliveryStatus.PENDING,
            priority=priority,
            retry_count=0,
            max_retries=max_retries,
            integration_id=integration.id,
            integration_name=integration.name,
            platform=integration.platform,
            webhook_url=integration.webhook_url,
            payload=payload,
            content_type=content_type,
            endpoint_id=endpoint.id,
            endpoint_name=endpoint.name,
            endpoint_path=endpoint.path,
            request_id=request_id,
            created_at=now,
            updated_at=now,
        )
        self.db.add(delivery)
        await self.db.commit()

        logger.info(
            "Delivery enqueued",
            extra_data={
                "delivery_id": delivery.id,
                "integration_id": integration.id,
                "platform": integration.platform.value,
                "request_id": request_id,
                "priority": priority,
            }
        )
        return delivery

    async def get(self, delivery_id: int) -> QueuedDelivery | None:
        result = await self.db.execute(
            select(QueuedDelivery)
            .where(QueuedDelivery.id == delivery_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _get_or_raise(self, delivery_id: int) -> QueuedDelivery:
        delivery = await self.get(delivery_id)
        if delivery is None:
            raise DeliveryNotFoundError(delivery_id)
        return delivery

    async def list_deliveries(
        self,
        status: DeliveryStatus | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[QueuedDelivery]:
        """Newest first, optionally narrowed to one status"""
        query = select(QueuedDelivery).execution_options(populate_existing=True)
        if status is not None:
            query = query.where(QueuedDelivery.status == status)
        query = query.order_by(QueuedDelivery.created_at.desc(), QueuedDelivery.id.desc())
        result = await self.db.execute(query.offset(offset).limit(limit))
        return list(result.scalars().all())

    async def get_deliveries_for_request(self, request_id: str) -> list[QueuedDelivery]:
        result = await self.db.execute(
            select(QueuedDelivery)
            .where(QueuedDelivery.request_id == request_id)
            .order_by(QueuedDelivery.id)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def get_stats(self) -> QueueStats:
        result = await self.db.execute(
            select(QueuedDelivery.status, func.count(QueuedDelivery.id))
            .group_by(QueuedDelivery.status)
        )
        stats = QueueStats()
        for status, count in result.all():
            setattr(stats, DeliveryStatus(status).value, count)
        return stats

    # ==================== Worker path ====================

    async def dequeue_batch(self, limit: int) -> list[QueuedDelivery]:
        """Ready pending rows, highest priority first, then oldest"""
        now = self._now()
        result = await self.db.execute(
            select(QueuedDelivery)
            .where(
                QueuedDelivery.status == DeliveryStatus.PENDING,
                or_(
                    QueuedDelivery.next_retry_at.is_(None),
                    QueuedDelivery.next_retry_at <= now,
                ),
            )
            .order_by(
                QueuedDelivery.priority.desc(),
                QueuedDelivery.created_at.asc(),
                QueuedDelivery.id.asc(),
            )
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def claim(self, delivery_id: int) -> bool:
        """Atomically move a row from pending to processing; False if another worker won"""
        now = self._now()
        result = await self.db.execute(
            update(QueuedDelivery)
            .where(
                QueuedDelivery.id == delivery_id,
                QueuedDelivery.status == DeliveryStatus.PENDING,
            )
            .values(
                status=DeliveryStatus.PROCESSING,
                last_attempt_at=now,
                updated_at=now,
            )
        )
        await self.db.commit()
        return result.rowcount == 1

    async def process_batch(self, limit: int | None = None) -> BatchResult:
        """
        Claim and dispatch one batch of ready deliveries.

        Returns zero counters without touching the queue while processing is
        paused. Dispatches run concurrently; outcomes are written one by one.
        """
        if not await SystemSettingsService(self.db).is_queue_processing_enabled():
            logger.info("Queue processing is paused, skipping batch")
            return BatchResult(paused=True)

        limit = limit or settings.QUEUE_BATCH_SIZE
        result = BatchResult()

        jobs: list[_DispatchJob] = []
        for delivery in await self.dequeue_batch(limit):
            job = _DispatchJob(
                id=delivery.id,
                webhook_url=delivery.webhook_url,
                payload=delivery.payload,
                content_type=delivery.content_type,
                retry_count=delivery.retry_count,
                max_retries=delivery.max_retries,
                integration_id=delivery.integration_id,
                integration_name=delivery.integration_name,
                request_id=delivery.request_id,
            )
            if await self.claim(job.id):
                jobs.append(job)
            else:
                result.skipped += 1
                logger.debug(
                    "Delivery claimed by another worker",
                    extra_data={"delivery_id": job.id}
                )

        if not jobs:
            return result

        if self._http_client is not None:
            outcomes = await self._dispatch_all(self._http_client, jobs)
        else:
            async with httpx.AsyncClient(timeout=settings.DELIVERY_TIMEOUT_SECONDS) as client:
                outcomes = await self._dispatch_all(client, jobs)

        for job, outcome in zip(jobs, outcomes):
            result.processed += 1
            try:
                new_status = await self._record_outcome(job, outcome)
            except SQLAlchemyError as exc:
                await self.db.rollback()
                logger.error(
                    "Could not write delivery outcome",
                    extra_data={"delivery_id": job.id, "error": str(exc)},
                    exc_info=True,
                )
                continue
            if new_status == DeliveryStatus.COMPLETED:
                result.succeeded += 1
            elif new_status == DeliveryStatus.PENDING:
                result.retried += 1
            elif new_status == DeliveryStatus.FAILED:
                result.failed += 1

        logger.info(
            "Delivery batch processed",
            extra_data={
                "processed": result.processed,
                "succeeded": result.succeeded,
                "retried": result.retried,
                "failed": result.failed,
                "skipped": result.skipped,
            }
        )
        return result

    async def _dispatch_all(
        self, client: httpx.AsyncClient, jobs: list[_DispatchJob]
    ) -> list[_DispatchOutcome]:
        return list(await asyncio.gather(*(self._dispatch(client, job) for job in jobs)))

    async def _dispatch(self, client: httpx.AsyncClient, job: _DispatchJob) -> _DispatchOutcome:
        """
        One HTTP attempt; every failure mode is folded into the outcome.

        DELIVERY_TIMEOUT_SECONDS bounds the whole request, not only each
        connect/read/write phase.
        """
        timeout = settings.DELIVERY_TIMEOUT_SECONDS
        try:
            response = await asyncio.wait_for(
                client.post(
                    job.webhook_url,
                    content=job.payload.encode("utf-8"),
                    headers={
                        "Content-Type": job.content_type,
                        "User-Agent": settings.RELAY_USER_AGENT,
                    },
                    timeout=timeout,
                ),
                timeout,
            )
        except (httpx.TimeoutException, asyncio.TimeoutError):
            error = DeliveryError(
                f"Request timed out after {timeout}s",
                error_code=ErrorCode.DELIVERY_TIMEOUT,
            )
        except (httpx.HTTPError, httpx.InvalidURL) as exc:
            error = DeliveryError(f"Transport error: {exc}")
        else:
            if response.is_success:
                return _DispatchOutcome(
                    success=True,
                    response_status=response.status_code,
                    response_body=response.text[:MAX_STORED_RESPONSE_CHARS],
                )
            error = DeliveryError.from_response(response, max_response_chars=MAX_STORED_RESPONSE_CHARS)

        logger.warning(
            "Delivery attempt failed",
            extra_data={
                "delivery_id": job.id,
                "integration_id": job.integration_id,
                "retry_count": job.retry_count,
                "error": error.message,
            }
        )
        return _DispatchOutcome(
            success=False,
            response_status=error.response_status,
            response_body=error.response_body,
            error=error,
        )

    async def _record_outcome(self, job: _DispatchJob, outcome: _DispatchOutcome) -> DeliveryStatus | None:
        """
        Resolve a processing row after one attempt.

        Returns the new status, or None when the row disappeared mid-flight.
        """
        now = self._now()

        if outcome.success:
            new_status = DeliveryStatus.COMPLETED
            values = dict(
                status=new_status,
                response_status=outcome.response_status,
                response_body=outcome.response_body,
                error_details=None,
                next_retry_at=None,
                updated_at=now,
            )
        else:
            attempts = job.retry_count + 1
            error_details = outcome.error.message if outcome.error else "Delivery failed"
            # max_retries counts total attempts, not retries after the first
            if attempts < job.max_retries:
                new_status = DeliveryStatus.PENDING
                delay = compute_retry_delay(job.retry_count)
                values = dict(
                    status=new_status,
                    retry_count=attempts,
                    next_retry_at=now + timedelta(seconds=delay),
                    error_details=error_details,
                    response_status=outcome.response_status,
                    response_body=outcome.response_body,
                    updated_at=now,
                )
            else:
                new_status = DeliveryStatus.FAILED
                values = dict(
                    status=new_status,
                    retry_count=min(attempts, job.max_retries),
                    next_retry_at=None,
                    error_details=error_details,
                    response_status=outcome.response_status,
                    response_body=outcome.response_body,
                    updated_at=now,
                )

        result = await self.db.execute(
            update(QueuedDelivery)
            .where(
                QueuedDelivery.id == job.id,
                QueuedDelivery.status == DeliveryStatus.PROCESSING,
            )
            .values(**values)
        )
        await self.db.commit()

        if result.rowcount != 1:
            logger.info(
                "Delivery removed while in flight, outcome dropped",
                extra_data={"delivery_id": job.id}
            )
            return None

        if new_status in (DeliveryStatus.COMPLETED, DeliveryStatus.FAILED):
            await self._feed_back_to_log(job, outcome, new_status)

        return new_status

    async def _feed_back_to_log(
        self, job: _DispatchJob, outcome: _DispatchOutcome, status: DeliveryStatus
    ) -> None:
        try:
            await self._request_log.apply_delivery_outcome(
                request_id=job.request_id,
                delivery_id=job.id,
                integration_id=job.integration_id,
                succeeded=status == DeliveryStatus.COMPLETED,
                response_status=outcome.response_status,
                response_body=outcome.response_body,
                error_details=outcome.error.message if outcome.error else None,
            )
        except (AppException, SQLAlchemyError) as exc:
            # The log is advisory; a damaged entry must not fail the queue
            if isinstance(exc, SQLAlchemyError):
                await self.db.rollback()
            logger.warning(
                "Could not update request log with delivery outcome",
                extra_data={
                    "delivery_id": job.id,
                    "request_id": job.request_id,
                    "error": exc.message if isinstance(exc, AppException) else str(exc),
                }
            )

    # ==================== Operator actions ====================

    async def retry(self, delivery_id: int) -> QueuedDelivery:
        """failed -> pending with retry_count reset"""
        delivery = await self._get_or_raise(delivery_id)
        if delivery.status != DeliveryStatus.FAILED:
            raise InvalidStateTransitionError(
                delivery_id, delivery.status.value, DeliveryStatus.PENDING.value
            )

        previous_error = delivery.error_details
        delivery.status = DeliveryStatus.PENDING
        delivery.retry_count = 0
        delivery.next_retry_at = None
        delivery.updated_at = self._now()
        if previous_error:
            delivery.error_details = f"Manually retried after error: {previous_error}"
        await self.db.commit()

        logger.info("Delivery manually retried", extra_data={"delivery_id": delivery_id})
        return delivery

    async def cancel(self, delivery_id: int) -> None:
        """Remove a delivery that has not completed"""
        delivery = await self._get_or_raise(delivery_id)
        if delivery.status == DeliveryStatus.COMPLETED:
            raise InvalidStateTransitionError(
                delivery_id, delivery.status.value, "cancelled"
            )
        await self.db.delete(delivery)
        await self.db.commit()
        logger.info("Delivery cancelled", extra_data={"delivery_id": delivery_id})

    async def delete(self, delivery_id: int) -> None:
        delivery = await self._get_or_raise(delivery_id)
        await self.db.delete(delivery)
        await self.db.commit()
        logger.info("Delivery deleted", extra_data={"delivery_id": delivery_id})

    async def bulk_action(self, delivery_ids: Sequence[int], action: BulkAction | str) -> BulkActionResult:
        """Apply ``action`` to each id independently; one failure never stops the rest"""
        try:
            action = BulkAction(action)
        except ValueError as exc:
            raise AppException(
                message=f"Unknown bulk action: {action}",
                error_code=ErrorCode.INVALID_BULK_ACTION,
                status_code=400,
                details={"allowed": [a.value for a in BulkAction]},
            ) from exc

        ids = list(dict.fromkeys(delivery_ids))
        if not ids:
            raise ValidationException("No delivery ids supplied", field="ids")
        if len(ids) > settings.QUEUE_BULK_ACTION_MAX_IDS:
            raise ValidationException(
                f"At most {settings.QUEUE_BULK_ACTION_MAX_IDS} ids per bulk action",
                field="ids",
            )

        handlers = {
            BulkAction.RETRY: self.retry,
            BulkAction.DELETE: self.delete,
            BulkAction.CANCEL: self.cancel,
        }
        handler = handlers[action]

        result = BulkActionResult()
        for delivery_id in ids:
            try:
                await handler(delivery_id)
            except AppException as exc:
                result.failed += 1
                result.errors.append({"id": delivery_id, "error": exc.message})
            else:
                result.successful += 1

        logger.info(
            "Bulk queue action applied",
            extra_data={
                "action": action.value,
                "requested": len(ids),
                "successful": result.successful,
                "failed": result.failed,
            }
        )
        return result

    # ==================== Maintenance ====================

    @log_async_operation("completed_delivery_cleanup")
    async def cleanup_completed(self, max_age_days: int | None = None) -> int:
        """Delete completed rows last touched more than ``max_age_days`` ago"""
        if max_age_days is None:
            max_age_days = settings.COMPLETED_DELIVERY_RETENTION_DAYS
        cutoff = self._now() - timedelta(days=max_age_days)

        result = await self.db.execute(
            delete(QueuedDelivery).where(
                QueuedDelivery.status == DeliveryStatus.COMPLETED,
                QueuedDelivery.updated_at < cutoff,
            )
        )
        await self.db.commit()

        deleted = result.rowcount or 0
        logger.info(
            "Old completed deliveries removed",
            extra_data={"deleted": deleted, "max_age_days": max_age_days}
        )
        return deleted
