"""
Delivery queue management endpoints.

Listing and inspection, manual retry/delete, bulk actions, an on-demand
processing tick and the global pause/resume switch.
"""
from dataclasses import asdict
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.routes.schemas import (
    BatchResultResponse,
    BulkActionRequest,
    BulkActionResponse,
    QueueStatsResponse,
    QueueStatusResponse,
    QueueStatusUpdate,
    QueuedDeliveryDetailResponse,
    QueuedDeliveryResponse,
)
from app.core.exceptions import DeliveryNotFoundError
from app.core.logging import get_logger
from app.db.database import get_db
from app.db.models.queued_delivery import DeliveryStatus
from app.domain.services.delivery_queue_service import DeliveryQueueService
from app.domain.services.system_settings_service import SystemSettingsService

logger = get_logger(__name__)

router = APIRouter(dependencies=[Depends(require_admin_api_key)])

_AUTH_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
    429: {"description": "Too many failed API key attempts"},
}


def get_queue_service(db: AsyncSession = Depends(get_db)) -> DeliveryQueueService:
    return DeliveryQueueService(db)


@router.get(
    "",
    response_model=list[QueuedDeliveryResponse],
    summary="List queued deliveries",
    description="Newest first. Payload bodies are omitted; fetch a single delivery to see one.",
    responses={200: {"description": "Queued deliveries"}, **_AUTH_RESPONSES},
)
async def list_deliveries(
    delivery_status: Optional[DeliveryStatus] = Query(
        default=None,
        alias="status",
        description="Filter by status: pending, processing, completed, failed",
    ),
    limit: int = Query(default=100, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    service: DeliveryQueueService = Depends(get_queue_service),
) -> list[QueuedDeliveryResponse]:
    deliveries = await service.list_deliveries(status=delivery_status, limit=limit, offset=offset)
    return [QueuedDeliveryResponse.model_validate(d) for d in deliveries]


@router.get(
    "/stats",
    response_model=QueueStatsResponse,
    summary="Queue counts per status",
    responses={200: {"description": "Counts per status"}, **_AUTH_RESPONSES},
)
async def get_queue_stats(
    service: DeliveryQueueService = Depends(get_queue_service),
) -> QueueStatsResponse:
    stats = await service.get_stats()
    return QueueStatsResponse(**asdict(stats), total=stats.total)


@router.get(
    "/status",
    response_model=QueueStatusResponse,
    summary="Whether queue processing is enabled",
    responses={200: {"description": "Current switch state"}, **_AUTH_RESPONSES},
)
async def get_queue_status(
    db: AsyncSession = Depends(get_db),
) -> QueueStatusResponse:
    enabled = await SystemSettingsService(db).is_queue_processing_enabled()
    return QueueStatusResponse(enabled=enabled)


@router.put(
    "/status",
    response_model=QueueStatusResponse,
    summary="Pause or resume queue processing",
    description="While paused the worker pulls no new batch; dispatches in flight finish normally.",
    responses={200: {"description": "Updated switch state"}, **_AUTH_RESPONSES},
)
async def set_queue_status(
    body: QueueStatusUpdate,
    db: AsyncSession = Depends(get_db),
) -> QueueStatusResponse:
    enabled = await SystemSettingsService(db).set_queue_processing_enabled(body.enabled)
    return QueueStatusResponse(enabled=enabled)


@router.post(
    "/process",
    response_model=BatchResultResponse,
    summary="Process one batch now",
    description="Runs the same batch the periodic worker runs. Returns zero counters while paused.",
    responses={200: {"description": "Batch counters"}, **_AUTH_RESPONSES},
)
async def process_queue(
    limit: Optional[int] = Query(default=None, ge=1, le=100),
    service: DeliveryQueueService = Depends(get_queue_service),
) -> BatchResultResponse:
    result = await service.process_batch(limit)
    return BatchResultResponse(**asdict(result))


@router.post(
    "/bulk",
    response_model=BulkActionResponse,
    summary="Retry, cancel or delete several deliveries",
    description="Each id is handled independently; failures are reported per id.",
    responses={
        200: {"description": "Aggregate counts and per-id errors"},
        422: {"description": "Invalid action or too many ids"},
        **_AUTH_RESPONSES,
    },
)
async def bulk_action(
    body: BulkActionRequest,
    service: DeliveryQueueService = Depends(get_queue_service),
) -> BulkActionResponse:
    result = await service.bulk_action(body.ids, body.action)
    return BulkActionResponse(**asdict(result))


@router.get(
    "/{delivery_id}",
    response_model=QueuedDeliveryDetailResponse,
    summary="Get a queued delivery",
    responses={
        200: {"description": "Delivery with payload"},
        404: {"description": "Delivery not found"},
        **_AUTH_RESPONSES,
    },
)
async def get_delivery(
    delivery_id: int,
    service: DeliveryQueueService = Depends(get_queue_service),
) -> QueuedDeliveryDetailResponse:
    delivery = await service.get(delivery_id)
    if delivery is None:
        raise DeliveryNotFoundError(delivery_id)
    return QueuedDeliveryDetailResponse.model_validate(delivery)


@router.post(
    "/{delivery_id}/retry",
    response_model=QueuedDeliveryResponse,
    summary="Manually retry a failed delivery",
    description="Moves a failed delivery back to pending with retry_count reset to 0.",
    responses={
        200: {"description": "Delivery requeued"},
        404: {"description": "Delivery not found"},
        409: {"description": "Delivery is not in failed status"},
        **_AUTH_RESPONSES,
    },
)
async def retry_delivery(
    delivery_id: int,
    service: DeliveryQueueService = Depends(get_queue_service),
) -> QueuedDeliveryResponse:
    delivery = await service.retry(delivery_id)
    return QueuedDeliveryResponse.model_validate(delivery)


@router.delete(
    "/{delivery_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a queued delivery",
    responses={
        204: {"description": "Deleted"},
        404: {"description": "Delivery not found"},
        **_AUTH_RESPONSES,
    },
)
async def delete_delivery(
    delivery_id: int,
    service: DeliveryQueueService = Depends(get_queue_service),
) -> None:
    await service.delete(delivery_id)
