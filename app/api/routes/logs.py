"""
Request log endpoints - read and delete the encrypted audit trail.
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.routes.schemas import DeleteResultResponse, RequestLogStatsResponse
from app.core.config import settings
from app.db.database import get_db
from app.domain.entities import RequestLogEntry
from app.domain.services.request_log_service import RequestLogService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])

_AUTH_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
    429: {"description": "Too many failed API key attempts"},
}


def get_request_log_service(db: AsyncSession = Depends(get_db)) -> RequestLogService:
    return RequestLogService(db)


@router.get(
    "",
    response_model=list[RequestLogEntry],
    summary="List request log entries",
    description=(
        "Newest first. Entries that cannot be decrypted are returned as "
        "total_failure placeholders instead of failing the listing."
    ),
    responses={200: {"description": "Decrypted entries"}, **_AUTH_RESPONSES},
)
async def list_logs(
    tenant_id: Optional[str] = Query(default=None, description="Only entries for this tenant"),
    limit: Optional[int] = Query(default=None, ge=1, le=1000),
    service: RequestLogService = Depends(get_request_log_service),
) -> list[RequestLogEntry]:
    return await service.list_entries(tenant_id=tenant_id, limit=limit)


@router.get(
    "/stats",
    response_model=RequestLogStatsResponse,
    summary="Request log size and time range",
    responses={200: {"description": "Log statistics"}, **_AUTH_RESPONSES},
)
async def get_log_stats(
    service: RequestLogService = Depends(get_request_log_service),
) -> RequestLogStatsResponse:
    stats = await service.get_stats()
    return RequestLogStatsResponse(
        count=stats.count,
        max_entries=settings.REQUEST_LOG_MAX_ENTRIES,
        oldest=stats.oldest,
        newest=stats.newest,
    )


@router.get(
    "/{log_id}",
    response_model=RequestLogEntry,
    summary="Get a request log entry",
    responses={
        200: {"description": "Decrypted entry"},
        404: {"description": "Entry not found"},
        **_AUTH_RESPONSES,
    },
)
async def get_log(
    log_id: int,
    service: RequestLogService = Depends(get_request_log_service),
) -> RequestLogEntry:
    return await service.get_by_id(log_id)


@router.delete(
    "/{log_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a request log entry",
    responses={
        204: {"description": "Deleted"},
        404: {"description": "Entry not found"},
        **_AUTH_RESPONSES,
    },
)
async def delete_log(
    log_id: int,
    service: RequestLogService = Depends(get_request_log_service),
) -> None:
    await service.delete(log_id)


@router.delete(
    "",
    response_model=DeleteResultResponse,
    summary="Delete all request log entries",
    responses={200: {"description": "Number of deleted entries"}, **_AUTH_RESPONSES},
)
async def delete_all_logs(
    tenant_id: Optional[str] = Query(default=None, description="Only clear this tenant's entries"),
    service: RequestLogService = Depends(get_request_log_service),
) -> DeleteResultResponse:
    deleted = await service.delete_all(tenant_id=tenant_id)
    return DeleteResultResponse(deleted=deleted)
