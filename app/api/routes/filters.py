"""
Field filter endpoints - CRUD plus a sample extraction helper for the editor.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.dependencies.admin_auth import require_admin_api_key
from app.api.routes.schemas import (
    ExtractFieldsRequest,
    ExtractFieldsResponse,
    FieldFilterCreate,
    FieldFilterResponse,
    FieldFilterUpdate,
)
from app.db.database import get_db
from app.domain.services.field_extraction import extract_available_fields
from app.domain.services.field_filter_service import FieldFilterService

router = APIRouter(dependencies=[Depends(require_admin_api_key)])

_AUTH_RESPONSES = {
    401: {"description": "Missing API key"},
    403: {"description": "Invalid API key"},
    429: {"description": "Too many failed API key attempts"},
}


def get_field_filter_service(db: AsyncSession = Depends(get_db)) -> FieldFilterService:
    return FieldFilterService(db)


@router.get(
    "",
    response_model=list[FieldFilterResponse],
    summary="List field filters",
    responses={200: {"description": "All filters by name"}, **_AUTH_RESPONSES},
)
async def list_filters(
    service: FieldFilterService = Depends(get_field_filter_service),
) -> list[FieldFilterResponse]:
    return [FieldFilterResponse.model_validate(f) for f in await service.list_filters()]


@router.post(
    "",
    response_model=FieldFilterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a field filter",
    responses={201: {"description": "Filter created"}, **_AUTH_RESPONSES},
)
async def create_filter(
    body: FieldFilterCreate,
    service: FieldFilterService = Depends(get_field_filter_service),
) -> FieldFilterResponse:
    field_filter = await service.create(**body.model_dump())
    return FieldFilterResponse.model_validate(field_filter)


@router.post(
    "/extract-fields",
    response_model=ExtractFieldsResponse,
    summary="List the fields a sample payload exposes",
    description="Never fails on bad input; parse errors come back with success=false.",
    responses={200: {"description": "Extraction result"}, **_AUTH_RESPONSES},
)
async def extract_fields(body: ExtractFieldsRequest) -> ExtractFieldsResponse:
    result = extract_available_fields(body.sample)
    return ExtractFieldsResponse(
        success=result.success,
        fields=result.fields,
        extracted=result.extracted,
        error=result.error,
    )


@router.get(
    "/{filter_id}",
    response_model=FieldFilterResponse,
    summary="Get a field filter",
    responses={
        200: {"description": "Filter"},
        404: {"description": "Filter not found"},
        **_AUTH_RESPONSES,
    },
)
async def get_filter(
    filter_id: str,
    service: FieldFilterService = Depends(get_field_filter_service),
) -> FieldFilterResponse:
    return FieldFilterResponse.model_validate(await service.get_or_raise(filter_id))


@router.put(
    "/{filter_id}",
    response_model=FieldFilterResponse,
    summary="Update a field filter",
    responses={
        200: {"description": "Updated filter"},
        404: {"description": "Filter not found"},
        **_AUTH_RESPONSES,
    },
)
async def update_filter(
    filter_id: str,
    body: FieldFilterUpdate,
    service: FieldFilterService = Depends(get_field_filter_service),
) -> FieldFilterResponse:
    field_filter = await service.update(filter_id, **body.model_dump(exclude_unset=True))
    return FieldFilterResponse.model_validate(field_filter)


@router.delete(
    "/{filter_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a field filter",
    responses={
        204: {"description": "Deleted"},
        404: {"description": "Filter not found"},
        **_AUTH_RESPONSES,
    },
)
async def delete_filter(
    filter_id: str,
    service: FieldFilterService = Depends(get_field_filter_service),
) -> None:
    await service.delete(filter_id)
