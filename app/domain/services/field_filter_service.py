"""
Field Filter Service - CRUD for stored include/exclude rule sets
"""
from __future__ import annotations

from datetime import datetime
from typing import Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import ErrorCode, NotFoundException, ValidationException
from app.core.logging import get_logger
from app.db.models.field_filter import FieldFilter

logger = get_logger(__name__)

_UNSET = object()


def _normalize_fields(fields: Sequence[str] | None, field_name: str) -> list[str]:
    """Strip, drop blanks and duplicates, keep first-seen order"""
    if fields is None:
        return []
    cleaned: list[str] = []
    for item in fields:
        if not isinstance(item, str):
            raise ValidationException("Field names must be strings", field=field_name)
        item = item.strip()
        if item and item not in cleaned:
            cleaned.append(item)
    return cleaned


class FieldFilterService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_filters(self) -> list[FieldFilter]:
        result = await self.db.execute(select(FieldFilter).order_by(FieldFilter.name))
        return list(result.scalars().all())

    async def get(self, filter_id: str) -> FieldFilter | None:
        return await self.db.get(FieldFilter, filter_id)

    async def get_or_raise(self, filter_id: str) -> FieldFilter:
        field_filter = await self.get(filter_id)
        if field_filter is None:
            raise NotFoundException("Field filter", filter_id, error_code=ErrorCode.FIELD_FILTER_NOT_FOUND)
        return field_filter

    async def create(
        self,
        name: str,
        included_fields: Sequence[str] | None = None,
        excluded_fields: Sequence[str] | None = None,
        description: str | None = None,
        sample_data: str | None = None,
    ) -> FieldFilter:
        if not name or not name.strip():
            raise ValidationException("Filter name is required", field="name")

        now = datetime.utcnow()
        field_filter = FieldFilter(
            name=name.strip(),
            included_fields=_normalize_fields(included_fields, "included_fields"),
            excluded_fields=_normalize_fields(excluded_fields, "excluded_fields"),
            description=description,
            sample_data=sample_data,
            created_at=now,
            updated_at=now,
        )
        self.db.add(field_filter)
        await self.db.commit()

        logger.info(
            "Field filter created",
            extra_data={"filter_id": field_filter.id, "name": field_filter.name}
        )
        return field_filter

    async def update(
        self,
        filter_id: str,
        *,
        name=_UNSET,
        included_fields=_UNSET,
        excluded_fields=_UNSET,
        description=_UNSET,
        sample_data=_UNSET,
    ) -> FieldFilter:
        """Partial update; omitted arguments keep their stored values"""
        field_filter = await self.get_or_raise(filter_id)

        if name is not _UNSET:
            if not name or not name.strip():
                raise ValidationException("Filter name is required", field="name")
            field_filter.name = name.strip()
        if included_fields is not _UNSET:
            field_filter.included_fields = _normalize_fields(included_fields, "included_fields")
        if excluded_fields is not _UNSET:
            field_filter.excluded_fields = _normalize_fields(excluded_fields, "excluded_fields")
        if description is not _UNSET:
            field_filter.description = description
        if sample_data is not _UNSET:
            field_filter.sample_data = sample_data

        field_filter.updated_at = datetime.utcnow()
        await self.db.commit()

        logger.info("Field filter updated", extra_data={"filter_id": filter_id})
        return field_filter

    async def delete(self, filter_id: str) -> None:
        field_filter = await self.get_or_raise(filter_id)
        await self.db.delete(field_filter)
        await self.db.commit()
        logger.info("Field filter deleted", extra_data={"filter_id": filter_id})
