"""
Request/response models for the management API
"""
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from app.core.config import settings
from app.db.models.queued_delivery import DeliveryPlatform, DeliveryStatus
from app.domain.services.delivery_queue_service import BulkAction


# ─── Queue ──────────────────────────────────────────────────────────────────

class QueuedDeliveryResponse(BaseModel):
    """Queued delivery without its payload body"""
    id: int
    status: DeliveryStatus
    priority: int
    retry_count: int
    max_retries: int
    next_retry_at: datetime | None
    created_at: datetime | None
    updated_at: datetime | None
    last_attempt_at: datetime | None
    integration_id: str
    integration_name: str
    platform: DeliveryPlatform
    webhook_url: str
    content_type: str
    endpoint_id: str
    endpoint_name: str
    endpoint_path: str
    request_id: str
    error_details: str | None
    response_status: int | None
    response_body: str | None

    class Config:
        from_attributes = True


class QueuedDeliveryDetailResponse(QueuedDeliveryResponse):
    payload: str


class QueueStatsResponse(BaseModel):
    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0
    total: int = 0


class QueueStatusResponse(BaseModel):
    enabled: bool


class QueueStatusUpdate(BaseModel):
    enabled: bool


class BatchResultResponse(BaseModel):
    processed: int = 0
    succeeded: int = 0
    retried: int = 0
    failed: int = 0
    skipped: int = 0
    paused: bool = False


class BulkActionRequest(BaseModel):
    ids: list[int] = Field(min_length=1)
    action: BulkAction

    @field_validator("ids")
    @classmethod
    def validate_ids(cls, v: list[int]) -> list[int]:
        if len(v) > settings.QUEUE_BULK_ACTION_MAX_IDS:
            raise ValueError(f"At most {settings.QUEUE_BULK_ACTION_MAX_IDS} ids per request")
        return v


class BulkActionError(BaseModel):
    id: int
    error: str


class BulkActionResponse(BaseModel):
    successful: int
    failed: int
    errors: list[BulkActionError] = []


# ─── Request log ────────────────────────────────────────────────────────────

class RequestLogStatsResponse(BaseModel):
    count: int
    max_entries: int
    oldest: datetime | None
    newest: datetime | None


class DeleteResultResponse(BaseModel):
    deleted: int


# ─── Field filters ──────────────────────────────────────────────────────────

class FieldFilterCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    included_fields: list[str] = []
    excluded_fields: list[str] = []
    description: str | None = None
    sample_data: str | None = None


class FieldFilterUpdate(BaseModel):
    """Partial update; omitted fields keep their stored values"""
    name: str | None = Field(default=None, min_length=1, max_length=255)
    included_fields: list[str] | None = None
    excluded_fields: list[str] | None = None
    description: str | None = None
    sample_data: str | None = None


class FieldFilterResponse(BaseModel):
    id: str
    name: str
    included_fields: list[str]
    excluded_fields: list[str]
    description: str | None
    sample_data: str | None
    created_at: datetime | None
    updated_at: datetime | None

    class Config:
        from_attributes = True


class ExtractFieldsRequest(BaseModel):
    sample: str


class ExtractFieldsResponse(BaseModel):
    success: bool
    fields: list[str]
    extracted: dict[str, str]
    error: str | None = None
