"""
Relay Service - per-request orchestration

Called by the inbound routing layer once per payload:

    extract -> (per enabled, associated integration) filter -> format -> enqueue
    then a single request log write with every attempt.

Failures are isolated per integration. A payload that cannot be parsed marks
every enabled integration as failed_transformation instead of raising.
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import AppException, ParseError, TransformError
from app.core.logging import get_logger
from app.db.models.request_log import AttemptStatus, OverallStatus
from app.domain.entities import (
    EndpointContext,
    IncomingRequest,
    IntegrationAttempt,
    IntegrationTarget,
    RequestLogEntry,
)
from app.domain.services.delivery_queue_service import DeliveryQueueService
from app.domain.services.field_extraction import apply_field_filter, extract
from app.domain.services.field_filter_service import FieldFilterService
from app.domain.services.formatters import format_message
from app.domain.services.request_log_service import RequestLogService

logger = get_logger(__name__)

QUEUED_MESSAGE = "Notification queued for delivery"
MISSING_FILTER_WARNING = "Warning: Configured field filter not found"


@dataclass
class RelayResult:
    request_id: str
    log_entry: RequestLogEntry
    attempts: list[IntegrationAttempt] = field(default_factory=list)
    delivery_ids: list[int] = field(default_factory=list)

    @property
    def overall_status(self) -> OverallStatus:
        return self.log_entry.processing_summary.overall_status


class RelayService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        queue: DeliveryQueueService | None = None,
        request_log: RequestLogService | None = None,
        filters: FieldFilterService | None = None,
    ):
        self.db = db
        self._request_log = request_log or RequestLogService(db)
        self._queue = queue or DeliveryQueueService(db, request_log=self._request_log)
        self._filters = filters or FieldFilterService(db)

    async def relay(
        self,
        endpoint: EndpointContext,
        integrations: Sequence[IntegrationTarget],
        incoming_request: IncomingRequest,
        *,
        request_id: str | None = None,
        priority: int = 0,
    ) -> RelayResult:
        request_id = request_id or uuid.uuid4().hex
        associated = [i for i in integrations if i.id in endpoint.associated_integration_ids]
        enabled = [i for i in associated if i.enabled]

        fields: dict[str, str] | None = None
        parse_error: ParseError | None = None
        if enabled:
            try:
                fields = extract(incoming_request.body)
            except ParseError as exc:
                parse_error = exc
                logger.warning(
                    "Inbound payload could not be parsed",
                    extra_data={
                        "request_id": request_id,
                        "endpoint_id": endpoint.id,
                        "error": exc.message,
                    }
                )

        attempts: list[IntegrationAttempt] = []
        delivery_ids: list[int] = []
        for integration in associated:
            if not integration.enabled:
                attempts.append(self._attempt(
                    integration,
                    AttemptStatus.SKIPPED_DISABLED,
                    error_details="Integration is disabled.",
                ))
                continue
            if parse_error is not None:
                attempts.append(self._attempt(
                    integration,
                    AttemptStatus.FAILED_TRANSFORMATION,
                    error_details=parse_error.message,
                ))
                continue

            attempt = await self._relay_to(integration, fields, endpoint, request_id, priority)
            attempts.append(attempt)
            if attempt.delivery_id is not None:
                delivery_ids.append(attempt.delivery_id)

        queued = sum(1 for a in attempts if a.status == AttemptStatus.SUCCESS)
        if not enabled:
            message = (
                f"Notification received for endpoint '{endpoint.name}', "
                "but no enabled integrations were found to process it."
            )
        else:
            message = f"Processed {queued}/{len(enabled)} integrations successfully."

        log_entry = await self._request_log.record(
            endpoint,
            incoming_request,
            attempts,
            request_id=request_id,
            field_filter_id=next((i.field_filter_id for i in enabled if i.field_filter_id), None),
            processing_message=message,
        )

        logger.info(
            "Relay completed",
            extra_data={
                "request_id": request_id,
                "endpoint_id": endpoint.id,
                "associated": len(associated),
                "queued": queued,
                "overall_status": log_entry.processing_summary.overall_status.value,
            }
        )
        return RelayResult(
            request_id=request_id,
            log_entry=log_entry,
            attempts=attempts,
            delivery_ids=delivery_ids,
        )

    async def _relay_to(
        self,
        integration: IntegrationTarget,
        fields: dict[str, str],
        endpoint: EndpointContext,
        request_id: str,
        priority: int,
    ) -> IntegrationAttempt:
        """filter -> format -> enqueue for one integration"""
        warning: str | None = None
        filtered = fields
        if integration.field_filter_id:
            field_filter = await self._filters.get(integration.field_filter_id)
            if field_filter is None:
                warning = MISSING_FILTER_WARNING
                logger.warning(
                    "Configured field filter not found",
                    extra_data={
                        "integration_id": integration.id,
                        "field_filter_id": integration.field_filter_id,
                    }
                )
            else:
                filtered = apply_field_filter(fields, field_filter)

        try:
            message = format_message(filtered, integration.platform)
        except TransformError as exc:
            return self._attempt(
                integration,
                AttemptStatus.FAILED_TRANSFORMATION,
                error_details=exc.message,
            )

        try:
            delivery = await self._queue.enqueue(
                integration,
                message.body,
                endpoint,
                request_id,
                content_type=message.content_type,
                priority=priority,
            )
        except (AppException, SQLAlchemyError) as exc:
            await self.db.rollback()
            reason = exc.message if isinstance(exc, AppException) else str(exc)
            logger.error(
                "Failed to queue notification",
                extra_data={"integration_id": integration.id, "error": reason}
            )
            return self._attempt(
                integration,
                AttemptStatus.FAILED_TRANSFORMATION,
                error_details=f"Failed to queue notification: {reason}",
                outgoing_payload=message.body,
            )

        details = QUEUED_MESSAGE if warning is None else f"{QUEUED_MESSAGE} ({warning})"
        return self._attempt(
            integration,
            AttemptStatus.SUCCESS,
            error_details=details,
            outgoing_payload=message.body,
            delivery_id=delivery.id,
        )

    @staticmethod
    def _attempt(integration: IntegrationTarget, status: AttemptStatus, **kwargs) -> IntegrationAttempt:
        return IntegrationAttempt(
            integration_id=integration.id,
            integration_name=integration.name,
            platform=integration.platform,
            status=status,
            webhook_url=integration.webhook_url,
            **kwargs,
        )
