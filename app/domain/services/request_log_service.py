"""
Request Log Service - bounded, encrypted audit trail

Each inbound request produces one entry listing what happened for every
integration it fanned out to. Headers, raw body and the attempts list are
encrypted before they reach the database. The table is a ring buffer: after
every insert the oldest rows are evicted down to REQUEST_LOG_MAX_ENTRIES.
"""
from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Iterable, Sequence

from sqlalchemy import select, delete, func
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.crypto import FieldCipher, get_field_cipher
from app.core.exceptions import DecryptionError, ErrorCode, NotFoundException
from app.core.logging import get_logger
from app.db.models.request_log import RequestLog, AttemptStatus, OverallStatus
from app.domain.entities import (
    EndpointContext,
    IncomingRequest,
    IntegrationAttempt,
    ProcessingSummary,
    RequestLogEntry,
)

logger = get_logger(__name__)

DECRYPTION_FAILURE_MESSAGE = "Failed to decrypt log entry"


def compute_overall_status(statuses: Iterable[AttemptStatus]) -> OverallStatus:
    """Skipped attempts count as non-success."""
    statuses = list(statuses)
    if not statuses:
        return OverallStatus.NO_INTEGRATIONS_TRIGGERED
    successes = sum(1 for s in statuses if s == AttemptStatus.SUCCESS)
    if successes == len(statuses):
        return OverallStatus.SUCCESS
    if successes == 0:
        return OverallStatus.TOTAL_FAILURE
    return OverallStatus.PARTIAL_FAILURE


def summarize_attempts(attempts: Sequence[IntegrationAttempt]) -> ProcessingSummary:
    overall = compute_overall_status(a.status for a in attempts)
    if overall == OverallStatus.NO_INTEGRATIONS_TRIGGERED:
        message = "No integrations were triggered for this endpoint"
    else:
        succeeded = sum(1 for a in attempts if a.status == AttemptStatus.SUCCESS)
        message = f"{succeeded} of {len(attempts)} integration(s) succeeded"
    return ProcessingSummary(overall_status=overall, message=message)


@dataclass
class RequestLogStats:
    count: int
    oldest: datetime | None
    newest: datetime | None


class RequestLogService:
    def __init__(
        self,
        db: AsyncSession,
        *,
        cipher: FieldCipher | None = None,
        max_entries: int | None = None,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.db = db
        self._cipher = cipher or get_field_cipher()
        self._max_entries = max_entries or settings.REQUEST_LOG_MAX_ENTRIES
        self._now = clock

    # ==================== Encoding ====================

    def _encrypt_json(self, value) -> str | None:
        return self._cipher.encrypt(json.dumps(value, ensure_ascii=False))

    def _decrypt_json(self, value: str | None, default):
        plain = self._cipher.decrypt(value)
        if plain is None or plain == "":
            return default
        return json.loads(plain)

    def _encrypt_attempts(self, attempts: Sequence[IntegrationAttempt]) -> str | None:
        return self._encrypt_json([a.model_dump(mode="json") for a in attempts])

    def _decrypt_attempts(self, row: RequestLog) -> list[IntegrationAttempt]:
        raw = self._decrypt_json(row.integration_attempts, [])
        return [IntegrationAttempt.model_validate(item) for item in raw]

    def _to_entry(self, row: RequestLog) -> RequestLogEntry:
        """Decrypt a row; an unreadable row degrades to a placeholder entry"""
        try:
            headers = self._decrypt_json(row.incoming_headers, {})
            body = self._cipher.decrypt(row.incoming_body) or ""
            attempts = self._decrypt_attempts(row)
            # A mis-shaped payload fails validation here and degrades the same way
            return RequestLogEntry(
                id=row.id,
                request_id=row.request_id,
                timestamp=row.timestamp,
                endpoint_id=row.endpoint_id,
                endpoint_name=row.endpoint_name,
                endpoint_path=row.endpoint_path,
                tenant_id=row.tenant_id,
                field_filter_id=row.field_filter_id,
                incoming_request=IncomingRequest(
                    ip=row.incoming_ip,
                    method=row.incoming_method,
                    headers=headers,
                    body=body,
                ),
                processing_summary=ProcessingSummary(
                    overall_status=row.overall_status,
                    message=row.processing_message or "",
                ),
                integrations=attempts,
            )
        except (DecryptionError, ValueError) as exc:
            logger.warning(
                "Request log entry could not be decrypted",
                extra_data={"log_id": row.id, "error": str(exc)}
            )
            return self._placeholder(row)

    @staticmethod
    def _placeholder(row: RequestLog) -> RequestLogEntry:
        return RequestLogEntry(
            id=row.id,
            request_id=row.request_id,
            timestamp=row.timestamp,
            endpoint_id=row.endpoint_id,
            endpoint_name=row.endpoint_name,
            endpoint_path=row.endpoint_path,
            tenant_id=row.tenant_id,
            field_filter_id=row.field_filter_id,
            incoming_request=IncomingRequest(ip=row.incoming_ip, method=row.incoming_method),
            processing_summary=ProcessingSummary(
                overall_status=OverallStatus.TOTAL_FAILURE,
                message=DECRYPTION_FAILURE_MESSAGE,
            ),
            integrations=[],
        )

    # ==================== Write path ====================

    async def record(
        self,
        endpoint: EndpointContext,
        incoming_request: IncomingRequest,
        attempts: Sequence[IntegrationAttempt],
        *,
        request_id: str | None = None,
        field_filter_id: str | None = None,
        processing_message: str | None = None,
    ) -> RequestLogEntry:
        """Append an entry, then evict the oldest rows beyond the cap"""
        summary = summarize_attempts(attempts)
        if processing_message:
            summary.message = processing_message

        row = RequestLog(
            request_id=request_id or uuid.uuid4().hex,
            timestamp=self._now(),
            endpoint_id=endpoint.id,
            endpoint_name=endpoint.name,
            endpoint_path=endpoint.path,
            tenant_id=endpoint.tenant_id,
            field_filter_id=field_filter_id,
            incoming_ip=incoming_request.ip,
            incoming_method=incoming_request.method,
            incoming_headers=self._encrypt_json(incoming_request.headers),
            incoming_body=self._cipher.encrypt(incoming_request.body),
            integration_attempts=self._encrypt_attempts(attempts),
            overall_status=summary.overall_status,
            processing_message=summary.message,
        )
        self.db.add(row)
        await self.db.flush()

        evicted = await self._enforce_retention()
        await self.db.commit()

        logger.info(
            "Request logged",
            extra_data={
                "log_id": row.id,
                "request_id": row.request_id,
                "endpoint_id": endpoint.id,
                "overall_status": summary.overall_status.value,
                "attempts": len(attempts),
                "evicted": evicted,
            }
        )

        return RequestLogEntry(
            id=row.id,
            request_id=row.request_id,
            timestamp=row.timestamp,
            endpoint_id=row.endpoint_id,
            endpoint_name=row.endpoint_name,
            endpoint_path=row.endpoint_path,
            tenant_id=row.tenant_id,
            field_filter_id=row.field_filter_id,
            incoming_request=incoming_request,
            processing_summary=summary,
            integrations=list(attempts),
        )

    async def _enforce_retention(self) -> int:
        count = (await self.db.execute(select(func.count(RequestLog.id)))).scalar_one()
        overflow = count - self._max_entries
        if overflow <= 0:
            return 0

        oldest_ids = (
            await self.db.execute(
                select(RequestLog.id)
                .order_by(RequestLog.timestamp.asc(), RequestLog.id.asc())
                .limit(overflow)
            )
        ).scalars().all()
        await self.db.execute(
            delete(RequestLog)
            .where(RequestLog.id.in_(oldest_ids))
        )
        return len(oldest_ids)

    async def apply_delivery_outcome(
        self,
        *,
        request_id: str,
        delivery_id: int,
        integration_id: str,
        succeeded: bool,
        response_status: int | None = None,
        response_body: str | None = None,
        error_details: str | None = None,
    ) -> bool:
        """
        Write a terminal queue outcome into the originating entry.

        Returns False when the entry has been evicted or has no matching attempt.
        Raises DecryptionError when the stored attempts cannot be read.
        """
        result = await self.db.execute(
            select(RequestLog).where(RequestLog.request_id == request_id)
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()
        if row is None:
            return False

        try:
            attempts = self._decrypt_attempts(row)
        except ValueError as exc:
            raise DecryptionError(f"Unreadable attempts: {exc}", log_id=row.id) from exc

        target = next((a for a in attempts if a.delivery_id == delivery_id), None)
        if target is None:
            target = next((a for a in attempts if a.integration_id == integration_id), None)
        if target is None:
            return False

        target.response_status = response_status
        target.response_body = response_body
        if succeeded:
            target.status = AttemptStatus.SUCCESS
            target.error_details = None
        else:
            target.status = AttemptStatus.FAILED_RELAY
            target.error_details = error_details

        summary = summarize_attempts(attempts)
        row.integration_attempts = self._encrypt_attempts(attempts)
        row.overall_status = summary.overall_status
        row.processing_message = summary.message
        await self.db.commit()
        return True

    # ==================== Read / delete ====================

    async def list_entries(
        self,
        tenant_id: str | None = None,
        limit: int | None = None,
    ) -> list[RequestLogEntry]:
        """Newest first; a row that cannot be decrypted becomes a placeholder"""
        query = select(RequestLog).order_by(RequestLog.timestamp.desc(), RequestLog.id.desc())
        if tenant_id is not None:
            query = query.where(RequestLog.tenant_id == tenant_id)
        if limit is not None:
            query = query.limit(limit)
        result = await self.db.execute(query)
        return [self._to_entry(row) for row in result.scalars().all()]

    async def get_by_id(self, log_id: int) -> RequestLogEntry:
        row = await self.db.get(RequestLog, log_id)
        if row is None:
            raise NotFoundException("Request log entry", log_id, error_code=ErrorCode.LOG_ENTRY_NOT_FOUND)
        return self._to_entry(row)

    async def delete(self, log_id: int) -> None:
        row = await self.db.get(RequestLog, log_id)
        if row is None:
            raise NotFoundException("Request log entry", log_id, error_code=ErrorCode.LOG_ENTRY_NOT_FOUND)
        await self.db.delete(row)
        await self.db.commit()
        logger.info("Request log entry deleted", extra_data={"log_id": log_id})

    async def delete_all(self, tenant_id: str | None = None) -> int:
        statement = delete(RequestLog)
        if tenant_id is not None:
            statement = statement.where(RequestLog.tenant_id == tenant_id)
        result = await self.db.execute(statement)
        await self.db.commit()
        deleted = result.rowcount or 0
        logger.info(
            "Request log cleared",
            extra_data={"deleted": deleted, "tenant_id": tenant_id}
        )
        return deleted

    async def get_stats(self) -> RequestLogStats:
        result = await self.db.execute(
            select(
                func.count(RequestLog.id),
                func.min(RequestLog.timestamp),
                func.max(RequestLog.timestamp),
            )
        )
        count, oldest, newest = result.one()
        return RequestLogStats(count=count, oldest=oldest, newest=newest)
