"""
Domain value objects passed between the relay pipeline, the delivery queue
and the request log.

Integrations and endpoints are owned by the routing layer; the core only
receives snapshots of them.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

from pydantic import BaseModel, Field

from app.db.models.queued_delivery import DeliveryPlatform
from app.db.models.request_log import AttemptStatus, OverallStatus


@dataclass(frozen=True)
class IntegrationTarget:
    """Snapshot of a configured destination"""

    id: str
    name: str
    platform: DeliveryPlatform
    webhook_url: str
    enabled: bool = True
    field_filter_id: str | None = None


@dataclass(frozen=True)
class EndpointContext:
    """Inbound endpoint a payload arrived on"""

    id: str
    name: str
    path: str
    tenant_id: str | None = None
    associated_integration_ids: frozenset[str] = field(default_factory=frozenset)


class IncomingRequest(BaseModel):
    ip: str | None = None
    method: str = "POST"
    headers: dict[str, str] = Field(default_factory=dict)
    body: str = ""


class IntegrationAttempt(BaseModel):
    integration_id: str
    integration_name: str
    platform: DeliveryPlatform
    status: AttemptStatus
    webhook_url: str
    error_details: str | None = None
    outgoing_payload: str | None = None
    response_status: int | None = None
    response_body: str | None = None
    # Queue row created for this attempt, if any
    delivery_id: int | None = None


class ProcessingSummary(BaseModel):
    overall_status: OverallStatus
    message: str = ""


class RequestLogEntry(BaseModel):
    """Decrypted view of a request log row"""

    id: int
    request_id: str
    timestamp: datetime
    endpoint_id: str
    endpoint_name: str
    endpoint_path: str
    tenant_id: str | None = None
    field_filter_id: str | None = None
    incoming_request: IncomingRequest
    processing_summary: ProcessingSummary
    integrations: list[IntegrationAttempt] = Field(default_factory=list)
