"""
Queued Delivery Model - durable outbound webhook queue
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, String, DateTime, Enum as SQLEnum, Text, Index

from app.db.database import Base


class DeliveryPlatform(str, enum.Enum):
    SLACK = "slack"
    DISCORD = "discord"
    TEAMS = "teams"
    GENERIC_WEBHOOK = "generic_webhook"


class DeliveryStatus(str, enum.Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class QueuedDelivery(Base):
    """One formatted notification waiting to be POSTed to an integration's webhook"""

    __tablename__ = "queued_deliveries"
    __table_args__ = (
        # dequeue scans pending rows by priority then age
        Index("ix_queued_deliveries_dequeue", "status", "priority", "created_at"),
    )

    id = Column(Integer, primary_key=True, index=True)

    status = Column(SQLEnum(DeliveryStatus), default=DeliveryStatus.PENDING, nullable=False, index=True)
    priority = Column(Integer, default=0, nullable=False)
    retry_count = Column(Integer, default=0, nullable=False)
    max_retries = Column(Integer, default=3, nullable=False)

    # Integration snapshot taken at enqueue time
    integration_id = Column(String(64), nullable=False, index=True)
    integration_name = Column(String(255), nullable=False)
    platform = Column(SQLEnum(DeliveryPlatform), nullable=False)
    webhook_url = Column(Text, nullable=False)

    payload = Column(Text, nullable=False)
    content_type = Column(String(100), nullable=False, default="application/json")

    # Endpoint the original request arrived on
    endpoint_id = Column(String(64), nullable=False)
    endpoint_name = Column(String(255), nullable=False)
    endpoint_path = Column(String(500), nullable=False)
    request_id = Column(String(64), nullable=False, index=True)

    # Timestamps
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    last_attempt_at = Column(DateTime, nullable=True)
    next_retry_at = Column(DateTime, nullable=True)

    # Outcome of the latest attempt
    error_details = Column(Text, nullable=True)
    response_status = Column(Integer, nullable=True)
    response_body = Column(Text, nullable=True)
