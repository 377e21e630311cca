"""
Request Log Model - encrypted audit trail of inbound requests

One row per inbound request with the outcome of every integration it fanned
out to. Headers, raw body and the attempts list are stored as ciphertext;
the summary columns stay readable for filtering and retention.
"""
import enum
from datetime import datetime
from sqlalchemy import Column, Integer, DateTime, String, Enum as SQLEnum, Text

from app.db.database import Base


class OverallStatus(str, enum.Enum):
    SUCCESS = "success"
    PARTIAL_FAILURE = "partial_failure"
    TOTAL_FAILURE = "total_failure"
    NO_INTEGRATIONS_TRIGGERED = "no_integrations_triggered"


class AttemptStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED_TRANSFORMATION = "failed_transformation"
    FAILED_RELAY = "failed_relay"
    SKIPPED_DISABLED = "skipped_disabled"
    SKIPPED_NO_ASSOCIATION = "skipped_no_association"


class RequestLog(Base):
    """Bounded request log (ring buffer by timestamp)"""

    __tablename__ = "request_logs"

    id = Column(Integer, primary_key=True, index=True)
    request_id = Column(String(64), nullable=False, unique=True, index=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)

    endpoint_id = Column(String(64), nullable=False)
    endpoint_name = Column(String(255), nullable=False)
    endpoint_path = Column(String(500), nullable=False)
    tenant_id = Column(String(64), nullable=True, index=True)
    field_filter_id = Column(String(64), nullable=True)

    incoming_ip = Column(String(64), nullable=True)
    incoming_method = Column(String(16), nullable=False)
    # Ciphertext columns
    incoming_headers = Column(Text, nullable=True)
    incoming_body = Column(Text, nullable=True)
    integration_attempts = Column(Text, nullable=True)

    overall_status = Column(SQLEnum(OverallStatus), nullable=False, index=True)
    processing_message = Column(Text, nullable=False, default="")
