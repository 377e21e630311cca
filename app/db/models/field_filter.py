"""
Field Filter Model - named include/exclude rule sets for extracted fields
"""
import uuid
from datetime import datetime
from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.types import JSON

from app.db.database import Base


def _new_filter_id() -> str:
    return str(uuid.uuid4())


class FieldFilter(Base):
    """Include/exclude rules; an empty include list keeps every non-excluded field"""

    __tablename__ = "field_filters"

    id = Column(String(64), primary_key=True, default=_new_filter_id)
    name = Column(String(255), nullable=False)
    # Ordered list of dotted keys
    included_fields = Column(JSON, nullable=False, default=list)
    excluded_fields = Column(JSON, nullable=False, default=list)
    description = Column(Text, nullable=True)
    # Sample payload the filter was built from, kept for the editor
    sample_data = Column(Text, nullable=True)

    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
