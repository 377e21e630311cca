"""
System Setting Model - operator key/value switches (e.g. queue pause)
"""
from datetime import datetime
from sqlalchemy import Column, DateTime, String, Text

from app.db.database import Base


class SystemSetting(Base):
    __tablename__ = "system_settings"

    key = Column(String(100), primary_key=True)
    value = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
