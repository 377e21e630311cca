"""
Database Models
"""
from app.db.models.queued_delivery import QueuedDelivery
from app.db.models.request_log import RequestLog
from app.db.models.field_filter import FieldFilter
from app.db.models.system_setting import SystemSetting

__all__ = [
    "QueuedDelivery",
    "RequestLog",
    "FieldFilter",
    "SystemSetting",
]
