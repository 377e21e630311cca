"""
Domain Services
"""
from app.domain.services.delivery_queue_service import DeliveryQueueService
from app.domain.services.request_log_service import RequestLogService
from app.domain.services.field_filter_service import FieldFilterService
from app.domain.services.system_settings_service import SystemSettingsService
from app.domain.services.relay_service import RelayService

__all__ = [
    "DeliveryQueueService",
    "RequestLogService",
    "FieldFilterService",
    "SystemSettingsService",
    "RelayService",
]
