"""
System Settings Service - operator key/value switches
"""
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import settings
from app.core.logging import get_logger
from app.db.models.system_setting import SystemSetting

logger = get_logger(__name__)

QUEUE_PROCESSING_ENABLED_KEY = "queue_processing_enabled"

_TRUE_VALUES = {"true", "1", "yes", "on"}


class SystemSettingsService:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def get(self, key: str) -> str | None:
        result = await self.db.execute(
            select(SystemSetting.value).where(SystemSetting.key == key)
        )
        return result.scalar_one_or_none()

    async def set(self, key: str, value: str, description: str | None = None) -> SystemSetting:
        setting = await self.db.get(SystemSetting, key)
        if setting is None:
            setting = SystemSetting(key=key, value=value, description=description)
            self.db.add(setting)
        else:
            setting.value = value
            setting.updated_at = datetime.utcnow()
            if description is not None:
                setting.description = description
        await self.db.commit()
        return setting

    async def is_queue_processing_enabled(self) -> bool:
        value = await self.get(QUEUE_PROCESSING_ENABLED_KEY)
        if value is None:
            return settings.QUEUE_PROCESSING_ENABLED_DEFAULT
        return value.strip().lower() in _TRUE_VALUES

    async def set_queue_processing_enabled(self, enabled: bool) -> bool:
        await self.set(
            QUEUE_PROCESSING_ENABLED_KEY,
            "true" if enabled else "false",
            description="Whether the delivery queue worker pulls new batches",
        )
        logger.info(
            "Queue processing toggled",
            extra_data={"enabled": enabled}
        )
        return enabled
