"""Clinic settings lookup with Redis caching."""

from uuid import UUID

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.redis_client import CacheManager
from app.models.automation import clinic_settings
from app.models.tenants import tenants
from app.schemas.settings import AutomationSettings, ClinicSettings

logger = structlog.get_logger(__name__)


def settings_cache_key(tenant_id: UUID | None) -> str:
    """Cache key of a tenant's clinic settings."""
    return f"clinic-settings:{tenant_id or 'default'}"


class SettingsService:
    """Reads per-tenant clinic settings. Missing rows mean every automation is on."""

    def __init__(self, db: AsyncSession, cache: CacheManager | None = None):
        """Initialize service with a database session and an optional cache."""
        self.db = db
        self.cache = cache

    async def get_settings(self, tenant_id: UUID | None = None) -> ClinicSettings:
        """
        Get clinic settings for a tenant.

        Args:
            tenant_id: Tenant scope, None for the default scope

        Returns:
            Clinic settings, defaults when none are stored
        """
        key = settings_cache_key(tenant_id)
        if self.cache is not None and settings.settings_cache_ttl > 0:
            cached = self.cache.get_json(key)
            if cached is not None:
                return ClinicSettings.model_validate(cached)

        scope_filter = (
            clinic_settings.c.tenant_id == tenant_id
            if tenant_id
            else clinic_settings.c.tenant_id.is_(None)
        )
        result = await self.db.execute(
            select(clinic_settings.c.clinic_name, clinic_settings.c.automation_settings).where(
                scope_filter
            )
        )
        row = result.first()

        if row is None:
            clinic_name = await self._tenant_name(tenant_id)
            loaded = ClinicSettings(clinic_name=clinic_name)
        else:
            loaded = ClinicSettings(
                clinic_name=row.clinic_name or await self._tenant_name(tenant_id),
                automation_settings=AutomationSettings.model_validate(row.automation_settings or {}),
            )

        if self.cache is not None and settings.settings_cache_ttl > 0:
            self.cache.set_json(key, loaded.model_dump(), ttl=settings.settings_cache_ttl)

        return loaded

    async def is_enabled(self, tenant_id: UUID | None, flag: str) -> bool:
        """Whether an automation flag is on for a tenant."""
        loaded = await self.get_settings(tenant_id)
        enabled = getattr(loaded.automation_settings, flag, True) is not False
        if not enabled:
            logger.info("automation_disabled", flag=flag, tenant_id=str(tenant_id) if tenant_id else None)
        return enabled

    async def _tenant_name(self, tenant_id: UUID | None) -> str | None:
        if not tenant_id:
            return None
        result = await self.db.execute(select(tenants.c.name).where(tenants.c.id == tenant_id))
        return result.scalar_one_or_none()
