"""FastAPI dependencies."""

import hmac
from typing import Annotated
from uuid import UUID

import structlog
from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import BadRequestException, ForbiddenException
from app.core.redis_client import CacheManager, get_redis_client
from app.database import AsyncSessionLocal, SessionFactory, get_db
from app.services.automation_queue import AutomationQueue


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None,
) -> UUID | None:
    """
    Resolve the tenant scope of a request.

    Requests without an ``X-Tenant-ID`` header operate on the default scope.

    Args:
        x_tenant_id: Raw header value

    Returns:
        Tenant ID, or None for the default scope

    Raises:
        BadRequestException: If the header is not a UUID
    """
    if not x_tenant_id:
        return None

    try:
        tenant_id = UUID(x_tenant_id)
    except ValueError:
        raise BadRequestException("Invalid X-Tenant-ID header")

    structlog.contextvars.bind_contextvars(tenant_id=str(tenant_id))
    return tenant_id


async def verify_cron_secret(
    x_cron_secret: Annotated[str | None, Header()] = None,
) -> None:
    """
    Authorize a sweep trigger.

    Raises:
        ForbiddenException: If the secret is missing or wrong
    """
    if not x_cron_secret or not hmac.compare_digest(x_cron_secret, settings.cron_secret):
        raise ForbiddenException("Invalid cron secret")


def get_session_factory() -> SessionFactory:
    """Session factory used by sweeps started from a request."""
    return AsyncSessionLocal


def get_automation_queue() -> AutomationQueue:
    """Queue for status-change automation jobs."""
    return AutomationQueue()


def get_cache() -> CacheManager:
    """Settings cache."""
    return CacheManager(get_redis_client())


# Type aliases for dependency injection
DatabaseSession = Annotated[AsyncSession, Depends(get_db)]
TenantId = Annotated[UUID | None, Depends(get_tenant_id)]
SessionFactoryDep = Annotated[SessionFactory, Depends(get_session_factory)]
QueueDep = Annotated[AutomationQueue, Depends(get_automation_queue)]
CacheDep = Annotated[CacheManager, Depends(get_cache)]
