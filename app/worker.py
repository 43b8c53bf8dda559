"""
arq worker for the clinic automation engine.

Runs the status-change hooks enqueued by the API and the scheduled sweeps.
Start with ``arq app.worker.WorkerSettings``.
"""

from collections.abc import Awaitable, Callable
from typing import Any
from uuid import UUID

import structlog
from arq import Retry
from arq.cron import cron
from pydantic import BaseModel
from sqlalchemy import insert

from app.config import settings
from app.core.firebase import initialize_firebase
from app.core.metrics import AUTOMATION_DEAD_LETTERS
from app.core.redis_client import (
    CacheManager,
    SweepLock,
    get_arq_redis_settings,
    get_redis_client,
)
from app.database import AsyncSessionLocal, SessionFactory
from app.middleware.logging import configure_logging
from app.models.automation import automation_failures
from app.services.automation_queue import CONTINUE_RECURRING_JOB, FILL_CANCELLED_SLOT_JOB
from app.services.recurring_service import RecurringAppointmentService, process_recurring_appointments
from app.services.report_service import process_monthly_reports, process_weekly_reports
from app.services.slot_reallocation_service import SlotReallocationService, process_waitlist_fills
from app.services.subscription_service import process_expired_trials, send_trial_expiration_warnings

logger = structlog.get_logger(__name__)


def _session_factory(ctx: dict[str, Any]) -> SessionFactory:
    return ctx.get("session_factory") or AsyncSessionLocal


def _cache(ctx: dict[str, Any]) -> CacheManager | None:
    return ctx.get("cache")


def _uuid(value: str | None) -> UUID | None:
    return UUID(value) if value else None


async def record_dead_letter(
    ctx: dict[str, Any],
    job_name: str,
    payload: dict[str, Any],
    error: str | None,
) -> None:
    """
    Persist a job that exhausted its retries.

    Args:
        ctx: arq job context
        job_name: Task name
        payload: Task arguments
        error: Last failure message
    """
    attempts = ctx.get("job_try", 1)
    tenant = payload.get("tenant_id")

    AUTOMATION_DEAD_LETTERS.labels(job=job_name).inc()
    logger.error(
        "automation_job_dead_lettered",
        job=job_name,
        job_id=ctx.get("job_id"),
        attempts=attempts,
        error=error,
        **payload,
    )

    async with _session_factory(ctx)() as db:
        await db.execute(
            insert(automation_failures).values(
                job_name=job_name,
                job_id=ctx.get("job_id"),
                tenant_id=_uuid(tenant),
                payload=payload,
                error=error,
                attempts=attempts,
            )
        )
        await db.commit()


async def _run_hook(
    ctx: dict[str, Any],
    job_name: str,
    payload: dict[str, Any],
    hook: Callable[[SessionFactory], Awaitable[BaseModel]],
) -> dict[str, Any]:
    """Run an automation hook, retrying failed results with linear backoff."""
    job_try = ctx.get("job_try", 1)
    result = await hook(_session_factory(ctx))
    data = result.model_dump(mode="json")

    if data.get("success"):
        return data

    if job_try < settings.automation_job_max_tries:
        delay = job_try * settings.automation_retry_delay_seconds
        logger.warning(
            "automation_job_retrying",
            job=job_name,
            job_try=job_try,
            defer_seconds=delay,
            error=data.get("error"),
        )
        raise Retry(defer=delay)

    await record_dead_letter(ctx, job_name, payload, data.get("error"))
    return data


async def continue_recurring_appointment_task(
    ctx: dict[str, Any],
    appointment_id: str,
    tenant_id: str | None = None,
) -> dict[str, Any]:
    """
    Create the next appointment of a completed appointment's series.

    Args:
        ctx: arq job context
        appointment_id: Completed appointment
        tenant_id: Tenant scope

    Returns:
        Serialized continuation result
    """

    async def hook(session_factory: SessionFactory) -> BaseModel:
        async with session_factory() as db:
            service = RecurringAppointmentService(db, cache=_cache(ctx))
            return await service.continue_completed_appointment(
                UUID(appointment_id), _uuid(tenant_id)
            )

    payload = {"appointment_id": appointment_id, "tenant_id": tenant_id}
    return await _run_hook(ctx, CONTINUE_RECURRING_JOB, payload, hook)


async def fill_cancelled_slot_task(
    ctx: dict[str, Any],
    appointment_id: str,
    tenant_id: str | None = None,
) -> dict[str, Any]:
    """
    Offer a cancelled appointment's slot to the waitlist.

    Args:
        ctx: arq job context
        appointment_id: Cancelled appointment
        tenant_id: Tenant scope

    Returns:
        Serialized fill result
    """

    async def hook(session_factory: SessionFactory) -> BaseModel:
        async with session_factory() as db:
            return await SlotReallocationService(db, cache=_cache(ctx)).fill_cancelled_slot(
                UUID(appointment_id), _uuid(tenant_id)
            )

    payload = {"appointment_id": appointment_id, "tenant_id": tenant_id}
    return await _run_hook(ctx, FILL_CANCELLED_SLOT_JOB, payload, hook)


async def _locked_sweep(
    ctx: dict[str, Any],
    name: str,
    sweep: Callable[[SessionFactory], Awaitable[BaseModel]],
) -> dict[str, Any] | None:
    """Run a sweep unless another worker holds its lock."""
    lock = SweepLock(ctx.get("lock_client") or get_redis_client(), name)
    if not lock.acquire():
        logger.info("sweep_skipped_locked", sweep=name)
        return None

    try:
        result = await sweep(_session_factory(ctx))
        return result.model_dump(mode="json")
    finally:
        lock.release()


async def recurring_appointments_sweep(ctx: dict[str, Any]) -> dict[str, Any] | None:
    """Catch-up sweep for recurring continuations missed by the hook."""
    return await _locked_sweep(
        ctx,
        "recurring-appointments",
        lambda factory: process_recurring_appointments(session_factory=factory, cache=_cache(ctx)),
    )


async def waitlist_fills_sweep(ctx: dict[str, Any]) -> dict[str, Any] | None:
    """Catch-up sweep for recently cancelled slots."""
    return await _locked_sweep(
        ctx,
        "waitlist-fills",
        lambda factory: process_waitlist_fills(session_factory=factory, cache=_cache(ctx)),
    )


async def trial_warnings_sweep(ctx: dict[str, Any]) -> dict[str, Any] | None:
    """Daily trial expiry warnings."""
    return await _locked_sweep(
        ctx,
        "trial-warnings",
        lambda factory: send_trial_expiration_warnings(factory, cache=_cache(ctx)),
    )


async def trial_expirations_sweep(ctx: dict[str, Any]) -> dict[str, Any] | None:
    """Daily trial expirations."""
    return await _locked_sweep(
        ctx,
        "trial-expirations",
        lambda factory: process_expired_trials(factory, cache=_cache(ctx)),
    )


async def weekly_reports_sweep(ctx: dict[str, Any]) -> dict[str, Any] | None:
    """Monday morning weekly reports."""
    return await _locked_sweep(
        ctx,
        "weekly-reports",
        lambda factory: process_weekly_reports(session_factory=factory, cache=_cache(ctx)),
    )


async def monthly_reports_sweep(ctx: dict[str, Any]) -> dict[str, Any] | None:
    """First-of-month monthly reports."""
    return await _locked_sweep(
        ctx,
        "monthly-reports",
        lambda factory: process_monthly_reports(session_factory=factory, cache=_cache(ctx)),
    )


async def startup(ctx: dict[str, Any]) -> None:
    """Worker startup hook."""
    configure_logging()
    ctx["session_factory"] = AsyncSessionLocal
    ctx["lock_client"] = get_redis_client()
    ctx["cache"] = CacheManager(ctx["lock_client"])

    if settings.push_notifications_enabled:
        try:
            initialize_firebase(settings.firebase_credentials_path, settings.firebase_config_json)
        except Exception as e:
            logger.warning("firebase_initialization_failed", error=str(e))

    logger.info(
        "automation_worker_started",
        max_jobs=settings.arq_max_jobs,
        job_timeout=settings.arq_job_timeout,
    )


async def shutdown(ctx: dict[str, Any]) -> None:
    """Worker shutdown hook."""
    logger.info("automation_worker_stopped")


class WorkerSettings:
    """arq worker settings."""

    functions = [
        continue_recurring_appointment_task,
        fill_cancelled_slot_task,
    ]
    redis_settings = get_arq_redis_settings()
    on_startup = startup
    on_shutdown = shutdown

    max_jobs = settings.arq_max_jobs
    job_timeout = settings.arq_job_timeout
    keep_result = settings.arq_keep_result
    max_tries = settings.automation_job_max_tries

    # All times UTC
    cron_jobs = [
        cron(recurring_appointments_sweep, minute={0, 30}),
        cron(waitlist_fills_sweep, minute={5, 20, 35, 50}),
        cron(trial_warnings_sweep, hour=8, minute=0),
        cron(trial_expirations_sweep, hour=0, minute=15),
        cron(weekly_reports_sweep, weekday="mon", hour=7, minute=0),
        cron(monthly_reports_sweep, day=1, hour=7, minute=30),
    ]
