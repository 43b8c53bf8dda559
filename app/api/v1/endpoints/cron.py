"""Sweep triggers for external schedulers."""

from collections.abc import Awaitable, Callable
from enum import Enum
from typing import Any

import structlog
from fastapi import APIRouter, Depends, status
from pydantic import BaseModel

from app.core.redis_client import CacheManager
from app.database import SessionFactory
from app.dependencies import CacheDep, SessionFactoryDep, verify_cron_secret
from app.services.recurring_service import process_recurring_appointments
from app.services.report_service import process_monthly_reports, process_weekly_reports
from app.services.slot_reallocation_service import process_waitlist_fills
from app.services.subscription_service import process_expired_trials, send_trial_expiration_warnings

logger = structlog.get_logger(__name__)

router = APIRouter(dependencies=[Depends(verify_cron_secret)])


class SweepName(str, Enum):
    """Sweeps that can be triggered over HTTP."""

    RECURRING_APPOINTMENTS = "recurring-appointments"
    WAITLIST_FILLS = "waitlist-fills"
    TRIAL_WARNINGS = "trial-warnings"
    TRIAL_EXPIRATIONS = "trial-expirations"
    WEEKLY_REPORTS = "weekly-reports"
    MONTHLY_REPORTS = "monthly-reports"


SWEEPS: dict[SweepName, Callable[[SessionFactory, CacheManager], Awaitable[BaseModel]]] = {
    SweepName.RECURRING_APPOINTMENTS: lambda f, c: process_recurring_appointments(session_factory=f, cache=c),
    SweepName.WAITLIST_FILLS: lambda f, c: process_waitlist_fills(session_factory=f, cache=c),
    SweepName.TRIAL_WARNINGS: lambda f, c: send_trial_expiration_warnings(session_factory=f, cache=c),
    SweepName.TRIAL_EXPIRATIONS: lambda f, c: process_expired_trials(session_factory=f, cache=c),
    SweepName.WEEKLY_REPORTS: lambda f, c: process_weekly_reports(session_factory=f, cache=c),
    SweepName.MONTHLY_REPORTS: lambda f, c: process_monthly_reports(session_factory=f, cache=c),
}


@router.post(
    "/{sweep}",
    status_code=status.HTTP_200_OK,
    summary="Run an automation sweep",
)
async def run_sweep(
    sweep: SweepName,
    session_factory: SessionFactoryDep,
    cache: CacheDep,
) -> dict[str, Any]:
    """
    Run one sweep to completion and return its aggregated result.

    Requires the ``X-Cron-Secret`` header.

    Args:
        sweep: Sweep name
        session_factory: Factory for the sweep's sessions
        cache: Settings cache

    Returns:
        Sweep result
    """
    logger.info("sweep_triggered", sweep=sweep.value)
    result = await SWEEPS[sweep](session_factory, cache)
    return result.model_dump(mode="json")
