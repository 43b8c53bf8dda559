"""Enqueue side of the durable automation jobs."""

from datetime import datetime
from uuid import UUID

import structlog
from arq import create_pool
from arq.connections import ArqRedis

from app.core.redis_client import get_arq_redis_settings
from app.schemas.appointments import AppointmentStatus

logger = structlog.get_logger(__name__)

CONTINUE_RECURRING_JOB = "continue_recurring_appointment_task"
FILL_CANCELLED_SLOT_JOB = "fill_cancelled_slot_task"

# Status transitions that trigger an automation job
STATUS_JOBS: dict[AppointmentStatus, str] = {
    AppointmentStatus.COMPLETED: CONTINUE_RECURRING_JOB,
    AppointmentStatus.CANCELLED: FILL_CANCELLED_SLOT_JOB,
}

# Global job pool instance
_arq_pool: ArqRedis | None = None


async def get_arq_pool() -> ArqRedis:
    """
    Get or create the arq job pool.

    Returns:
        Redis connection pool able to enqueue jobs
    """
    global _arq_pool

    if _arq_pool is None:
        _arq_pool = await create_pool(get_arq_redis_settings())

    return _arq_pool


async def close_arq_pool() -> None:
    """Close the arq job pool."""
    global _arq_pool

    if _arq_pool is not None:
        await _arq_pool.aclose()
        _arq_pool = None


class AutomationQueue:
    """Hands appointment status changes to the automation worker."""

    def __init__(self, pool: ArqRedis | None = None):
        """Initialize queue, optionally with an existing pool."""
        self.pool = pool

    async def enqueue_for_status(
        self,
        appointment_id: UUID,
        tenant_id: UUID | None,
        status: AppointmentStatus,
        changed_at: datetime | None = None,
    ) -> str | None:
        """
        Enqueue the automation job matching a new appointment status.

        Enqueue failures are logged and swallowed; the sweeps pick up anything
        missed here.

        Args:
            appointment_id: Appointment whose status changed
            tenant_id: Tenant scope
            status: New status
            changed_at: Time of the transition; part of the job id so a later
                transition of the same appointment gets its own job

        Returns:
            Job id, or None when nothing was enqueued
        """
        job_name = STATUS_JOBS.get(status)
        if job_name is None:
            return None

        tenant = str(tenant_id) if tenant_id else None
        # One job per appointment and transition
        job_key = f"{job_name}:{appointment_id}"
        if changed_at is not None:
            job_key = f"{job_key}:{int(changed_at.timestamp() * 1000)}"

        try:
            pool = self.pool or await get_arq_pool()
            job = await pool.enqueue_job(job_name, str(appointment_id), tenant, _job_id=job_key)
        except Exception as e:
            logger.error(
                "automation_enqueue_failed",
                job=job_name,
                appointment_id=str(appointment_id),
                error=str(e),
            )
            return None

        if job is None:
            logger.info("automation_job_already_queued", job=job_name, job_id=job_key)
            return job_key

        logger.info(
            "automation_job_enqueued",
            job=job_name,
            job_id=job.job_id,
            appointment_id=str(appointment_id),
        )
        return job.job_id
