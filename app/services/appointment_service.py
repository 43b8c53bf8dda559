"""Appointment persistence and status transitions."""

from datetime import date
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.exceptions import NotFoundException
from app.models.appointments import appointments
from app.models.patients import doctors, patients
from app.models.types import utcnow
from app.schemas.appointments import (
    INACTIVE_STATUSES,
    AppointmentRecord,
    AppointmentStatus,
    AppointmentStatusResponse,
    AppointmentStatusUpdate,
)
from app.services.automation_queue import AutomationQueue
from app.services.code_allocator import APPOINTMENT_PREFIX, CodeAllocator

logger = structlog.get_logger(__name__)


def tenant_filter(column: Any, tenant_id: UUID | None) -> Any:
    """WHERE clause restricting a tenant_id column to one tenant scope."""
    return column == tenant_id if tenant_id else column.is_(None)


class AppointmentService:
    """Service for managing appointments."""

    def __init__(self, db: AsyncSession, queue: AutomationQueue | None = None):
        """Initialize service with database session."""
        self.db = db
        self.queue = queue

    async def get_appointment(self, appointment_id: UUID) -> AppointmentRecord | None:
        """Load an appointment by id."""
        result = await self.db.execute(select(appointments).where(appointments.c.id == appointment_id))
        row = result.mappings().first()
        return AppointmentRecord.model_validate(dict(row)) if row else None

    async def find_active_on_day(
        self,
        tenant_id: UUID | None,
        patient_id: UUID,
        day: date,
    ) -> AppointmentRecord | None:
        """
        Find a live appointment of a patient on a calendar day.

        Args:
            tenant_id: Tenant scope
            patient_id: Patient
            day: Calendar day

        Returns:
            First matching appointment not cancelled or missed, or None
        """
        result = await self.db.execute(
            select(appointments)
            .where(
                and_(
                    tenant_filter(appointments.c.tenant_id, tenant_id),
                    appointments.c.patient_id == patient_id,
                    appointments.c.appointment_date == day,
                    appointments.c.status.not_in(INACTIVE_STATUSES),
                )
            )
            .limit(1)
        )
        row = result.mappings().first()
        return AppointmentRecord.model_validate(dict(row)) if row else None

    async def find_series_occurrence(self, series_id: UUID, day: date) -> AppointmentRecord | None:
        """Occurrence of a series on a calendar day, whatever its status."""
        result = await self.db.execute(
            select(appointments)
            .where(
                appointments.c.series_id == series_id,
                appointments.c.appointment_date == day,
            )
            .order_by(appointments.c.created_at.desc())
            .limit(1)
        )
        row = result.mappings().first()
        return AppointmentRecord.model_validate(dict(row)) if row else None

    async def find_replacement(self, appointment_id: UUID) -> AppointmentRecord | None:
        """Appointment created to fill the given cancelled appointment, if any."""
        result = await self.db.execute(
            select(appointments).where(appointments.c.replaces_appointment_id == appointment_id)
        )
        row = result.mappings().first()
        return AppointmentRecord.model_validate(dict(row)) if row else None

    async def create_appointment(self, tenant_id: UUID | None, values: dict[str, Any]) -> AppointmentRecord:
        """
        Insert an appointment with a freshly allocated code.

        Does not commit; the code and the row belong to the caller's
        transaction.

        Args:
            tenant_id: Tenant scope
            values: Column values other than id, code and tenant

        Returns:
            The new appointment
        """
        code = await CodeAllocator(self.db).next_code(tenant_id, APPOINTMENT_PREFIX)
        now = utcnow()
        row_values = {
            "status": AppointmentStatus.SCHEDULED.value,
            **values,
            "tenant_id": tenant_id,
            "code": code,
            "created_at": now,
            "updated_at": now,
        }
        result = await self.db.execute(insert(appointments).values(**row_values))
        appointment_id = result.inserted_primary_key[0]

        created = await self.get_appointment(appointment_id)
        if created is None:
            raise NotFoundException("Appointment not found after insert")
        return created

    async def update_appointment_status(
        self,
        appointment_id: UUID,
        tenant_id: UUID | None,
        data: AppointmentStatusUpdate,
    ) -> AppointmentStatusResponse:
        """
        Update appointment status and hand the change to the automation worker.

        Args:
            appointment_id: Appointment ID
            tenant_id: Tenant of the caller
            data: Status update data

        Returns:
            Updated appointment and the enqueued job id

        Raises:
            NotFoundException: If appointment not found in the tenant
        """
        current = await self.get_appointment(appointment_id)
        if current is None or current.tenant_id != tenant_id:
            raise NotFoundException("Appointment not found")

        old_status = current.status
        now = utcnow()
        update_values: dict[str, Any] = {
            "status": data.status.value,
            "updated_at": now,
        }

        if data.notes:
            update_values["notes"] = data.notes

        if data.status == AppointmentStatus.CANCELLED:
            update_values["cancelled_at"] = now

        await self.db.execute(
            update(appointments).where(appointments.c.id == appointment_id).values(**update_values)
        )
        await self.db.commit()

        updated = await self.get_appointment(appointment_id)
        if updated is None:
            raise NotFoundException("Appointment not found")

        logger.info(
            "appointment_status_changed",
            appointment_id=str(appointment_id),
            old_status=old_status.value,
            new_status=data.status.value,
        )

        job_id = None
        if old_status != data.status:
            queue = self.queue or AutomationQueue()
            job_id = await queue.enqueue_for_status(
                appointment_id, tenant_id, data.status, changed_at=now
            )

        return AppointmentStatusResponse(appointment=updated, automation_job_id=job_id)

    async def get_patient(self, patient_id: UUID) -> dict[str, Any] | None:
        """Patient contact details."""
        result = await self.db.execute(
            select(
                patients.c.id,
                patients.c.tenant_id,
                patients.c.first_name,
                patients.c.last_name,
                patients.c.email,
                patients.c.phone,
                patients.c.user_id,
            ).where(patients.c.id == patient_id)
        )
        row = result.mappings().first()
        return dict(row) if row else None

    async def get_doctor_name(self, doctor_id: UUID | None) -> str | None:
        """Display name of a doctor."""
        if doctor_id is None:
            return None
        result = await self.db.execute(
            select(
                func.trim(doctors.c.first_name + " " + doctors.c.last_name).label("name")
            ).where(doctors.c.id == doctor_id)
        )
        return result.scalar_one_or_none()
