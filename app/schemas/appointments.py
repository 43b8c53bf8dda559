"""Appointment schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field


class AppointmentStatus(str, Enum):
    """Appointment status enumeration."""

    SCHEDULED = "scheduled"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


# Statuses that no longer occupy their slot
INACTIVE_STATUSES = (AppointmentStatus.CANCELLED.value, AppointmentStatus.NO_SHOW.value)


class RecurrenceFrequency(str, Enum):
    """Recurring series frequency."""

    WEEKLY = "weekly"
    BIWEEKLY = "biweekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    YEARLY = "yearly"


class AppointmentRecord(BaseModel):
    """Appointment row as seen by the automation services."""

    id: UUID
    tenant_id: UUID | None = None
    code: str | None = None
    patient_id: UUID
    doctor_id: UUID | None = None
    appointment_date: date
    appointment_time: str | None = None
    duration: int = 30
    status: AppointmentStatus
    reason: str | None = None
    notes: str | None = None
    series_id: UUID | None = None
    replaces_appointment_id: UUID | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    cancelled_at: datetime | None = None

    model_config = {"from_attributes": True}


class AppointmentStatusUpdate(BaseModel):
    """Schema for updating appointment status."""

    status: AppointmentStatus
    notes: str | None = Field(None, max_length=1000)


class AppointmentStatusResponse(BaseModel):
    """Result of a status transition."""

    appointment: AppointmentRecord
    automation_job_id: str | None = Field(
        default=None,
        description="Identifier of the enqueued automation job, if any",
    )
