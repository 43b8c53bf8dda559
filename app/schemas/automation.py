"""Result and configuration schemas for the appointment automations."""

from datetime import date
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field

from app.schemas.appointments import AppointmentRecord, RecurrenceFrequency


class RecurringAppointmentConfig(BaseModel):
    """Parameters of a recurring series."""

    patient_id: UUID
    doctor_id: UUID | None = None
    frequency: RecurrenceFrequency
    start_date: date
    end_date: date | None = None
    appointment_time: str | None = Field(None, pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    duration: int = Field(default=30, gt=0)
    reason: str | None = None
    notes: str | None = None
    tenant_id: UUID | None = None
    series_id: UUID | None = None
    send_notification: bool = True


class ContinuationOutcome(str, Enum):
    """What a continuation attempt did."""

    CREATED = "created"
    ALREADY_EXISTS = "already_exists"
    SERIES_COMPLETE = "series_complete"
    DISABLED = "disabled"
    NOT_RECURRING = "not_recurring"


class ContinuationResult(BaseModel):
    """Outcome of creating the next appointment of a series."""

    success: bool
    outcome: ContinuationOutcome | None = None
    appointment: AppointmentRecord | None = None
    error: str | None = None


class SlotFillResult(BaseModel):
    """Outcome of filling a cancelled slot from the waitlist."""

    success: bool
    filled: bool = False
    new_appointment: AppointmentRecord | None = None
    error: str | None = None


class RecurringSweepItem(BaseModel):
    """Per-appointment line of a recurring sweep."""

    appointment_id: str
    success: bool
    created: bool = False
    error: str | None = None


class RecurringSweepResult(BaseModel):
    """Aggregate result of a recurring continuation sweep."""

    success: bool
    processed: int = 0
    created: int = 0
    errors: int = 0
    results: list[RecurringSweepItem] = Field(default_factory=list)


class WaitlistSweepItem(BaseModel):
    """Per-appointment line of a waitlist sweep."""

    appointment_id: str
    success: bool
    filled: bool = False
    error: str | None = None


class WaitlistSweepResult(BaseModel):
    """Aggregate result of a waitlist fill sweep."""

    success: bool
    processed: int = 0
    filled: int = 0
    errors: int = 0
    results: list[WaitlistSweepItem] = Field(default_factory=list)


class SeriesCreateResult(BaseModel):
    """Outcome of registering a recurring series."""

    success: bool
    series_id: UUID | None = None
    error: str | None = None
