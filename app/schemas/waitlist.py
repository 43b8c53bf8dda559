"""Waitlist schemas for request/response validation."""

from datetime import date, datetime
from uuid import UUID

from pydantic import BaseModel, Field


class WaitlistEntryCreate(BaseModel):
    """Schema for adding a patient to the waitlist."""

    patient_id: UUID
    preferred_date: date | None = None
    preferred_time: str | None = Field(
        None,
        pattern=r"^([01]\d|2[0-3]):[0-5]\d$",
        description="Preferred start time (HH:MM)",
    )
    doctor_id: UUID | None = None
    priority: int = Field(default=0, description="Higher values are served first")


class WaitlistEntryRecord(BaseModel):
    """Stored waitlist entry."""

    id: UUID
    tenant_id: UUID | None = None
    patient_id: UUID
    preferred_date: date | None = None
    preferred_time: str | None = None
    doctor_id: UUID | None = None
    priority: int = 0
    created_at: datetime

    model_config = {"from_attributes": True}


class WaitlistAddResult(BaseModel):
    """Outcome of adding to the waitlist."""

    success: bool
    added: bool = False
    entry: WaitlistEntryRecord | None = None
    error: str | None = None


class WaitlistRemoveResult(BaseModel):
    """Outcome of removing from the waitlist."""

    success: bool
    removed: bool = False
    error: str | None = None


class WaitlistListResponse(BaseModel):
    """Waitlist entries in service order."""

    total: int
    items: list[WaitlistEntryRecord]
