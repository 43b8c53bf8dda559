"""Appointment and recurring series tables using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from app.models.types import UTCDateTime

# Metadata shared by appointments and their series
metadata = MetaData()

ACTIVE_APPOINTMENT_CLAUSE = "status NOT IN ('cancelled', 'no-show')"

recurring_series = Table(
    "recurring_series",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("patient_id", Uuid, nullable=False),
    Column("doctor_id", Uuid, nullable=True),
    Column("frequency", Text, nullable=False),
    Column("start_date", Date, nullable=False),
    Column("end_date", Date, nullable=True),
    Column("appointment_time", String(5), nullable=True),
    Column("duration", Integer, nullable=False, server_default="30"),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "frequency IN ('weekly', 'biweekly', 'monthly', 'quarterly', 'yearly')",
        name="recurring_series_frequency_check",
    ),
    Index("idx_recurring_series_tenant_patient", "tenant_id", "patient_id"),
)

appointments = Table(
    "appointments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    # Human readable, tenant scoped (APT-000042)
    Column("code", String(32), nullable=True),
    # Ownership / references
    Column("patient_id", Uuid, nullable=False),
    Column("doctor_id", Uuid, nullable=True),
    # Slot
    Column("appointment_date", Date, nullable=False),
    Column("appointment_time", String(5), nullable=True),
    Column("duration", Integer, nullable=False, server_default="30"),
    # Status management
    Column("status", Text, nullable=False, server_default="scheduled"),
    Column("reason", Text, nullable=True),
    Column("notes", Text, nullable=True),
    # Automation linkage
    Column(
        "series_id",
        Uuid,
        ForeignKey("recurring_series.id", ondelete="SET NULL"),
        nullable=True,
    ),
    Column("replaces_appointment_id", Uuid, nullable=True),
    # Audit fields
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("cancelled_at", UTCDateTime, nullable=True),
    CheckConstraint(
        "status IN ('scheduled', 'confirmed', 'completed', 'cancelled', 'no-show')",
        name="appointments_status_check",
    ),
    Index("uq_appointments_tenant_code", "tenant_id", "code", unique=True),
    # One live occurrence per series and day
    Index(
        "uq_appointments_series_date",
        "series_id",
        "appointment_date",
        unique=True,
        postgresql_where=text(ACTIVE_APPOINTMENT_CLAUSE),
        sqlite_where=text(ACTIVE_APPOINTMENT_CLAUSE),
    ),
    # One waitlist replacement per cancelled appointment
    Index("uq_appointments_replaces", "replaces_appointment_id", unique=True),
    Index("idx_appointments_patient_date", "tenant_id", "patient_id", "appointment_date"),
    Index("idx_appointments_status_updated", "status", "updated_at"),
)
