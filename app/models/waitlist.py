"""Waitlist entries table using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
)

from app.models.types import UTCDateTime

metadata = MetaData()

waitlist_entries = Table(
    "waitlist_entries",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    # str(tenant_id), or "default" for the untenanted scope
    Column("scope_key", Text, nullable=False),
    Column("patient_id", Uuid, nullable=False),
    Column("preferred_date", Date, nullable=True),
    Column("preferred_time", String(5), nullable=True),
    Column("doctor_id", Uuid, nullable=True),
    Column("priority", Integer, nullable=False, server_default="0"),
    Column("created_at", UTCDateTime, nullable=False),
    UniqueConstraint("scope_key", "patient_id", name="uq_waitlist_scope_patient"),
    Index("idx_waitlist_order", "scope_key", "priority", "created_at"),
)
