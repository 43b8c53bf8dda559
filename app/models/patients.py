"""Patient and doctor model definitions using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Index,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
    func,
)

from app.models.types import UTCDateTime

metadata = MetaData()

patients = Table(
    "patients",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("patient_code", Text, nullable=True),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("email", Text, nullable=True),
    Column("phone", String(20), nullable=True),
    # Portal account receiving in-app notifications, if any
    Column("user_id", Uuid, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_patients_tenant", "tenant_id"),
    Index("idx_patients_tenant_created", "tenant_id", "created_at"),
)

doctors = Table(
    "doctors",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("first_name", Text, nullable=False),
    Column("last_name", Text, nullable=False),
    Column("email", Text, nullable=True),
    Column("specialization", Text, nullable=True),
    Column("status", Text, nullable=False, server_default="active"),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_doctors_tenant_status", "tenant_id", "status"),
)
