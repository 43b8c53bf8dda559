"""Clinic settings and automation bookkeeping tables."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    Column,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Uuid,
    func,
)

from app.models.types import UTCDateTime

metadata = MetaData()

clinic_settings = Table(
    "clinic_settings",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True, unique=True),
    Column("clinic_name", Text, nullable=True),
    Column("automation_settings", JSON, nullable=True),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
)

# Dead letters for automation jobs that exhausted their retries
automation_failures = Table(
    "automation_failures",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("job_name", Text, nullable=False),
    Column("job_id", Text, nullable=True),
    Column("tenant_id", Uuid, nullable=True),
    Column("payload", JSON, nullable=True),
    Column("error", Text, nullable=True),
    Column("attempts", Integer, nullable=False, server_default="1"),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_automation_failures_job", "job_name", "created_at"),
)
