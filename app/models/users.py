"""Staff user model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    Boolean,
    Column,
    Index,
    MetaData,
    String,
    Table,
    Text,
    Uuid,
    func,
    text,
)

from app.models.types import UTCDateTime

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    # Contact
    Column("email", Text, nullable=True),
    Column("phone", String(20), nullable=True),
    Column("full_name", Text, nullable=True),
    # admin, accountant, doctor, receptionist, nurse, ...
    Column("role", Text, nullable=False, server_default="receptionist"),
    Column("is_active", Boolean, nullable=False, server_default=text("true")),
    # Audit
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_users_tenant_role", "tenant_id", "role"),
)
