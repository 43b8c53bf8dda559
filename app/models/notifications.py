"""In-app notification store using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
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

notifications = Table(
    "notifications",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    # Staff user or patient portal account
    Column("user_id", Uuid, nullable=False),
    Column("tenant_id", Uuid, nullable=True),
    Column("notification_type", String(50), nullable=False),
    Column("priority", String(20), nullable=False, server_default="normal"),
    Column("title", Text, nullable=False),
    Column("message", Text, nullable=False),
    Column("action_url", Text, nullable=True),
    Column("related_entity_type", String(50), nullable=True),
    Column("related_entity_id", Uuid, nullable=True),
    Column("data", JSON, nullable=True),
    Column("read_at", UTCDateTime, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "notification_type IN ('appointment', 'visit', 'prescription', 'lab_result', "
        "'invoice', 'reminder', 'system', 'broadcast')",
        name="notifications_type_check",
    ),
    CheckConstraint(
        "priority IN ('low', 'normal', 'high', 'urgent')",
        name="notifications_priority_check",
    ),
    Index("idx_notifications_user_id", "user_id"),
    Index("idx_notifications_tenant_created", "tenant_id", "created_at"),
)
