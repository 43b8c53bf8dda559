"""Tenant model definition using SQLAlchemy Core."""

from uuid import uuid4

from sqlalchemy import (
    CheckConstraint,
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

tenants = Table(
    "tenants",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("name", Text, nullable=False),
    Column("slug", Text, nullable=True, unique=True),
    # Subscription state
    Column("subscription_plan", Text, nullable=False, server_default="trial"),
    Column("subscription_status", Text, nullable=False, server_default="active"),
    Column("subscription_expires_at", UTCDateTime, nullable=True),
    # Smallest days-remaining value a trial warning was already sent for
    Column("trial_warning_threshold", Integer, nullable=True),
    Column("trial_warned_at", UTCDateTime, nullable=True),
    # Audit
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    CheckConstraint(
        "subscription_status IN ('active', 'expired', 'cancelled')",
        name="tenants_subscription_status_check",
    ),
    Index(
        "idx_tenants_subscription",
        "subscription_plan",
        "subscription_status",
        "subscription_expires_at",
    ),
)
