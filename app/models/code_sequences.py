"""Per-tenant code counters using SQLAlchemy Core."""

from sqlalchemy import Column, Integer, MetaData, PrimaryKeyConstraint, Table, Text, func

from app.models.types import UTCDateTime

metadata = MetaData()

code_sequences = Table(
    "code_sequences",
    metadata,
    Column("scope_key", Text, nullable=False),
    Column("prefix", Text, nullable=False),
    Column("last_value", Integer, nullable=False, server_default="0"),
    Column("updated_at", UTCDateTime, nullable=False, server_default=func.now()),
    PrimaryKeyConstraint("scope_key", "prefix", name="pk_code_sequences"),
)
