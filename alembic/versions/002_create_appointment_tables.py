"""create recurring_series and appointments tables

Revision ID: 002
Revises: 001
Create Date: 2026-09-01 09:30:00.000000

"""

from typing import Sequence, Union

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

# revision identifiers, used by Alembic.
revision: str = "002"
down_revision: Union[str, None] = "001"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create recurring series and appointments with their uniqueness guarantees."""
    op.create_table(
        "recurring_series",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("frequency", sa.Text(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("appointment_time", sa.VARCHAR(length=5), nullable=True),
        sa.Column("duration", sa.Integer(), server_default="30", nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint(
            "frequency IN ('weekly', 'biweekly', 'monthly', 'quarterly', 'yearly')",
            name="recurring_series_frequency_check",
        ),
    )
    op.create_index(
        "idx_recurring_series_tenant_patient", "recurring_series", ["tenant_id", "patient_id"]
    )

    op.create_table(
        "appointments",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            server_default=sa.text("gen_random_uuid()"),
            nullable=False,
        ),
        sa.Column("tenant_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("code", sa.VARCHAR(length=32), nullable=True),
        sa.Column("patient_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("doctor_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("appointment_date", sa.Date(), nullable=False),
        sa.Column("appointment_time", sa.VARCHAR(length=5), nullable=True),
        sa.Column("duration", sa.Integer(), server_default="30", nullable=False),
        sa.Column("status", sa.Text(), server_default="scheduled", nullable=False),
        sa.Column("reason", sa.Text(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("series_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("replaces_appointment_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column(
            "created_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            postgresql.TIMESTAMP(timezone=True),
            server_default=sa.text("NOW()"),
            nullable=False,
        ),
        sa.Column("cancelled_at", postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.ForeignKeyConstraint(["series_id"], ["recurring_series.id"], ondelete="SET NULL"),
        sa.CheckConstraint(
            "status IN ('scheduled', 'confirmed', 'completed', 'cancelled', 'no-show')",
            name="appointments_status_check",
        ),
    )

    op.create_index(
        "uq_appointments_tenant_code", "appointments", ["tenant_id", "code"], unique=True
    )
    # One live occurrence per series and day
    op.create_index(
        "uq_appointments_series_date",
        "appointments",
        ["series_id", "appointment_date"],
        unique=True,
        postgresql_where=sa.text("status NOT IN ('cancelled', 'no-show')"),
    )
    # One waitlist replacement per cancelled appointment
    op.create_index(
        "uq_appointments_replaces", "appointments", ["replaces_appointment_id"], unique=True
    )
    op.create_index(
        "idx_appointments_patient_date",
        "appointments",
        ["tenant_id", "patient_id", "appointment_date"],
    )
    op.create_index("idx_appointments_status_updated", "appointments", ["status", "updated_at"])


def downgrade() -> None:
    """Drop appointments and recurring series."""
    op.drop_index("idx_appointments_status_updated", table_name="appointments")
    op.drop_index("idx_appointments_patient_date", table_name="appointments")
    op.drop_index("uq_appointments_replaces", table_name="appointments")
    op.drop_index("uq_appointments_series_date", table_name="appointments")
    op.drop_index("uq_appointments_tenant_code", table_name="appointments")
    op.drop_table("appointments")
    op.drop_index("idx_recurring_series_tenant_patient", table_name="recurring_series")
    op.drop_table("recurring_series")
