"""Visit, invoice and clinical record tables read by the report aggregator."""

from uuid import uuid4

from sqlalchemy import (
    Column,
    Date,
    ForeignKey,
    Index,
    MetaData,
    Numeric,
    Table,
    Text,
    Uuid,
    func,
)

from app.models.types import UTCDateTime

metadata = MetaData()

visits = Table(
    "visits",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("patient_id", Uuid, nullable=False),
    Column("doctor_id", Uuid, nullable=True),
    Column("appointment_id", Uuid, nullable=True),
    Column("visit_date", UTCDateTime, nullable=False),
    # open, in-progress, closed
    Column("status", Text, nullable=False, server_default="open"),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_visits_tenant_date", "tenant_id", "visit_date"),
)

invoices = Table(
    "invoices",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("patient_id", Uuid, nullable=False),
    Column("visit_id", Uuid, ForeignKey("visits.id", ondelete="SET NULL"), nullable=True),
    Column("total", Numeric(12, 2), nullable=False, server_default="0"),
    Column("total_paid", Numeric(12, 2), nullable=False, server_default="0"),
    Column("total_discount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("tax", Numeric(12, 2), nullable=False, server_default="0"),
    Column("outstanding_balance", Numeric(12, 2), nullable=False, server_default="0"),
    # unpaid, partial, paid, void
    Column("status", Text, nullable=False, server_default="unpaid"),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_invoices_tenant_created", "tenant_id", "created_at"),
    Index("idx_invoices_tenant_status", "tenant_id", "status"),
)

invoice_payments = Table(
    "invoice_payments",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column(
        "invoice_id",
        Uuid,
        ForeignKey("invoices.id", ondelete="CASCADE"),
        nullable=False,
    ),
    Column("method", Text, nullable=True),
    Column("amount", Numeric(12, 2), nullable=False, server_default="0"),
    Column("paid_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_invoice_payments_invoice", "invoice_id"),
)

prescriptions = Table(
    "prescriptions",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("patient_id", Uuid, nullable=False),
    Column("issued_at", UTCDateTime, nullable=False, server_default=func.now()),
    Column("expires_on", Date, nullable=True),
    Index("idx_prescriptions_tenant_issued", "tenant_id", "issued_at"),
)

lab_results = Table(
    "lab_results",
    metadata,
    Column("id", Uuid, primary_key=True, default=uuid4),
    Column("tenant_id", Uuid, nullable=True),
    Column("patient_id", Uuid, nullable=False),
    Column("test_name", Text, nullable=True),
    Column("created_at", UTCDateTime, nullable=False, server_default=func.now()),
    Index("idx_lab_results_tenant_created", "tenant_id", "created_at"),
)
