"""Database models."""

from app.models.appointments import appointments, recurring_series
from app.models.automation import automation_failures, clinic_settings
from app.models.billing import invoice_payments, invoices, lab_results, prescriptions, visits
from app.models.code_sequences import code_sequences
from app.models.notifications import notifications
from app.models.patients import doctors, patients
from app.models.push_tokens import push_tokens
from app.models.tenants import tenants
from app.models.users import users
from app.models.waitlist import waitlist_entries

# One MetaData per model module
ALL_METADATA = [
    tenants.metadata,
    users.metadata,
    patients.metadata,
    code_sequences.metadata,
    appointments.metadata,
    waitlist_entries.metadata,
    visits.metadata,
    notifications.metadata,
    push_tokens.metadata,
    clinic_settings.metadata,
]

__all__ = [
    "ALL_METADATA",
    "appointments",
    "automation_failures",
    "clinic_settings",
    "code_sequences",
    "doctors",
    "invoice_payments",
    "invoices",
    "lab_results",
    "notifications",
    "patients",
    "prescriptions",
    "push_tokens",
    "recurring_series",
    "tenants",
    "users",
    "visits",
    "waitlist_entries",
]
