"""Periodic analytics report schemas.

Reports are immutable value objects; they are rendered and mailed but never
stored.
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class ReportPeriod(str, Enum):
    """Reporting window kind."""

    WEEKLY = "weekly"
    MONTHLY = "monthly"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class DateRange(_Frozen):
    start: datetime
    end: datetime


class PatientMetrics(_Frozen):
    total: int
    new: int


class AppointmentMetrics(_Frozen):
    total: int
    completed: int
    cancelled: int
    no_show: int
    completion_rate: float = Field(description="Percent, one decimal")
    no_show_rate: float = Field(description="Percent, one decimal")


class VisitMetrics(_Frozen):
    total: int
    completed: int


class RevenueMetrics(_Frozen):
    total_billed: float
    total_paid: float
    total_discounts: float
    total_tax: float
    outstanding_balance: float
    avg_revenue_per_visit: float
    by_payment_method: dict[str, float] = Field(default_factory=dict)
    by_doctor: dict[str, float] = Field(default_factory=dict)


class ReportSummary(_Frozen):
    patients: PatientMetrics
    appointments: AppointmentMetrics
    visits: VisitMetrics
    revenue: RevenueMetrics
    prescriptions: int
    lab_results: int
    active_doctors: int


class PeriodicReport(_Frozen):
    """Metrics for one tenant scope over one reporting window."""

    period: ReportPeriod
    date_range: DateRange
    summary: ReportSummary
    generated_at: datetime


class ReportResult(BaseModel):
    """Outcome of generating one report."""

    success: bool
    report: PeriodicReport | None = None
    emails_sent: int = 0
    error: str | None = None


class ReportSweepResult(BaseModel):
    """Aggregate result of a weekly or monthly report run."""

    success: bool
    processed: int = 0
    error: str | None = None
