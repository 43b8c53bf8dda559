"""Weekly and monthly analytics reports."""

import asyncio
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime, time, timedelta
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID

import structlog
from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.metrics import AUTOMATION_RUNS
from app.core.redis_client import CacheManager
from app.database import AsyncSessionLocal, SessionFactory
from app.models.appointments import appointments
from app.models.billing import invoice_payments, invoices, lab_results, prescriptions, visits
from app.models.patients import doctors, patients
from app.models.tenants import tenants
from app.models.types import utcnow
from app.models.users import users
from app.schemas.notifications import NotificationChannel, NotificationEnvelope, NotificationRecipient
from app.schemas.reports import (
    AppointmentMetrics,
    DateRange,
    PatientMetrics,
    PeriodicReport,
    ReportPeriod,
    ReportResult,
    ReportSummary,
    ReportSweepResult,
    RevenueMetrics,
    VisitMetrics,
)
from app.services.appointment_service import tenant_filter
from app.services.email_templates import periodic_report_email
from app.services.notification_service import NotificationDispatcher
from app.services.settings_service import SettingsService

logger = structlog.get_logger(__name__)

ResultT = TypeVar("ResultT")

REPORT_RECIPIENT_ROLES = ("admin", "accountant")
OUTSTANDING_STATUSES = ("unpaid", "partial")


def report_window(period: ReportPeriod, now: datetime) -> tuple[datetime, datetime]:
    """
    Reporting window ending today.

    Weekly windows start on Monday of the current week, monthly windows on the
    first of the month. Both end at the last microsecond of today (UTC).

    Args:
        period: Window kind
        now: Reference time

    Returns:
        Inclusive (start, end) datetimes
    """
    today = now.astimezone(UTC).date()
    if period == ReportPeriod.WEEKLY:
        first_day = today - timedelta(days=today.weekday())
    else:
        first_day = today.replace(day=1)
    start = datetime.combine(first_day, time.min, tzinfo=UTC)
    end = datetime.combine(today, time.max, tzinfo=UTC)
    return start, end


def percentage(part: int, whole: int) -> float:
    """Share of ``whole`` in percent, one decimal."""
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 1)


def _money(value: Any) -> float:
    if value is None:
        return 0.0
    return float(Decimal(str(value)).quantize(Decimal("0.01")))


class ReportService:
    """Builds and sends analytics reports for one tenant scope."""

    def __init__(
        self,
        session_factory: SessionFactory = AsyncSessionLocal,
        dispatcher_factory: Callable[[AsyncSession], NotificationDispatcher] | None = None,
        cache: CacheManager | None = None,
    ):
        """
        Initialize report service.

        Args:
            session_factory: Factory for the read sessions, one per query
            dispatcher_factory: Builds the dispatcher used for report emails
            cache: Optional settings cache
        """
        self.session_factory = session_factory
        self.dispatcher_factory = dispatcher_factory or NotificationDispatcher
        self.cache = cache

    async def generate_periodic_report(
        self,
        period: ReportPeriod,
        tenant_id: UUID | None = None,
        send_email: bool = True,
        recipients: list[str] | None = None,
        now: datetime | None = None,
    ) -> ReportResult:
        """
        Build a report and mail it to the tenant's admins and accountants.

        Args:
            period: Weekly or monthly window
            tenant_id: Tenant scope, None for the default scope
            send_email: Mail the rendered report
            recipients: Explicit recipient addresses
            now: Reference time, defaults to the current time

        Returns:
            Report result; never raises
        """
        try:
            async with self.session_factory() as db:
                settings_service = SettingsService(db, self.cache)
                if not await settings_service.is_enabled(tenant_id, "auto_periodic_reports"):
                    return ReportResult(success=True)
                clinic = await settings_service.get_settings(tenant_id)

            report = await self.build_report(period, tenant_id, now or utcnow())

            emails_sent = 0
            if send_email:
                emails_sent = await self._send(report, tenant_id, clinic.display_name, recipients)

            AUTOMATION_RUNS.labels(automation=f"{period.value}_report", outcome="ok").inc()
            logger.info(
                "periodic_report_generated",
                period=period.value,
                tenant_id=str(tenant_id) if tenant_id else None,
                emails_sent=emails_sent,
            )
            return ReportResult(success=True, report=report, emails_sent=emails_sent)
        except Exception as e:
            logger.error(
                "periodic_report_failed",
                period=period.value,
                tenant_id=str(tenant_id) if tenant_id else None,
                error=str(e),
            )
            AUTOMATION_RUNS.labels(automation=f"{period.value}_report", outcome="error").inc()
            return ReportResult(success=False, error=str(e) or "Failed to generate periodic report")

    async def build_report(
        self,
        period: ReportPeriod,
        tenant_id: UUID | None,
        now: datetime,
    ) -> PeriodicReport:
        """Run the metric queries in parallel and assemble the report."""
        start, end = report_window(period, now)
        start_day, end_day = start.date(), end.date()

        (
            total_patients,
            new_patients,
            appointment_counts,
            visit_counts,
            invoice_totals,
            outstanding,
            by_method,
            by_doctor,
            total_prescriptions,
            total_lab_results,
            active_doctors,
        ) = await asyncio.gather(
            self._scalar(
                select(func.count()).select_from(patients).where(
                    tenant_filter(patients.c.tenant_id, tenant_id)
                )
            ),
            self._scalar(
                select(func.count()).select_from(patients).where(
                    tenant_filter(patients.c.tenant_id, tenant_id),
                    patients.c.created_at.between(start, end),
                )
            ),
            self._run(self._appointment_counts, tenant_id, start_day, end_day),
            self._run(self._visit_counts, tenant_id, start, end),
            self._run(self._invoice_totals, tenant_id, start, end),
            self._scalar(
                select(func.coalesce(func.sum(invoices.c.outstanding_balance), 0)).where(
                    tenant_filter(invoices.c.tenant_id, tenant_id),
                    invoices.c.status.in_(OUTSTANDING_STATUSES),
                )
            ),
            self._run(self._revenue_by_method, tenant_id, start, end),
            self._run(self._revenue_by_doctor, tenant_id, start, end),
            self._scalar(
                select(func.count()).select_from(prescriptions).where(
                    tenant_filter(prescriptions.c.tenant_id, tenant_id),
                    prescriptions.c.issued_at.between(start, end),
                )
            ),
            self._scalar(
                select(func.count()).select_from(lab_results).where(
                    tenant_filter(lab_results.c.tenant_id, tenant_id),
                    lab_results.c.created_at.between(start, end),
                )
            ),
            self._scalar(
                select(func.count()).select_from(doctors).where(
                    tenant_filter(doctors.c.tenant_id, tenant_id),
                    doctors.c.status == "active",
                )
            ),
        )

        total, completed, cancelled, no_show = appointment_counts
        visits_total, visits_closed = visit_counts
        billed, paid, discounts, tax = invoice_totals

        return PeriodicReport(
            period=period,
            date_range=DateRange(start=start, end=end),
            summary=ReportSummary(
                patients=PatientMetrics(total=total_patients, new=new_patients),
                appointments=AppointmentMetrics(
                    total=total,
                    completed=completed,
                    cancelled=cancelled,
                    no_show=no_show,
                    completion_rate=percentage(completed, total),
                    no_show_rate=percentage(no_show, total),
                ),
                visits=VisitMetrics(total=visits_total, completed=visits_closed),
                revenue=RevenueMetrics(
                    total_billed=billed,
                    total_paid=paid,
                    total_discounts=discounts,
                    total_tax=tax,
                    outstanding_balance=_money(outstanding),
                    avg_revenue_per_visit=round(paid / visits_closed, 2) if visits_closed else 0.0,
                    by_payment_method=by_method,
                    by_doctor=by_doctor,
                ),
                prescriptions=total_prescriptions,
                lab_results=total_lab_results,
                active_doctors=active_doctors,
            ),
            generated_at=utcnow(),
        )

    async def _run(self, query: Callable[..., Awaitable[ResultT]], *args: Any) -> ResultT:
        """Run a query function on its own session."""
        async with self.session_factory() as db:
            return await query(db, *args)

    async def _scalar(self, stmt: Any) -> Any:
        async with self.session_factory() as db:
            result = await db.execute(stmt)
            return result.scalar_one()

    @staticmethod
    async def _appointment_counts(
        db: AsyncSession, tenant_id: UUID | None, start_day: Any, end_day: Any
    ) -> tuple[int, int, int, int]:
        result = await db.execute(
            select(appointments.c.status, func.count())
            .where(
                tenant_filter(appointments.c.tenant_id, tenant_id),
                appointments.c.appointment_date.between(start_day, end_day),
            )
            .group_by(appointments.c.status)
        )
        counts = {status: count for status, count in result.all()}
        return (
            sum(counts.values()),
            counts.get("completed", 0),
            counts.get("cancelled", 0),
            counts.get("no-show", 0),
        )

    @staticmethod
    async def _visit_counts(
        db: AsyncSession, tenant_id: UUID | None, start: datetime, end: datetime
    ) -> tuple[int, int]:
        result = await db.execute(
            select(visits.c.status, func.count())
            .where(
                tenant_filter(visits.c.tenant_id, tenant_id),
                visits.c.visit_date.between(start, end),
            )
            .group_by(visits.c.status)
        )
        counts = {status: count for status, count in result.all()}
        return sum(counts.values()), counts.get("closed", 0)

    @staticmethod
    async def _invoice_totals(
        db: AsyncSession, tenant_id: UUID | None, start: datetime, end: datetime
    ) -> tuple[float, float, float, float]:
        result = await db.execute(
            select(
                func.coalesce(func.sum(invoices.c.total), 0),
                func.coalesce(func.sum(invoices.c.total_paid), 0),
                func.coalesce(func.sum(invoices.c.total_discount), 0),
                func.coalesce(func.sum(invoices.c.tax), 0),
            ).where(
                tenant_filter(invoices.c.tenant_id, tenant_id),
                invoices.c.created_at.between(start, end),
            )
        )
        billed, paid, discounts, tax = result.one()
        return _money(billed), _money(paid), _money(discounts), _money(tax)

    @staticmethod
    async def _revenue_by_method(
        db: AsyncSession, tenant_id: UUID | None, start: datetime, end: datetime
    ) -> dict[str, float]:
        method = func.coalesce(invoice_payments.c.method, "unknown")
        result = await db.execute(
            select(method.label("method"), func.sum(invoice_payments.c.amount))
            .select_from(invoice_payments.join(invoices, invoice_payments.c.invoice_id == invoices.c.id))
            .where(
                tenant_filter(invoices.c.tenant_id, tenant_id),
                invoices.c.created_at.between(start, end),
            )
            .group_by(method)
        )
        return {name: _money(amount) for name, amount in result.all()}

    @staticmethod
    async def _revenue_by_doctor(
        db: AsyncSession, tenant_id: UUID | None, start: datetime, end: datetime
    ) -> dict[str, float]:
        doctor_name = doctors.c.first_name + " " + doctors.c.last_name
        result = await db.execute(
            select(doctor_name.label("doctor"), func.sum(invoices.c.total_paid))
            .select_from(
                invoices.join(visits, invoices.c.visit_id == visits.c.id).join(
                    doctors, visits.c.doctor_id == doctors.c.id
                )
            )
            .where(
                and_(
                    tenant_filter(invoices.c.tenant_id, tenant_id),
                    invoices.c.created_at.between(start, end),
                    visits.c.status == "closed",
                    visits.c.visit_date.between(start, end),
                )
            )
            .group_by(doctors.c.id, doctors.c.first_name, doctors.c.last_name)
        )
        revenue: dict[str, float] = {}
        for name, amount in result.all():
            revenue[name] = round(revenue.get(name, 0.0) + _money(amount), 2)
        return revenue

    async def _send(
        self,
        report: PeriodicReport,
        tenant_id: UUID | None,
        clinic_name: str,
        recipients: list[str] | None,
    ) -> int:
        subject, html = periodic_report_email(report, clinic_name)
        sent = 0
        async with self.session_factory() as db:
            addresses = recipients if recipients is not None else await self._recipients(db, tenant_id)
            dispatcher = self.dispatcher_factory(db)
            for address in addresses:
                outcome = await dispatcher.dispatch(
                    NotificationEnvelope(
                        recipient=NotificationRecipient(email=address),
                        tenant_id=tenant_id,
                        email_subject=subject,
                        email_html=html,
                        channels={NotificationChannel.EMAIL},
                    )
                )
                if outcome.email_sent:
                    sent += 1
        return sent

    @staticmethod
    async def _recipients(db: AsyncSession, tenant_id: UUID | None) -> list[str]:
        result = await db.execute(
            select(users.c.email).where(
                tenant_filter(users.c.tenant_id, tenant_id),
                users.c.role.in_(REPORT_RECIPIENT_ROLES),
                users.c.is_active == True,  # noqa: E712
                users.c.email.is_not(None),
            )
        )
        return [email for email in result.scalars() if email]


async def _process_reports(
    period: ReportPeriod,
    tenant_id: UUID | None,
    session_factory: SessionFactory,
    cache: CacheManager | None,
) -> ReportSweepResult:
    try:
        service = ReportService(session_factory, cache=cache)
        if tenant_id:
            scopes: list[UUID | None] = [tenant_id]
        else:
            async with session_factory() as db:
                result = await db.execute(
                    select(tenants.c.id).where(tenants.c.subscription_status == "active")
                )
                scopes = [None, *result.scalars()]

        processed = 0
        errors: list[str] = []
        for scope in scopes:
            outcome = await service.generate_periodic_report(period, scope)
            if outcome.report is not None:
                processed += 1
            if not outcome.success and outcome.error:
                errors.append(outcome.error)

        logger.info("report_sweep_finished", period=period.value, processed=processed, errors=len(errors))
        return ReportSweepResult(
            success=not errors,
            processed=processed,
            error="; ".join(errors) if errors else None,
        )
    except Exception as e:
        logger.error("report_sweep_failed", period=period.value, error=str(e))
        return ReportSweepResult(success=False, error=str(e))


async def process_weekly_reports(
    tenant_id: UUID | None = None,
    session_factory: SessionFactory = AsyncSessionLocal,
    cache: CacheManager | None = None,
) -> ReportSweepResult:
    """Generate and mail this week's report for one tenant or every active tenant."""
    return await _process_reports(ReportPeriod.WEEKLY, tenant_id, session_factory, cache)


async def process_monthly_reports(
    tenant_id: UUID | None = None,
    session_factory: SessionFactory = AsyncSessionLocal,
    cache: CacheManager | None = None,
) -> ReportSweepResult:
    """Generate and mail this month's report for one tenant or every active tenant."""
    return await _process_reports(ReportPeriod.MONTHLY, tenant_id, session_factory, cache)
