"""Tests for the periodic analytics reports."""

from datetime import UTC, date, datetime, timedelta
from uuid import uuid4

import pytest
import pytest_asyncio
from sqlalchemy import insert

from app.models.billing import invoice_payments, invoices, lab_results, prescriptions, visits
from app.schemas.reports import ReportPeriod
from app.services.notification_service import NotificationDispatcher
from app.services.report_service import (
    ReportService,
    percentage,
    process_weekly_reports,
    report_window,
)

# A Wednesday
NOW = datetime(2026, 5, 6, 15, 0, tzinfo=UTC)


def test_weekly_window_starts_on_monday() -> None:
    start, end = report_window(ReportPeriod.WEEKLY, NOW)

    assert start == datetime(2026, 5, 4, tzinfo=UTC)
    assert end.date() == date(2026, 5, 6)
    assert end.hour == 23
    assert end.minute == 59


def test_monthly_window_starts_on_first() -> None:
    start, end = report_window(ReportPeriod.MONTHLY, NOW)

    assert start == datetime(2026, 5, 1, tzinfo=UTC)
    assert end.date() == date(2026, 5, 6)


def test_percentage() -> None:
    assert percentage(1, 3) == 33.3
    assert percentage(0, 0) == 0.0


@pytest.fixture
def report_service(session_factory, email_transport, sms_transport) -> ReportService:
    return ReportService(
        session_factory,
        dispatcher_factory=lambda db: NotificationDispatcher(
            db, email_transport=email_transport, sms_transport=sms_transport
        ),
    )


@pytest_asyncio.fixture
async def clinic_activity(db_session, tenant, doctor, patient, make_appointment) -> None:
    """One week of activity plus an old unpaid invoice."""
    tenant_id = tenant["id"]
    visit_id = uuid4()
    invoice_id = uuid4()

    await db_session.execute(
        insert(visits).values(
            id=visit_id,
            tenant_id=tenant_id,
            patient_id=patient["id"],
            doctor_id=doctor["id"],
            visit_date=NOW - timedelta(days=1),
            status="closed",
        )
    )
    await db_session.execute(
        insert(invoices).values(
            id=invoice_id,
            tenant_id=tenant_id,
            patient_id=patient["id"],
            visit_id=visit_id,
            total=100,
            total_paid=80,
            total_discount=5,
            tax=10,
            outstanding_balance=20,
            status="partial",
            created_at=NOW - timedelta(days=1),
        )
    )
    await db_session.execute(
        insert(invoice_payments),
        [
            {"invoice_id": invoice_id, "method": "cash", "amount": 50},
            {"invoice_id": invoice_id, "method": "card", "amount": 30},
        ],
    )
    await db_session.execute(
        insert(invoices).values(
            tenant_id=tenant_id,
            patient_id=patient["id"],
            total=40,
            outstanding_balance=40,
            status="unpaid",
            created_at=datetime(2026, 1, 10, tzinfo=UTC),
        )
    )
    await db_session.execute(
        insert(prescriptions).values(
            tenant_id=tenant_id, patient_id=patient["id"], issued_at=NOW - timedelta(hours=2)
        )
    )
    await db_session.execute(
        insert(lab_results).values(
            tenant_id=tenant_id, patient_id=patient["id"], created_at=NOW - timedelta(days=30)
        )
    )
    await db_session.commit()

    for day, status in (
        (date(2026, 5, 4), "completed"),
        (date(2026, 5, 5), "no-show"),
        (date(2026, 5, 5), "cancelled"),
        (date(2026, 5, 6), "scheduled"),
        (date(2026, 4, 20), "completed"),
    ):
        await make_appointment(tenant_id, patient["id"], day, status=status)


@pytest.mark.asyncio
async def test_weekly_report_metrics(tenant, clinic_activity, report_service) -> None:
    result = await report_service.generate_periodic_report(
        ReportPeriod.WEEKLY, tenant["id"], send_email=False, now=NOW
    )

    assert result.success is True
    assert result.report is not None
    summary = result.report.summary

    assert summary.patients.total == 1
    assert summary.appointments.total == 4
    assert summary.appointments.completed == 1
    assert summary.appointments.no_show == 1
    assert summary.appointments.cancelled == 1
    assert summary.appointments.completion_rate == 25.0
    assert summary.appointments.no_show_rate == 25.0

    assert summary.visits.total == 1
    assert summary.visits.completed == 1

    revenue = summary.revenue
    assert revenue.total_billed == 100.0
    assert revenue.total_paid == 80.0
    assert revenue.total_discounts == 5.0
    assert revenue.total_tax == 10.0
    assert revenue.outstanding_balance == 60.0
    assert revenue.avg_revenue_per_visit == 80.0
    assert revenue.by_payment_method == {"cash": 50.0, "card": 30.0}
    assert revenue.by_doctor == {"Maria Lopez": 80.0}

    assert summary.prescriptions == 1
    assert summary.lab_results == 0
    assert summary.active_doctors == 1


@pytest.mark.asyncio
async def test_other_tenants_are_excluded(tenant, clinic_activity, report_service) -> None:
    result = await report_service.generate_periodic_report(
        ReportPeriod.MONTHLY, uuid4(), send_email=False, now=NOW
    )

    assert result.report is not None
    assert result.report.summary.revenue.total_billed == 0.0
    assert result.report.summary.appointments.total == 0
    assert result.report.summary.appointments.completion_rate == 0.0


@pytest.mark.asyncio
async def test_report_mailed_to_admins(
    tenant, admin_user, clinic_activity, report_service, email_transport
) -> None:
    result = await report_service.generate_periodic_report(ReportPeriod.WEEKLY, tenant["id"], now=NOW)

    assert result.success is True
    assert result.emails_sent == 1
    sent = email_transport.sent[0]
    assert sent["to"] == "admin@sunrise.test"
    assert sent["subject"] == "Weekly Analytics Report - Sunrise Clinic"
    assert "Maria Lopez" in sent["html"]


@pytest.mark.asyncio
async def test_explicit_recipients(tenant, report_service, email_transport) -> None:
    result = await report_service.generate_periodic_report(
        ReportPeriod.MONTHLY,
        tenant["id"],
        recipients=["owner@sunrise.test", "books@sunrise.test"],
        now=NOW,
    )

    assert result.emails_sent == 2
    assert [sent["to"] for sent in email_transport.sent] == [
        "owner@sunrise.test",
        "books@sunrise.test",
    ]


@pytest.mark.asyncio
async def test_disabled_reports_are_skipped(tenant, set_automation, report_service, email_transport) -> None:
    await set_automation(tenant["id"], auto_periodic_reports=False)

    result = await report_service.generate_periodic_report(ReportPeriod.WEEKLY, tenant["id"], now=NOW)

    assert result.success is True
    assert result.report is None
    assert email_transport.sent == []


@pytest.mark.asyncio
async def test_weekly_sweep_covers_default_scope_and_active_tenants(session_factory, tenant) -> None:
    result = await process_weekly_reports(session_factory=session_factory)

    assert result.success is True
    assert result.processed == 2
