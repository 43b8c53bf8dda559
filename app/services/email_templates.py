"""HTML email templates for automation notifications."""

from datetime import date, datetime
from html import escape

from app.schemas.reports import PeriodicReport, ReportPeriod

_BASE_STYLE = """
    body {{ font-family: Arial, sans-serif; line-height: 1.6; color: #333; }}
    .container {{ max-width: {width}px; margin: 0 auto; padding: 20px; }}
    .header {{ background-color: {color}; color: white; padding: 20px; text-align: center; }}
    .content {{ padding: 20px; background-color: #f9f9f9; }}
    .info-box {{ background-color: white; padding: 15px; margin: 10px 0; border-left: 4px solid {color}; }}
    .button {{ display: inline-block; padding: 12px 24px; margin: 10px 0; background-color: {color};
               color: white; text-decoration: none; border-radius: 4px; }}
    .metric {{ display: inline-block; margin: 10px; padding: 10px; background-color: #f0f0f0; border-radius: 4px; }}
    .metric-value {{ font-size: 1.5em; font-weight: bold; color: {color}; }}
    .metric-label {{ font-size: 0.9em; color: #666; }}
    table {{ width: 100%; border-collapse: collapse; margin: 10px 0; }}
    th, td {{ padding: 8px; text-align: left; border-bottom: 1px solid #ddd; }}
    th {{ background-color: {color}; color: white; }}
    .footer {{ text-align: center; padding: 20px; color: #666; font-size: 12px; }}
"""

_FOOTER = "<p>This is an automated message. Please do not reply to this email.</p>"


def _page(title: str, body: str, color: str = "#2196F3", width: int = 600, footer: str = _FOOTER) -> str:
    style = _BASE_STYLE.format(color=color, width=width)
    return f"""<!DOCTYPE html>
<html>
<head><style>{style}</style></head>
<body>
  <div class="container">
    <div class="header"><h1>{escape(title)}</h1></div>
    <div class="content">
{body}
    </div>
    <div class="footer">{footer}</div>
  </div>
</body>
</html>"""


def _slot_box(
    appointment_date: date,
    appointment_time: str | None,
    code: str | None,
    doctor_name: str | None,
) -> str:
    doctor_line = f"<p><strong>Doctor:</strong> Dr. {escape(doctor_name)}</p>" if doctor_name else ""
    return f"""      <div class="info-box">
        <p><strong>Date:</strong> {appointment_date.isoformat()}</p>
        <p><strong>Time:</strong> {escape(appointment_time or "TBD")}</p>
        {doctor_line}
        <p><strong>Appointment Code:</strong> {escape(code or "")}</p>
      </div>"""


def recurring_appointment_email(
    patient_name: str,
    clinic_name: str,
    appointment_date: date,
    appointment_time: str | None,
    code: str | None,
    doctor_name: str | None,
    view_url: str,
) -> tuple[str, str]:
    """Email telling a patient their next series appointment was booked."""
    subject = f"Recurring Appointment Scheduled - {clinic_name}"
    body = f"""      <p>Dear {escape(patient_name)},</p>
      <p>Your next recurring appointment has been automatically scheduled:</p>
{_slot_box(appointment_date, appointment_time, code, doctor_name)}
      <p>This appointment was automatically created as part of your recurring appointment series.</p>
      <p style="text-align: center;"><a href="{escape(view_url)}" class="button">View Appointment</a></p>
      <p>If you need to reschedule or cancel, please contact us as soon as possible.</p>"""
    return subject, _page("Recurring Appointment Scheduled", body)


def waitlist_fill_email(
    patient_name: str,
    appointment_date: date,
    appointment_time: str | None,
    code: str | None,
    doctor_name: str | None,
    confirm_url: str,
) -> tuple[str, str]:
    """Email offering a freed slot to a waitlisted patient."""
    subject = f"Appointment Available - {appointment_date.isoformat()}"
    body = f"""      <p>Dear {escape(patient_name)},</p>
      <p><strong>Great news!</strong> An appointment slot has become available and we've scheduled it for you:</p>
{_slot_box(appointment_date, appointment_time, code, doctor_name)}
      <p>Please confirm this appointment by clicking the button below.</p>
      <p style="text-align: center;"><a href="{escape(confirm_url)}" class="button">Confirm Appointment</a></p>
      <p>If this time doesn't work for you, please contact us to reschedule.</p>"""
    return subject, _page("Appointment Available!", body, color="#4CAF50")


def _plural_days(days: int) -> str:
    return f"{days} day{'s' if days != 1 else ''}"


def trial_warning_email(
    tenant_name: str | None,
    clinic_name: str,
    days_remaining: int,
    subscription_url: str,
) -> tuple[str, str]:
    """Email warning tenant admins that the trial ends soon."""
    subject = f"Trial Expiring in {_plural_days(days_remaining).title()} - Action Required"
    body = f"""      <p>Dear {escape(tenant_name or "Valued Customer")},</p>
      <div class="info-box">
        <h2>Your trial expires in {_plural_days(days_remaining)}</h2>
        <p>Your trial period for {escape(clinic_name)} will end soon. Subscribe now to continue
        enjoying all features without interruption.</p>
      </div>
      <p><strong>Don't lose access to:</strong></p>
      <ul>
        <li>Patient management</li>
        <li>Appointment scheduling</li>
        <li>Visit records</li>
        <li>Prescriptions and lab results</li>
        <li>Billing and invoicing</li>
      </ul>
      <p style="text-align: center;"><a href="{escape(subscription_url)}" class="button">Subscribe Now</a></p>"""
    return subject, _page("Trial Expiring Soon", body, color="#f59e0b")


def trial_expired_email(
    tenant_name: str | None,
    clinic_name: str,
    subscription_url: str,
) -> tuple[str, str]:
    """Email telling tenant admins that the trial has ended."""
    subject = "Trial Period Expired - Action Required"
    body = f"""      <p>Dear {escape(tenant_name or "Valued Customer")},</p>
      <div class="info-box">
        <h2>Your trial period has expired</h2>
        <p>Your trial period for {escape(clinic_name)} has ended. To continue using our services,
        please subscribe to one of our plans.</p>
      </div>
      <p><strong>What happens now?</strong></p>
      <ul>
        <li>Your account access is now limited</li>
        <li>Choose a plan to restore full access</li>
      </ul>
      <p style="text-align: center;"><a href="{escape(subscription_url)}" class="button">Subscribe Now</a></p>
      <p>If you have any questions, please contact our support team.</p>"""
    return subject, _page("Trial Period Expired", body, color="#dc2626")


def _money(value: float) -> str:
    return f"{value:,.2f}"


def _metric(value: object, label: str) -> str:
    return (
        f'<div class="metric"><div class="metric-value">{escape(str(value))}</div>'
        f'<div class="metric-label">{escape(label)}</div></div>'
    )


def _breakdown_table(title: str, column: str, rows: dict[str, float]) -> str:
    if not rows:
        return ""
    lines = "".join(
        f"<tr><td>{escape(name)}</td><td>{_money(amount)}</td></tr>" for name, amount in rows.items()
    )
    return f"<h3>{escape(title)}</h3><table><tr><th>{column}</th><th>Amount</th></tr>{lines}</table>"


def periodic_report_email(report: PeriodicReport, clinic_name: str) -> tuple[str, str]:
    """Render an analytics report as an email."""
    label = "Weekly" if report.period == ReportPeriod.WEEKLY else "Monthly"
    unit = "Week" if report.period == ReportPeriod.WEEKLY else "Month"
    summary = report.summary
    revenue = summary.revenue
    subject = f"{label} Analytics Report - {clinic_name}"

    body = f"""      <p style="text-align: center;">{escape(clinic_name)}<br>
        {report.date_range.start.date().isoformat()} - {report.date_range.end.date().isoformat()}</p>
      <div class="info-box">
        <h2>Patients</h2>
        {_metric(summary.patients.total, "Total Patients")}
        {_metric(summary.patients.new, f"New This {unit}")}
      </div>
      <div class="info-box">
        <h2>Appointments</h2>
        {_metric(summary.appointments.total, "Total")}
        {_metric(summary.appointments.completed, "Completed")}
        {_metric(f"{summary.appointments.completion_rate}%", "Completion Rate")}
        {_metric(f"{summary.appointments.no_show_rate}%", "No-Show Rate")}
      </div>
      <div class="info-box">
        <h2>Revenue</h2>
        {_metric(_money(revenue.total_paid), "Total Revenue")}
        {_metric(_money(revenue.total_billed), "Total Billed")}
        {_metric(_money(revenue.outstanding_balance), "Outstanding")}
        {_metric(_money(revenue.avg_revenue_per_visit), "Avg per Visit")}
        {_breakdown_table("Revenue by Payment Method", "Method", revenue.by_payment_method)}
        {_breakdown_table("Revenue by Doctor", "Doctor", revenue.by_doctor)}
      </div>
      <div class="info-box">
        <h2>Other Metrics</h2>
        {_metric(summary.visits.completed, "Completed Visits")}
        {_metric(summary.prescriptions, "Prescriptions")}
        {_metric(summary.lab_results, "Lab Results")}
        {_metric(summary.active_doctors, "Active Doctors")}
      </div>"""

    footer = (
        f"<p>Report generated on {_timestamp(report.generated_at)}</p>"
        "<p>This is an automated report. Please do not reply to this email.</p>"
    )
    return subject, _page(f"{label} Analytics Report", body, width=800, footer=footer)


def _timestamp(value: datetime) -> str:
    return value.strftime("%Y-%m-%d %H:%M UTC")
