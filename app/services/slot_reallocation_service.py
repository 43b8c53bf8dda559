"""Cancelled slot reallocation from the waitlist."""

from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.metrics import AUTOMATION_RUNS
from app.core.redis_client import CacheManager
from app.database import AsyncSessionLocal, SessionFactory
from app.models.appointments import appointments
from app.models.types import utcnow
from app.schemas.appointments import AppointmentRecord, AppointmentStatus
from app.schemas.automation import SlotFillResult, WaitlistSweepItem, WaitlistSweepResult
from app.schemas.notifications import InAppContent, NotificationEnvelope, NotificationRecipient
from app.services.appointment_service import AppointmentService, tenant_filter
from app.services.email_templates import waitlist_fill_email
from app.services.notification_service import NotificationDispatcher
from app.services.settings_service import SettingsService
from app.services.sweeps import run_bounded
from app.services.waitlist_service import WaitlistService

logger = structlog.get_logger(__name__)

AUTOMATION_NAME = "waitlist_fill"
DEFAULT_SLOT_TIME = "09:00"


class SlotReallocationService:
    """Offers cancelled slots to waitlisted patients."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher | None = None,
        cache: CacheManager | None = None,
    ):
        """Initialize service with a database session and collaborators."""
        self.db = db
        self.dispatcher = dispatcher or NotificationDispatcher(db)
        self.settings_service = SettingsService(db, cache)
        self.appointment_service = AppointmentService(db)
        self.waitlist = WaitlistService(db)

    async def fill_cancelled_slot(
        self,
        appointment_id: UUID,
        tenant_id: UUID | None = None,
    ) -> SlotFillResult:
        """
        Fill a cancelled appointment's slot from the waitlist.

        Args:
            appointment_id: Cancelled appointment
            tenant_id: Tenant scope; taken from the appointment when omitted

        Returns:
            Fill result; never raises
        """
        try:
            result = await self._fill(appointment_id, tenant_id)
        except Exception as e:
            await self.db.rollback()
            logger.error("waitlist_fill_failed", appointment_id=str(appointment_id), error=str(e))
            result = SlotFillResult(success=False, error=str(e) or "Failed to fill cancelled slot")

        if not result.success:
            outcome = "error"
        else:
            outcome = "filled" if result.filled else "not_filled"
        AUTOMATION_RUNS.labels(automation=AUTOMATION_NAME, outcome=outcome).inc()
        return result

    async def _fill(self, appointment_id: UUID, tenant_id: UUID | None) -> SlotFillResult:
        flag = "auto_waitlist_management"
        if tenant_id and not await self.settings_service.is_enabled(tenant_id, flag):
            return SlotFillResult(success=True)

        appointment = await self.appointment_service.get_appointment(appointment_id)
        if appointment is None or (tenant_id and appointment.tenant_id != tenant_id):
            return SlotFillResult(success=False, error="Appointment not found")

        scope = appointment.tenant_id
        if not tenant_id and not await self.settings_service.is_enabled(scope, flag):
            return SlotFillResult(success=True)

        if appointment.status != AppointmentStatus.CANCELLED:
            return SlotFillResult(success=True)

        if await self.appointment_service.find_replacement(appointment.id) is not None:
            logger.info("waitlist_slot_already_filled", appointment_id=str(appointment.id))
            return SlotFillResult(success=True)

        lost: set[UUID] = set()
        while True:
            entry = await self.waitlist.match_for_slot(
                scope, appointment.appointment_date, appointment.doctor_id, exclude=lost
            )
            if entry is None:
                return SlotFillResult(success=True)

            patient = await self.appointment_service.get_patient(entry.patient_id)
            if patient is None:
                return SlotFillResult(success=False, error="Waitlist patient not found")

            if not await self.waitlist.claim(entry.id):
                # Another worker took this entry; try the next candidate
                await self.db.rollback()
                lost.add(entry.id)
                continue

            values: dict[str, Any] = {
                "patient_id": entry.patient_id,
                "doctor_id": appointment.doctor_id,
                "appointment_date": appointment.appointment_date,
                "appointment_time": (
                    appointment.appointment_time or entry.preferred_time or DEFAULT_SLOT_TIME
                ),
                "duration": appointment.duration or settings.default_appointment_duration,
                "reason": "Waitlist fill",
                "notes": (
                    "Appointment filled from waitlist "
                    f"(replacing cancelled appointment {appointment.code or appointment.id})"
                ),
                "replaces_appointment_id": appointment.id,
            }
            try:
                created = await self.appointment_service.create_appointment(scope, values)
                await self.db.commit()
            except IntegrityError:
                # Someone else filled the slot; the rollback restores the entry
                await self.db.rollback()
                logger.info("waitlist_fill_race_lost", appointment_id=str(appointment.id))
                return SlotFillResult(success=True)
            break

        logger.info(
            "waitlist_slot_filled",
            cancelled_id=str(appointment.id),
            appointment_id=str(created.id),
            patient_id=str(created.patient_id),
            code=created.code,
        )

        await self._notify_patient(created, patient)
        return SlotFillResult(success=True, filled=True, new_appointment=created)

    async def _notify_patient(self, created: AppointmentRecord, patient: dict[str, Any]) -> None:
        try:
            doctor_name = await self.appointment_service.get_doctor_name(created.doctor_id)
            day = created.appointment_date.isoformat()
            time = created.appointment_time or DEFAULT_SLOT_TIME
            confirm_url = f"{settings.app_base_url}/api/appointments/{created.id}/confirm?action=yes"
            subject, html = waitlist_fill_email(
                patient_name=f"{patient['first_name']} {patient['last_name']}",
                appointment_date=created.appointment_date,
                appointment_time=created.appointment_time,
                code=created.code,
                doctor_name=doctor_name,
                confirm_url=confirm_url,
            )

            await self.dispatcher.dispatch(
                NotificationEnvelope(
                    recipient=NotificationRecipient(
                        user_id=patient["user_id"] or patient["id"],
                        email=patient["email"],
                        phone=patient["phone"],
                    ),
                    tenant_id=created.tenant_id,
                    sms_message=(
                        "Great news! An appointment slot has become available. "
                        f"Your appointment is scheduled for {day} at {time}. "
                        f"Appointment Code: {created.code}. Confirm here: {confirm_url}"
                    ),
                    email_subject=subject,
                    email_html=html,
                    in_app=InAppContent(
                        title="Appointment Available from Waitlist",
                        message=(
                            "An appointment slot has become available. "
                            f"Your appointment is scheduled for {day} at {time}."
                        ),
                        notification_type="appointment",
                        priority="high",
                        action_url=f"/appointments/{created.id}",
                        related_entity_type="appointment",
                        related_entity_id=created.id,
                    ),
                )
            )
        except Exception as e:
            logger.warning("waitlist_notification_failed", appointment_id=str(created.id), error=str(e))


async def process_waitlist_fills(
    tenant_id: UUID | None = None,
    session_factory: SessionFactory = AsyncSessionLocal,
    cache: CacheManager | None = None,
) -> WaitlistSweepResult:
    """
    Try to fill every recently cancelled appointment from the waitlist.

    Args:
        tenant_id: Restrict the sweep to one tenant
        session_factory: Factory for database sessions
        cache: Optional settings cache

    Returns:
        Aggregated sweep result; never raises
    """
    try:
        async with session_factory() as db:
            if tenant_id and not await SettingsService(db, cache).is_enabled(
                tenant_id, "auto_waitlist_management"
            ):
                return WaitlistSweepResult(success=True)

            since = utcnow() - timedelta(minutes=settings.waitlist_lookback_minutes)
            conditions = [
                appointments.c.status == AppointmentStatus.CANCELLED.value,
                appointments.c.updated_at >= since,
            ]
            if tenant_id:
                conditions.append(tenant_filter(appointments.c.tenant_id, tenant_id))

            result = await db.execute(
                select(appointments.c.id, appointments.c.tenant_id)
                .where(and_(*conditions))
                .order_by(appointments.c.updated_at)
            )
            candidates = result.all()

        async def fill_one(session: AsyncSession, row: Any) -> WaitlistSweepItem:
            outcome = await SlotReallocationService(session, cache=cache).fill_cancelled_slot(
                row.id, row.tenant_id
            )
            return WaitlistSweepItem(
                appointment_id=str(row.id),
                success=outcome.success,
                filled=outcome.filled,
                error=outcome.error,
            )

        def fill_failed(row: Any, error: Exception) -> WaitlistSweepItem:
            return WaitlistSweepItem(appointment_id=str(row.id), success=False, error=str(error))

        items = await run_bounded(candidates, fill_one, session_factory, fill_failed)

        sweep = WaitlistSweepResult(
            success=True,
            processed=len(items),
            filled=sum(1 for item in items if item.success and item.filled),
            errors=sum(1 for item in items if not item.success),
            results=items,
        )
        logger.info(
            "waitlist_sweep_finished",
            processed=sweep.processed,
            filled=sweep.filled,
            errors=sweep.errors,
        )
        return sweep
    except Exception as e:
        logger.error("waitlist_sweep_failed", error=str(e))
        return WaitlistSweepResult(
            success=False,
            errors=1,
            results=[WaitlistSweepItem(appointment_id="unknown", success=False, error=str(e))],
        )
