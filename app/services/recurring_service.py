"""Recurring appointment continuation."""

from datetime import timedelta
from typing import Any
from uuid import UUID

import structlog
from sqlalchemy import and_, insert, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.metrics import AUTOMATION_RUNS
from app.core.redis_client import CacheManager
from app.database import AsyncSessionLocal, SessionFactory
from app.models.appointments import appointments, recurring_series
from app.models.types import utcnow
from app.schemas.appointments import AppointmentRecord, AppointmentStatus, RecurrenceFrequency
from app.schemas.automation import (
    ContinuationOutcome,
    ContinuationResult,
    RecurringAppointmentConfig,
    RecurringSweepItem,
    RecurringSweepResult,
    SeriesCreateResult,
)
from app.schemas.notifications import InAppContent, NotificationEnvelope, NotificationRecipient
from app.services.appointment_service import AppointmentService, tenant_filter
from app.services.email_templates import recurring_appointment_email
from app.services.notification_service import NotificationDispatcher
from app.services.recurrence import extract_frequency_from_notes, looks_recurring, next_date
from app.services.settings_service import SettingsService
from app.services.sweeps import run_bounded

logger = structlog.get_logger(__name__)

AUTOMATION_NAME = "recurring_continuation"
AUTO_CREATED_NOTE = "[Recurring appointment - created automatically]"


class RecurringAppointmentService:
    """Creates the next appointment of a series when the previous one completes."""

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

    async def create_series(self, config: RecurringAppointmentConfig) -> SeriesCreateResult:
        """
        Register a recurring series.

        Args:
            config: Series parameters

        Returns:
            Result with the new series id
        """
        try:
            series_id = await self._insert_series(config)
            await self.db.commit()
            logger.info(
                "recurring_series_created",
                series_id=str(series_id),
                patient_id=str(config.patient_id),
                frequency=config.frequency.value,
            )
            return SeriesCreateResult(success=True, series_id=series_id)
        except Exception as e:
            await self.db.rollback()
            logger.error("recurring_series_create_failed", error=str(e))
            return SeriesCreateResult(success=False, error=str(e) or "Failed to create recurring series")

    async def create_next_recurring_appointment(
        self,
        appointment: AppointmentRecord,
        config: RecurringAppointmentConfig,
    ) -> ContinuationResult:
        """
        Create the successor of an appointment in its series.

        Args:
            appointment: The occurrence that just completed
            config: Series parameters

        Returns:
            Continuation result; never raises
        """
        try:
            result = await self._create_next(appointment, config)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "recurring_continuation_failed",
                appointment_id=str(appointment.id),
                error=str(e),
            )
            result = ContinuationResult(
                success=False,
                error=str(e) or "Failed to create next recurring appointment",
            )

        AUTOMATION_RUNS.labels(
            automation=AUTOMATION_NAME,
            outcome=result.outcome.value if result.outcome else ("ok" if result.success else "error"),
        ).inc()
        return result

    async def continue_completed_appointment(
        self,
        appointment_id: UUID,
        tenant_id: UUID | None = None,
    ) -> ContinuationResult:
        """
        Continue the series of a completed appointment.

        Args:
            appointment_id: Completed appointment
            tenant_id: Tenant scope; taken from the appointment when omitted

        Returns:
            Continuation result; never raises
        """
        try:
            appointment = await self.appointment_service.get_appointment(appointment_id)
            if appointment is None or (tenant_id and appointment.tenant_id != tenant_id):
                return ContinuationResult(success=False, error="Appointment not found")

            if appointment.status != AppointmentStatus.COMPLETED:
                return ContinuationResult(success=True)

            if not await self.settings_service.is_enabled(
                appointment.tenant_id, "auto_recurring_appointments"
            ):
                return ContinuationResult(success=True, outcome=ContinuationOutcome.DISABLED)

            config = await self._resolve_config(appointment)
            if config is None:
                return ContinuationResult(success=True, outcome=ContinuationOutcome.NOT_RECURRING)
        except Exception as e:
            await self.db.rollback()
            logger.error(
                "recurring_continuation_failed",
                appointment_id=str(appointment_id),
                error=str(e),
            )
            return ContinuationResult(success=False, error=str(e) or "Failed to continue series")

        return await self.create_next_recurring_appointment(appointment, config)

    async def _create_next(
        self,
        appointment: AppointmentRecord,
        config: RecurringAppointmentConfig,
    ) -> ContinuationResult:
        if not await self.settings_service.is_enabled(config.tenant_id, "auto_recurring_appointments"):
            return ContinuationResult(success=True, outcome=ContinuationOutcome.DISABLED)

        upcoming = next_date(appointment.appointment_date, config.frequency)

        existing = await self.appointment_service.find_active_on_day(
            config.tenant_id, config.patient_id, upcoming
        )
        if existing is not None:
            logger.info(
                "recurring_successor_exists",
                appointment_id=str(appointment.id),
                existing_id=str(existing.id),
            )
            return ContinuationResult(
                success=True,
                outcome=ContinuationOutcome.ALREADY_EXISTS,
                appointment=existing,
            )

        if config.series_id is not None:
            # Any occurrence counts, so a cancelled successor is not booked again
            occurrence = await self.appointment_service.find_series_occurrence(config.series_id, upcoming)
            if occurrence is not None:
                logger.info(
                    "recurring_occurrence_exists",
                    appointment_id=str(appointment.id),
                    existing_id=str(occurrence.id),
                    status=occurrence.status.value,
                )
                return ContinuationResult(
                    success=True,
                    outcome=ContinuationOutcome.ALREADY_EXISTS,
                    appointment=occurrence,
                )

        if config.end_date and upcoming > config.end_date:
            logger.info(
                "recurring_series_complete",
                series_id=str(config.series_id) if config.series_id else None,
                end_date=config.end_date.isoformat(),
            )
            return ContinuationResult(success=True, outcome=ContinuationOutcome.SERIES_COMPLETE)

        values: dict[str, Any] = {
            "patient_id": config.patient_id,
            "doctor_id": config.doctor_id,
            "appointment_date": upcoming,
            "appointment_time": appointment.appointment_time or config.appointment_time,
            "duration": config.duration or settings.default_appointment_duration,
            "reason": config.reason or f"Recurring appointment ({config.frequency.value})",
            "notes": f"{config.notes or ''}\n{AUTO_CREATED_NOTE}".strip(),
            "series_id": config.series_id,
        }

        try:
            created = await self.appointment_service.create_appointment(config.tenant_id, values)
            await self.db.commit()
        except IntegrityError:
            # A concurrent trigger created the same occurrence
            await self.db.rollback()
            logger.info("recurring_successor_race_lost", appointment_id=str(appointment.id))
            return ContinuationResult(success=True, outcome=ContinuationOutcome.ALREADY_EXISTS)

        logger.info(
            "recurring_appointment_created",
            appointment_id=str(created.id),
            previous_id=str(appointment.id),
            code=created.code,
            appointment_date=upcoming.isoformat(),
        )

        if config.send_notification:
            await self._notify_patient(created, config)

        return ContinuationResult(
            success=True,
            outcome=ContinuationOutcome.CREATED,
            appointment=created,
        )

    async def _resolve_config(self, appointment: AppointmentRecord) -> RecurringAppointmentConfig | None:
        """Series parameters of an appointment, migrating notes-flagged legacy rows."""
        series_id = appointment.series_id
        if series_id is None:
            if not looks_recurring(appointment.notes):
                return None
            series_id = await self._migrate_legacy(appointment)

        result = await self.db.execute(
            select(recurring_series).where(recurring_series.c.id == series_id)
        )
        series = result.mappings().first()
        if series is None or not series["is_active"]:
            return None

        return RecurringAppointmentConfig(
            patient_id=series["patient_id"],
            doctor_id=series["doctor_id"] or appointment.doctor_id,
            frequency=RecurrenceFrequency(series["frequency"]),
            start_date=series["start_date"],
            end_date=series["end_date"],
            appointment_time=series["appointment_time"],
            duration=series["duration"] or appointment.duration,
            reason=series["reason"],
            notes=series["notes"],
            tenant_id=appointment.tenant_id,
            series_id=series_id,
        )

    async def _migrate_legacy(self, appointment: AppointmentRecord) -> UUID:
        """Move a notes-flagged appointment into a new series."""
        frequency = extract_frequency_from_notes(appointment.notes) or RecurrenceFrequency.MONTHLY
        series_id = await self._insert_series(
            RecurringAppointmentConfig(
                patient_id=appointment.patient_id,
                doctor_id=appointment.doctor_id,
                frequency=frequency,
                start_date=appointment.appointment_date,
                appointment_time=appointment.appointment_time,
                duration=appointment.duration,
                reason=appointment.reason,
                notes=appointment.notes,
                tenant_id=appointment.tenant_id,
            )
        )
        result = await self.db.execute(
            update(appointments)
            .where(appointments.c.id == appointment.id, appointments.c.series_id.is_(None))
            .values(series_id=series_id)
        )
        if result.rowcount == 0:
            # Another worker migrated it first
            await self.db.rollback()
            reloaded = await self.appointment_service.get_appointment(appointment.id)
            if reloaded is None or reloaded.series_id is None:
                raise RuntimeError("Appointment series migration failed")
            return reloaded.series_id

        await self.db.commit()
        logger.info(
            "legacy_recurring_appointment_migrated",
            appointment_id=str(appointment.id),
            series_id=str(series_id),
            frequency=frequency.value,
        )
        return series_id

    async def _insert_series(self, config: RecurringAppointmentConfig) -> UUID:
        result = await self.db.execute(
            insert(recurring_series).values(
                tenant_id=config.tenant_id,
                patient_id=config.patient_id,
                doctor_id=config.doctor_id,
                frequency=config.frequency.value,
                start_date=config.start_date,
                end_date=config.end_date,
                appointment_time=config.appointment_time,
                duration=config.duration,
                reason=config.reason,
                notes=config.notes,
            )
        )
        return result.inserted_primary_key[0]

    async def _notify_patient(self, created: AppointmentRecord, config: RecurringAppointmentConfig) -> None:
        try:
            patient = await self.appointment_service.get_patient(created.patient_id)
            if patient is None:
                logger.warning("recurring_notification_no_patient", patient_id=str(created.patient_id))
                return

            clinic = await self.settings_service.get_settings(config.tenant_id)
            doctor_name = await self.appointment_service.get_doctor_name(created.doctor_id)
            day = created.appointment_date.isoformat()
            subject, html = recurring_appointment_email(
                patient_name=f"{patient['first_name']} {patient['last_name']}",
                clinic_name=clinic.display_name,
                appointment_date=created.appointment_date,
                appointment_time=created.appointment_time,
                code=created.code,
                doctor_name=doctor_name,
                view_url=f"{settings.app_base_url}/appointments/{created.id}",
            )

            await self.dispatcher.dispatch(
                NotificationEnvelope(
                    recipient=NotificationRecipient(
                        user_id=patient["user_id"] or patient["id"],
                        email=patient["email"],
                        phone=patient["phone"],
                    ),
                    tenant_id=config.tenant_id,
                    sms_message=(
                        f"Your next recurring appointment has been scheduled for {day}. "
                        f"Appointment Code: {created.code}. - {clinic.display_name}"
                    ),
                    email_subject=subject,
                    email_html=html,
                    in_app=InAppContent(
                        title="Recurring Appointment Scheduled",
                        message=f"Your next appointment has been automatically scheduled for {day}.",
                        notification_type="appointment",
                        priority="normal",
                        action_url=f"/appointments/{created.id}",
                        related_entity_type="appointment",
                        related_entity_id=created.id,
                    ),
                )
            )
        except Exception as e:
            logger.warning(
                "recurring_notification_failed",
                appointment_id=str(created.id),
                error=str(e),
            )


async def process_recurring_appointments(
    tenant_id: UUID | None = None,
    session_factory: SessionFactory = AsyncSessionLocal,
    cache: CacheManager | None = None,
) -> RecurringSweepResult:
    """
    Continue every recently completed recurring appointment.

    Covers completed appointments updated within the lookback window that
    belong to a series or whose notes mark them as recurring.

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
                tenant_id, "auto_recurring_appointments"
            ):
                return RecurringSweepResult(success=True)

            since = utcnow() - timedelta(days=settings.recurring_lookback_days)
            conditions = [
                appointments.c.status == AppointmentStatus.COMPLETED.value,
                appointments.c.updated_at >= since,
                or_(
                    appointments.c.series_id.is_not(None),
                    appointments.c.notes.ilike("%recur%"),
                ),
            ]
            if tenant_id:
                conditions.append(tenant_filter(appointments.c.tenant_id, tenant_id))

            result = await db.execute(
                select(appointments.c.id, appointments.c.tenant_id)
                .where(and_(*conditions))
                .order_by(appointments.c.updated_at)
            )
            candidates = result.all()

        async def continue_one(session: AsyncSession, row: Any) -> RecurringSweepItem:
            service = RecurringAppointmentService(session, cache=cache)
            outcome = await service.continue_completed_appointment(row.id, row.tenant_id)
            return RecurringSweepItem(
                appointment_id=str(row.id),
                success=outcome.success,
                created=outcome.outcome == ContinuationOutcome.CREATED,
                error=outcome.error,
            )

        def continue_failed(row: Any, error: Exception) -> RecurringSweepItem:
            return RecurringSweepItem(appointment_id=str(row.id), success=False, error=str(error))

        items = await run_bounded(candidates, continue_one, session_factory, continue_failed)

        sweep = RecurringSweepResult(
            success=True,
            processed=len(items),
            created=sum(1 for item in items if item.success and item.created),
            errors=sum(1 for item in items if not item.success),
            results=items,
        )
        logger.info(
            "recurring_sweep_finished",
            processed=sweep.processed,
            created=sweep.created,
            errors=sweep.errors,
        )
        return sweep
    except Exception as e:
        logger.error("recurring_sweep_failed", error=str(e))
        return RecurringSweepResult(
            success=False,
            errors=1,
            results=[RecurringSweepItem(appointment_id="unknown", success=False, error=str(e))],
        )
