"""Appointment endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from app.dependencies import DatabaseSession, QueueDep, TenantId
from app.schemas.appointments import AppointmentStatusResponse, AppointmentStatusUpdate
from app.services.appointment_service import AppointmentService

router = APIRouter()


@router.patch(
    "/{appointment_id}/status",
    response_model=AppointmentStatusResponse,
    status_code=status.HTTP_200_OK,
    summary="Update appointment status",
)
async def update_appointment_status(
    appointment_id: UUID,
    data: AppointmentStatusUpdate,
    tenant_id: TenantId,
    db: DatabaseSession,
    queue: QueueDep,
) -> AppointmentStatusResponse:
    """
    Update appointment status.

    Completing an appointment schedules the next one of its series, cancelling
    it offers the slot to the waitlist. Both run in the automation worker; the
    response carries the enqueued job id.

    Args:
        appointment_id: Appointment ID
        data: New status and optional notes
        tenant_id: Tenant from the X-Tenant-ID header
        db: Database session
        queue: Automation job queue

    Returns:
        Updated appointment
    """
    service = AppointmentService(db, queue)
    return await service.update_appointment_status(appointment_id, tenant_id, data)
