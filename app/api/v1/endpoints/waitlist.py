"""Waitlist endpoints."""

from uuid import UUID

from fastapi import APIRouter, status

from app.core.exceptions import BadRequestException, NotFoundException
from app.dependencies import DatabaseSession, TenantId
from app.schemas.waitlist import (
    WaitlistAddResult,
    WaitlistEntryCreate,
    WaitlistListResponse,
    WaitlistRemoveResult,
)
from app.services.waitlist_service import WaitlistService

router = APIRouter()


@router.get(
    "",
    response_model=WaitlistListResponse,
    status_code=status.HTTP_200_OK,
    summary="List waitlist entries",
)
async def list_waitlist(tenant_id: TenantId, db: DatabaseSession) -> WaitlistListResponse:
    """
    List the tenant's waitlist in matching order.

    Returns:
        Entries by priority, oldest first within a priority
    """
    items = await WaitlistService(db).list(tenant_id)
    return WaitlistListResponse(total=len(items), items=items)


@router.post(
    "",
    response_model=WaitlistAddResult,
    status_code=status.HTTP_201_CREATED,
    summary="Add patient to waitlist",
)
async def add_to_waitlist(
    data: WaitlistEntryCreate,
    tenant_id: TenantId,
    db: DatabaseSession,
) -> WaitlistAddResult:
    """
    Add a patient to the waitlist, replacing any existing entry.

    Args:
        data: Waitlist preferences
        tenant_id: Tenant from the X-Tenant-ID header
        db: Database session

    Returns:
        Stored entry

    Raises:
        NotFoundException: If the patient is not in the tenant
    """
    result = await WaitlistService(db).add(tenant_id, data)
    if not result.success:
        if result.error == "Patient not found":
            raise NotFoundException(result.error)
        raise BadRequestException(result.error or "Failed to add to waitlist")
    return result


@router.delete(
    "/{patient_id}",
    response_model=WaitlistRemoveResult,
    status_code=status.HTTP_200_OK,
    summary="Remove patient from waitlist",
)
async def remove_from_waitlist(
    patient_id: UUID,
    tenant_id: TenantId,
    db: DatabaseSession,
) -> WaitlistRemoveResult:
    """
    Remove a patient's waitlist entry.

    Removing a patient who is not waitlisted succeeds with ``removed=False``.
    """
    result = await WaitlistService(db).remove(tenant_id, patient_id)
    if not result.success:
        raise BadRequestException(result.error or "Failed to remove from waitlist")
    return result
