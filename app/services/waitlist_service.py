"""Tenant scoped appointment waitlist."""

from collections.abc import Collection
from datetime import date
from uuid import UUID

import structlog
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.database import dialect_insert
from app.models.patients import patients
from app.models.types import utcnow
from app.models.waitlist import waitlist_entries
from app.schemas.waitlist import (
    WaitlistAddResult,
    WaitlistEntryCreate,
    WaitlistEntryRecord,
    WaitlistRemoveResult,
)
from app.services.code_allocator import scope_key

logger = structlog.get_logger(__name__)


def entry_matches_slot(
    entry: WaitlistEntryRecord,
    slot_date: date | None,
    slot_doctor_id: UUID | None,
    window_days: int,
) -> bool:
    """
    Whether a waitlist entry can take a given slot.

    An entry tied to a doctor only takes that doctor's slots, and an entry with
    a preferred date only takes slots within ``window_days`` of it. Entries
    without constraints take anything.
    """
    if entry.doctor_id is not None and entry.doctor_id != slot_doctor_id:
        return False
    if entry.preferred_date is not None and slot_date is not None:
        if abs((slot_date - entry.preferred_date).days) > window_days:
            return False
    return True


class WaitlistService:
    """Persistent waitlist. Entries are served by priority, then by age."""

    def __init__(self, db: AsyncSession):
        """Initialize service with a database session."""
        self.db = db

    async def add(self, tenant_id: UUID | None, entry: WaitlistEntryCreate) -> WaitlistAddResult:
        """
        Add a patient to the waitlist, replacing any entry they already have.

        Args:
            tenant_id: Tenant scope
            entry: Waitlist preferences

        Returns:
            Result with the stored entry
        """
        try:
            if not await self._patient_exists(tenant_id, entry.patient_id):
                return WaitlistAddResult(success=False, error="Patient not found")

            key = scope_key(tenant_id)
            values = {
                "tenant_id": tenant_id,
                "scope_key": key,
                "patient_id": entry.patient_id,
                "preferred_date": entry.preferred_date,
                "preferred_time": entry.preferred_time,
                "doctor_id": entry.doctor_id,
                "priority": entry.priority,
                "created_at": utcnow(),
            }
            stmt = dialect_insert(self.db, waitlist_entries).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=["scope_key", "patient_id"],
                set_={
                    column: stmt.excluded[column]
                    for column in (
                        "preferred_date",
                        "preferred_time",
                        "doctor_id",
                        "priority",
                        "created_at",
                    )
                },
            )
            await self.db.execute(stmt)
            await self.db.commit()

            stored = await self._get_by_patient(key, entry.patient_id)
            logger.info(
                "waitlist_entry_added",
                tenant_id=str(tenant_id) if tenant_id else None,
                patient_id=str(entry.patient_id),
                priority=entry.priority,
            )
            return WaitlistAddResult(success=True, added=True, entry=stored)
        except Exception as e:
            await self.db.rollback()
            logger.error("waitlist_add_failed", patient_id=str(entry.patient_id), error=str(e))
            return WaitlistAddResult(success=False, error=str(e) or "Failed to add to waitlist")

    async def remove(self, tenant_id: UUID | None, patient_id: UUID) -> WaitlistRemoveResult:
        """Remove a patient from the waitlist. Absent patients are a no-op."""
        try:
            result = await self.db.execute(
                delete(waitlist_entries).where(
                    waitlist_entries.c.scope_key == scope_key(tenant_id),
                    waitlist_entries.c.patient_id == patient_id,
                )
            )
            await self.db.commit()
            removed = result.rowcount > 0
            if removed:
                logger.info("waitlist_entry_removed", patient_id=str(patient_id))
            return WaitlistRemoveResult(success=True, removed=removed)
        except Exception as e:
            await self.db.rollback()
            logger.error("waitlist_remove_failed", patient_id=str(patient_id), error=str(e))
            return WaitlistRemoveResult(success=False, error=str(e) or "Failed to remove from waitlist")

    async def list(self, tenant_id: UUID | None) -> list[WaitlistEntryRecord]:
        """Entries of a tenant in service order."""
        result = await self.db.execute(
            select(waitlist_entries)
            .where(waitlist_entries.c.scope_key == scope_key(tenant_id))
            .order_by(
                waitlist_entries.c.priority.desc(),
                waitlist_entries.c.created_at.asc(),
                waitlist_entries.c.id.asc(),
            )
        )
        return [WaitlistEntryRecord.model_validate(dict(row)) for row in result.mappings()]

    async def match_for_slot(
        self,
        tenant_id: UUID | None,
        slot_date: date | None,
        slot_doctor_id: UUID | None,
        exclude: Collection[UUID] = (),
    ) -> WaitlistEntryRecord | None:
        """
        Find the first entry that can take a freed slot.

        Args:
            tenant_id: Tenant scope
            slot_date: Date of the freed slot
            slot_doctor_id: Doctor of the freed slot
            exclude: Entry ids to skip, e.g. ones lost to a concurrent claim

        Returns:
            The best matching entry, or None
        """
        window = settings.waitlist_match_window_days
        for entry in await self.list(tenant_id):
            if entry.id in exclude:
                continue
            if entry_matches_slot(entry, slot_date, slot_doctor_id, window):
                return entry
        return None

    async def claim(self, entry_id: UUID) -> bool:
        """
        Take an entry off the waitlist as part of the caller's transaction.

        Returns:
            False when another worker already claimed it
        """
        result = await self.db.execute(
            delete(waitlist_entries).where(waitlist_entries.c.id == entry_id)
        )
        return result.rowcount == 1

    async def _get_by_patient(self, key: str, patient_id: UUID) -> WaitlistEntryRecord | None:
        result = await self.db.execute(
            select(waitlist_entries).where(
                waitlist_entries.c.scope_key == key,
                waitlist_entries.c.patient_id == patient_id,
            )
        )
        row = result.mappings().first()
        return WaitlistEntryRecord.model_validate(dict(row)) if row else None

    async def _patient_exists(self, tenant_id: UUID | None, patient_id: UUID) -> bool:
        scope_filter = (
            patients.c.tenant_id == tenant_id if tenant_id else patients.c.tenant_id.is_(None)
        )
        result = await self.db.execute(
            select(patients.c.id).where(patients.c.id == patient_id, scope_filter)
        )
        return result.first() is not None
