"""Tests for the persistent waitlist."""

from datetime import UTC, date, datetime
from uuid import uuid4

import pytest

from app.schemas.waitlist import WaitlistEntryCreate, WaitlistEntryRecord
from app.services.waitlist_service import WaitlistService, entry_matches_slot


def _entry(**overrides) -> WaitlistEntryRecord:
    values = {
        "id": uuid4(),
        "patient_id": uuid4(),
        "created_at": datetime(2026, 3, 1, tzinfo=UTC),
    }
    values.update(overrides)
    return WaitlistEntryRecord(**values)


def test_unconstrained_entry_matches_any_slot() -> None:
    assert entry_matches_slot(_entry(), date(2026, 3, 10), uuid4(), window_days=7)
    assert entry_matches_slot(_entry(), date(2026, 3, 10), None, window_days=7)


def test_doctor_bound_entry_only_matches_that_doctor() -> None:
    doctor_id = uuid4()
    entry = _entry(doctor_id=doctor_id)

    assert entry_matches_slot(entry, date(2026, 3, 10), doctor_id, window_days=7)
    assert not entry_matches_slot(entry, date(2026, 3, 10), uuid4(), window_days=7)
    assert not entry_matches_slot(entry, date(2026, 3, 10), None, window_days=7)


def test_preferred_date_window() -> None:
    entry = _entry(preferred_date=date(2026, 3, 10))

    assert entry_matches_slot(entry, date(2026, 3, 17), None, window_days=7)
    assert entry_matches_slot(entry, date(2026, 3, 3), None, window_days=7)
    assert not entry_matches_slot(entry, date(2026, 3, 18), None, window_days=7)


@pytest.mark.asyncio
async def test_add_rejects_patient_outside_tenant(db_session, tenant, make_patient) -> None:
    stranger = await make_patient(uuid4())

    result = await WaitlistService(db_session).add(
        tenant["id"], WaitlistEntryCreate(patient_id=stranger["id"])
    )

    assert result.success is False
    assert result.error == "Patient not found"


@pytest.mark.asyncio
async def test_add_replaces_existing_entry(db_session, tenant, patient) -> None:
    service = WaitlistService(db_session)

    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=patient["id"], priority=1))
    result = await service.add(
        tenant["id"],
        WaitlistEntryCreate(patient_id=patient["id"], priority=4, preferred_time="08:15"),
    )

    assert result.success is True
    assert result.entry is not None
    assert result.entry.priority == 4

    entries = await service.list(tenant["id"])
    assert len(entries) == 1
    assert entries[0].preferred_time == "08:15"


@pytest.mark.asyncio
async def test_higher_priority_wins_regardless_of_age(db_session, tenant, make_patient) -> None:
    """Two doctor-agnostic entries: priority 5 beats an older priority 3."""
    service = WaitlistService(db_session)
    older = await make_patient(tenant["id"], first_name="Older")
    urgent = await make_patient(tenant["id"], first_name="Urgent")

    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=older["id"], priority=3))
    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=urgent["id"], priority=5))

    match = await service.match_for_slot(tenant["id"], date(2026, 3, 10), uuid4())

    assert match is not None
    assert match.patient_id == urgent["id"]


@pytest.mark.asyncio
async def test_same_priority_is_first_come_first_served(db_session, tenant, make_patient) -> None:
    service = WaitlistService(db_session)
    first = await make_patient(tenant["id"], first_name="First")
    second = await make_patient(tenant["id"], first_name="Second")

    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=first["id"], priority=2))
    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=second["id"], priority=2))

    entries = await service.list(tenant["id"])
    assert [entry.patient_id for entry in entries] == [first["id"], second["id"]]


@pytest.mark.asyncio
async def test_match_skips_other_doctors_and_excluded(db_session, tenant, make_patient) -> None:
    service = WaitlistService(db_session)
    slot_doctor = uuid4()
    bound = await make_patient(tenant["id"], first_name="Bound")
    free = await make_patient(tenant["id"], first_name="Free")

    await service.add(
        tenant["id"],
        WaitlistEntryCreate(patient_id=bound["id"], doctor_id=uuid4(), priority=9),
    )
    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=free["id"], priority=1))

    match = await service.match_for_slot(tenant["id"], date(2026, 3, 10), slot_doctor)
    assert match is not None
    assert match.patient_id == free["id"]

    assert (
        await service.match_for_slot(tenant["id"], date(2026, 3, 10), slot_doctor, exclude={match.id})
        is None
    )


@pytest.mark.asyncio
async def test_claim_is_exclusive(db_session, tenant, patient) -> None:
    service = WaitlistService(db_session)
    added = await service.add(tenant["id"], WaitlistEntryCreate(patient_id=patient["id"]))
    assert added.entry is not None

    assert await service.claim(added.entry.id) is True
    assert await service.claim(added.entry.id) is False
    await db_session.commit()

    assert await service.list(tenant["id"]) == []


@pytest.mark.asyncio
async def test_remove_absent_patient_is_noop(db_session, tenant, patient) -> None:
    service = WaitlistService(db_session)

    result = await service.remove(tenant["id"], patient["id"])

    assert result.success is True
    assert result.removed is False


@pytest.mark.asyncio
async def test_waitlists_are_tenant_scoped(db_session, tenant, patient, make_patient) -> None:
    service = WaitlistService(db_session)
    default_patient = await make_patient(None)

    await service.add(tenant["id"], WaitlistEntryCreate(patient_id=patient["id"]))
    await service.add(None, WaitlistEntryCreate(patient_id=default_patient["id"]))

    assert [e.patient_id for e in await service.list(tenant["id"])] == [patient["id"]]
    assert [e.patient_id for e in await service.list(None)] == [default_patient["id"]]
