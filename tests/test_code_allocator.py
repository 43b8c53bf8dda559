"""Tests for tenant scoped appointment codes."""

from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy import insert

from app.models.tenants import tenants
from app.services.code_allocator import (
    CodeAllocator,
    format_code,
    parse_code_number,
    scope_key,
)


def test_format_and_parse_code() -> None:
    assert format_code("APT", 42) == "APT-000042"
    assert parse_code_number("APT-000042") == 42
    assert parse_code_number("legacy") == 0
    assert parse_code_number(None) == 0


def test_scope_key() -> None:
    tenant_id = uuid4()
    assert scope_key(tenant_id) == str(tenant_id)
    assert scope_key(None) == "default"


@pytest.mark.asyncio
async def test_next_code_continues_from_existing_codes(
    db_session, tenant, patient, make_patient, make_appointment
) -> None:
    """A tenant at APT-000041 gets APT-000042 whatever other tenants hold."""
    other_tenant = uuid4()
    await db_session.execute(insert(tenants).values(id=other_tenant, name="Other Clinic"))
    await db_session.commit()
    other_patient = await make_patient(other_tenant)

    await make_appointment(tenant["id"], patient["id"], date(2026, 3, 1), code="APT-000041")
    await make_appointment(tenant["id"], patient["id"], date(2026, 3, 2), code="APT-000007")
    await make_appointment(other_tenant, other_patient["id"], date(2026, 3, 1), code="APT-000900")

    allocator = CodeAllocator(db_session)
    assert await allocator.next_code(tenant["id"], "APT") == "APT-000042"
    assert await allocator.next_code(tenant["id"], "APT") == "APT-000043"
    assert await allocator.next_code(other_tenant, "APT") == "APT-000901"
    await db_session.commit()


@pytest.mark.asyncio
async def test_next_code_starts_at_one(db_session, tenant) -> None:
    allocator = CodeAllocator(db_session)
    assert await allocator.next_code(tenant["id"]) == "APT-000001"
    assert await allocator.next_code(None) == "APT-000001"


@pytest.mark.asyncio
async def test_rolled_back_allocation_is_reused(db_session, tenant) -> None:
    allocator = CodeAllocator(db_session)
    assert await allocator.next_code(tenant["id"]) == "APT-000001"
    await db_session.commit()

    assert await allocator.next_code(tenant["id"]) == "APT-000002"
    await db_session.rollback()

    assert await allocator.next_code(tenant["id"]) == "APT-000002"
