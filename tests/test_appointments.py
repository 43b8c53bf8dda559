"""Tests for appointment endpoints."""

from datetime import date
from uuid import uuid4

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_ping(client: AsyncClient) -> None:
    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_cancel_enqueues_slot_fill(
    client: AsyncClient,
    tenant_headers: dict,
    tenant,
    patient,
    make_appointment,
    fake_queue,
) -> None:
    """Cancelling hands the slot to the automation worker."""
    appointment = await make_appointment(tenant["id"], patient["id"], date(2026, 4, 14))

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "cancelled", "notes": "Patient called in sick"},
        headers=tenant_headers,
    )

    assert response.status_code == 200
    data = response.json()
    assert data["appointment"]["status"] == "cancelled"
    assert data["appointment"]["cancelled_at"] is not None
    assert data["appointment"]["notes"] == "Patient called in sick"
    assert data["automation_job_id"] == f"fill_cancelled_slot_task:{appointment['id']}"
    assert len(fake_queue.calls) == 1
    assert fake_queue.calls[0][1] == tenant["id"]
    assert fake_queue.changed_at[0] is not None


@pytest.mark.asyncio
async def test_complete_enqueues_continuation(
    client: AsyncClient, tenant_headers: dict, tenant, patient, make_appointment, fake_queue
) -> None:
    appointment = await make_appointment(tenant["id"], patient["id"], date(2026, 4, 14))

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "completed"},
        headers=tenant_headers,
    )

    assert response.status_code == 200
    assert response.json()["automation_job_id"] == (
        f"continue_recurring_appointment_task:{appointment['id']}"
    )


@pytest.mark.asyncio
async def test_unchanged_status_enqueues_nothing(
    client: AsyncClient, tenant_headers: dict, tenant, patient, make_appointment, fake_queue
) -> None:
    appointment = await make_appointment(
        tenant["id"], patient["id"], date(2026, 4, 14), status="cancelled"
    )

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "cancelled"},
        headers=tenant_headers,
    )

    assert response.status_code == 200
    assert response.json()["automation_job_id"] is None
    assert fake_queue.calls == []


@pytest.mark.asyncio
async def test_appointment_of_other_tenant_is_not_found(
    client: AsyncClient, tenant, patient, make_appointment
) -> None:
    appointment = await make_appointment(tenant["id"], patient["id"], date(2026, 4, 14))

    response = await client.patch(
        f"/api/v1/appointments/{appointment['id']}/status",
        json={"status": "cancelled"},
        headers={"X-Tenant-ID": str(uuid4())},
    )

    assert response.status_code == 404
    assert response.json()["error"] == "NotFoundException"


@pytest.mark.asyncio
async def test_invalid_tenant_header(client: AsyncClient) -> None:
    response = await client.patch(
        f"/api/v1/appointments/{uuid4()}/status",
        json={"status": "cancelled"},
        headers={"X-Tenant-ID": "not-a-uuid"},
    )

    assert response.status_code == 400
    assert response.json()["message"] == "Invalid X-Tenant-ID header"


@pytest.mark.asyncio
async def test_invalid_status_is_rejected(client: AsyncClient, tenant_headers: dict) -> None:
    response = await client.patch(
        f"/api/v1/appointments/{uuid4()}/status",
        json={"status": "rescheduled"},
        headers=tenant_headers,
    )

    assert response.status_code == 422
    assert response.json()["error"] == "ValidationError"
