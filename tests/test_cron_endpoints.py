"""Tests for the sweep trigger endpoints."""

from datetime import date

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_sweep_requires_secret(client: AsyncClient) -> None:
    response = await client.post("/api/v1/cron/waitlist-fills")
    assert response.status_code == 403

    response = await client.post(
        "/api/v1/cron/waitlist-fills", headers={"X-Cron-Secret": "wrong"}
    )
    assert response.status_code == 403
    assert response.json()["error"] == "ForbiddenException"


@pytest.mark.asyncio
async def test_unknown_sweep(client: AsyncClient, cron_headers: dict) -> None:
    response = await client.post("/api/v1/cron/cleanup", headers=cron_headers)

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_recurring_sweep(
    client: AsyncClient, cron_headers: dict, tenant, patient, make_series, make_appointment
) -> None:
    series_id = await make_series(tenant["id"], patient["id"], "biweekly")
    await make_appointment(
        tenant["id"], patient["id"], date(2026, 3, 2), status="completed", series_id=series_id
    )

    response = await client.post("/api/v1/cron/recurring-appointments", headers=cron_headers)

    assert response.status_code == 200
    data = response.json()
    assert data["success"] is True
    assert data["processed"] == 1
    assert data["created"] == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "sweep",
    ["waitlist-fills", "trial-warnings", "trial-expirations", "weekly-reports", "monthly-reports"],
)
async def test_sweeps_on_empty_database(client: AsyncClient, cron_headers: dict, sweep: str) -> None:
    response = await client.post(f"/api/v1/cron/{sweep}", headers=cron_headers)

    assert response.status_code == 200
    assert response.json()["success"] is True
