"""Tests for the automation worker tasks and the enqueue side."""

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest
from arq import Retry
from sqlalchemy import select

from app.models.automation import automation_failures
from app.schemas.appointments import AppointmentStatus
from app.schemas.waitlist import WaitlistEntryCreate
from app.services.automation_queue import AutomationQueue
from app.services.waitlist_service import WaitlistService
from app.worker import (
    WorkerSettings,
    fill_cancelled_slot_task,
    waitlist_fills_sweep,
)


@pytest.fixture
def ctx(session_factory, fake_redis) -> dict:
    return {
        "job_id": "fill_cancelled_slot_task:test",
        "job_try": 1,
        "session_factory": session_factory,
        "lock_client": fake_redis,
    }


@pytest.mark.asyncio
async def test_failed_job_is_retried_with_backoff(ctx) -> None:
    ctx["job_try"] = 2

    with pytest.raises(Retry) as excinfo:
        await fill_cancelled_slot_task(ctx, str(uuid4()))

    assert excinfo.value.defer_score == 2 * 30 * 1000


@pytest.mark.asyncio
async def test_exhausted_job_is_dead_lettered(ctx, db_session, tenant) -> None:
    ctx["job_try"] = WorkerSettings.max_tries
    appointment_id = str(uuid4())

    data = await fill_cancelled_slot_task(ctx, appointment_id, str(tenant["id"]))

    assert data["success"] is False
    result = await db_session.execute(select(automation_failures))
    rows = result.mappings().all()
    assert len(rows) == 1
    assert rows[0]["job_name"] == "fill_cancelled_slot_task"
    assert rows[0]["tenant_id"] == tenant["id"]
    assert rows[0]["payload"]["appointment_id"] == appointment_id
    assert rows[0]["error"] == "Appointment not found"
    assert rows[0]["attempts"] == WorkerSettings.max_tries


@pytest.mark.asyncio
async def test_successful_job_returns_result(
    ctx, db_session, tenant, patient, make_patient, make_appointment
) -> None:
    waiting = await make_patient(tenant["id"], first_name="Waiting")
    await WaitlistService(db_session).add(tenant["id"], WaitlistEntryCreate(patient_id=waiting["id"]))
    cancelled = await make_appointment(
        tenant["id"], patient["id"], date(2026, 4, 14), status="cancelled"
    )

    data = await fill_cancelled_slot_task(ctx, str(cancelled["id"]), str(tenant["id"]))

    assert data["success"] is True
    assert data["filled"] is True
    assert data["new_appointment"]["replaces_appointment_id"] == str(cancelled["id"])


@pytest.mark.asyncio
async def test_sweep_skipped_while_locked(ctx, fake_redis) -> None:
    fake_redis.store["automation:sweep-lock:waitlist-fills"] = "another-worker"

    assert await waitlist_fills_sweep(ctx) is None
    assert fake_redis.store["automation:sweep-lock:waitlist-fills"] == "another-worker"


@pytest.mark.asyncio
async def test_sweep_runs_and_releases_lock(ctx, fake_redis) -> None:
    data = await waitlist_fills_sweep(ctx)

    assert data is not None
    assert data["success"] is True
    assert data["processed"] == 0
    assert fake_redis.store == {}


def test_worker_registers_tasks_and_schedules() -> None:
    names = {function.__name__ for function in WorkerSettings.functions}
    assert names == {"continue_recurring_appointment_task", "fill_cancelled_slot_task"}
    assert len(WorkerSettings.cron_jobs) == 6


class FakePool:
    def __init__(self, job=True, fail=False):
        self.job = job
        self.fail = fail
        self.calls = []

    async def enqueue_job(self, name, *args, _job_id=None):
        if self.fail:
            raise ConnectionError("redis unavailable")
        self.calls.append((name, args, _job_id))
        return SimpleNamespace(job_id=_job_id) if self.job else None


@pytest.mark.asyncio
async def test_enqueue_uses_one_job_per_transition() -> None:
    pool = FakePool()
    appointment_id = uuid4()
    tenant_id = uuid4()

    job_id = await AutomationQueue(pool).enqueue_for_status(
        appointment_id, tenant_id, AppointmentStatus.COMPLETED
    )

    assert job_id == f"continue_recurring_appointment_task:{appointment_id}"
    assert pool.calls == [
        ("continue_recurring_appointment_task", (str(appointment_id), str(tenant_id)), job_id)
    ]


@pytest.mark.asyncio
async def test_enqueue_ignores_other_statuses() -> None:
    pool = FakePool()

    assert await AutomationQueue(pool).enqueue_for_status(uuid4(), None, AppointmentStatus.CONFIRMED) is None
    assert pool.calls == []


@pytest.mark.asyncio
async def test_duplicate_enqueue_returns_existing_job_id() -> None:
    appointment_id = uuid4()

    job_id = await AutomationQueue(FakePool(job=False)).enqueue_for_status(
        appointment_id, None, AppointmentStatus.CANCELLED
    )

    assert job_id == f"fill_cancelled_slot_task:{appointment_id}"


@pytest.mark.asyncio
async def test_repeated_transition_gets_its_own_job() -> None:
    pool = FakePool()
    queue = AutomationQueue(pool)
    appointment_id = uuid4()
    first = datetime(2026, 3, 9, 9, 0, tzinfo=timezone.utc)

    # Cancelled, reinstated, then cancelled again before the first result expires
    first_id = await queue.enqueue_for_status(
        appointment_id, None, AppointmentStatus.CANCELLED, changed_at=first
    )
    second_id = await queue.enqueue_for_status(
        appointment_id, None, AppointmentStatus.CANCELLED, changed_at=first + timedelta(minutes=5)
    )

    assert first_id == f"fill_cancelled_slot_task:{appointment_id}:{int(first.timestamp() * 1000)}"
    assert first_id != second_id
    assert [call[2] for call in pool.calls] == [first_id, second_id]


@pytest.mark.asyncio
async def test_enqueue_failure_is_swallowed() -> None:
    job_id = await AutomationQueue(FakePool(fail=True)).enqueue_for_status(
        uuid4(), None, AppointmentStatus.CANCELLED
    )

    assert job_id is None
