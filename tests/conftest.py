import os

# Settings are read at import time; pin the test configuration first
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["AUTOMATION_SWEEP_CONCURRENCY"] = "1"
os.environ["SETTINGS_CACHE_TTL"] = "0"
os.environ["PUSH_NOTIFICATIONS_ENABLED"] = "false"
os.environ["RESEND_API_KEY"] = ""
os.environ["TWILIO_ACCOUNT_SID"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = ""
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["LOG_FORMAT"] = "console"

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import date, datetime, timedelta
from typing import Any
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import MetaData, insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool

from app.core.redis_client import CacheManager
from app.database import get_db
from app.dependencies import get_automation_queue, get_cache, get_session_factory
from app.main import app
from app.models import ALL_METADATA
from app.models.appointments import appointments, recurring_series
from app.models.automation import clinic_settings
from app.models.patients import doctors, patients
from app.models.tenants import tenants
from app.models.types import utcnow
from app.models.users import users
from app.schemas.appointments import AppointmentStatus
from app.schemas.notifications import TransportResult

# Combine all metadata
metadata = MetaData()
for module_metadata in ALL_METADATA:
    for table in module_metadata.tables.values():
        table.to_metadata(metadata)

# Postgres when TEST_DATABASE_URL is set, otherwise a throwaway SQLite file per test
TEST_DATABASE_URL = os.getenv("TEST_DATABASE_URL")


@pytest_asyncio.fixture
async def engine(tmp_path):
    """Create a test database with every table."""
    url = TEST_DATABASE_URL or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)

    test_engine = create_async_engine(url, echo=False, poolclass=NullPool)
    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
        await conn.run_sync(metadata.create_all)

    yield test_engine

    async with test_engine.begin() as conn:
        await conn.run_sync(metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


class FakeQueue:
    """Records enqueued automation jobs instead of talking to Redis."""

    def __init__(self):
        self.calls: list[tuple[UUID, UUID | None, AppointmentStatus]] = []
        self.changed_at: list[datetime | None] = []

    async def enqueue_for_status(
        self,
        appointment_id: UUID,
        tenant_id: UUID | None,
        status: AppointmentStatus,
        changed_at: datetime | None = None,
    ) -> str | None:
        self.calls.append((appointment_id, tenant_id, status))
        self.changed_at.append(changed_at)
        if status == AppointmentStatus.COMPLETED:
            return f"continue_recurring_appointment_task:{appointment_id}"
        if status == AppointmentStatus.CANCELLED:
            return f"fill_cancelled_slot_task:{appointment_id}"
        return None


class FakeRedis:
    """The subset of the redis client used by SweepLock."""

    def __init__(self):
        self.store: dict[str, str] = {}

    def set(self, key: str, value: str, nx: bool = False, ex: int | None = None) -> bool | None:
        if nx and key in self.store:
            return None
        self.store[key] = value
        return True

    def get(self, key: str) -> str | None:
        return self.store.get(key)

    def delete(self, key: str) -> int:
        return 1 if self.store.pop(key, None) is not None else 0


class RecordingEmailTransport:
    """Email transport double."""

    def __init__(self, fail: bool = False, raises: bool = False):
        self.fail = fail
        self.raises = raises
        self.sent: list[dict[str, str]] = []

    async def send(self, to: str, subject: str, html: str) -> TransportResult:
        if self.raises:
            raise ConnectionError("email provider unreachable")
        if self.fail:
            return TransportResult(success=False, error="rejected")
        self.sent.append({"to": to, "subject": subject, "html": html})
        return TransportResult(success=True, message_id=f"email-{len(self.sent)}")


class RecordingSmsTransport:
    """SMS transport double."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: list[dict[str, str]] = []

    async def send(self, to: str, message: str) -> TransportResult:
        if self.fail:
            return TransportResult(success=False, error="rejected")
        self.sent.append({"to": to, "message": message})
        return TransportResult(success=True, message_id=f"SM{len(self.sent)}")


@pytest.fixture
def fake_queue() -> FakeQueue:
    """Automation queue double."""
    return FakeQueue()


@pytest.fixture
def fake_redis() -> FakeRedis:
    """Redis double for sweep locks."""
    return FakeRedis()


@pytest.fixture
def email_transport() -> RecordingEmailTransport:
    return RecordingEmailTransport()


@pytest.fixture
def sms_transport() -> RecordingSmsTransport:
    return RecordingSmsTransport()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    session_factory: async_sessionmaker[AsyncSession],
    fake_queue: FakeQueue,
    fake_redis: FakeRedis,
) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_automation_queue] = lambda: fake_queue
    app.dependency_overrides[get_cache] = lambda: CacheManager(fake_redis)

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def cron_headers() -> dict:
    return {"X-Cron-Secret": "test-cron-secret"}


@pytest_asyncio.fixture
async def tenant(db_session: AsyncSession) -> dict[str, Any]:
    """A tenant on an active trial with a week left."""
    tenant_id = uuid4()
    values = {
        "id": tenant_id,
        "name": "Sunrise Clinic",
        "slug": f"sunrise-{tenant_id.hex[:8]}",
        "subscription_plan": "trial",
        "subscription_status": "active",
        "subscription_expires_at": utcnow() + timedelta(days=7),
    }
    await db_session.execute(insert(tenants).values(**values))
    await db_session.commit()
    return values


@pytest.fixture
def tenant_headers(tenant) -> dict:
    return {"X-Tenant-ID": str(tenant["id"])}


@pytest_asyncio.fixture
async def doctor(db_session: AsyncSession, tenant) -> dict[str, Any]:
    values = {
        "id": uuid4(),
        "tenant_id": tenant["id"],
        "first_name": "Maria",
        "last_name": "Lopez",
        "email": "maria.lopez@sunrise.test",
        "status": "active",
    }
    await db_session.execute(insert(doctors).values(**values))
    await db_session.commit()
    return values


@pytest.fixture
def make_patient(db_session: AsyncSession) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Insert a patient."""

    async def _make(tenant_id: UUID | None, **overrides: Any) -> dict[str, Any]:
        values = {
            "id": uuid4(),
            "tenant_id": tenant_id,
            "first_name": "Sam",
            "last_name": "Carter",
            "email": "sam.carter@example.com",
            "phone": "555-010-2030",
            "user_id": uuid4(),
            **overrides,
        }
        await db_session.execute(insert(patients).values(**values))
        await db_session.commit()
        return values

    return _make


@pytest_asyncio.fixture
async def patient(make_patient, tenant) -> dict[str, Any]:
    return await make_patient(tenant["id"])


@pytest_asyncio.fixture
async def admin_user(db_session: AsyncSession, tenant) -> dict[str, Any]:
    values = {
        "id": uuid4(),
        "tenant_id": tenant["id"],
        "email": "admin@sunrise.test",
        "phone": "+15550000001",
        "full_name": "Alex Admin",
        "role": "admin",
        "is_active": True,
    }
    await db_session.execute(insert(users).values(**values))
    await db_session.commit()
    return values


@pytest.fixture
def make_appointment(db_session: AsyncSession) -> Callable[..., Awaitable[dict[str, Any]]]:
    """Insert an appointment row directly."""

    async def _make(
        tenant_id: UUID | None,
        patient_id: UUID,
        appointment_date: date,
        **overrides: Any,
    ) -> dict[str, Any]:
        now = utcnow()
        values = {
            "id": uuid4(),
            "tenant_id": tenant_id,
            "patient_id": patient_id,
            "appointment_date": appointment_date,
            "appointment_time": "10:30",
            "duration": 30,
            "status": "scheduled",
            "created_at": now,
            "updated_at": now,
            **overrides,
        }
        await db_session.execute(insert(appointments).values(**values))
        await db_session.commit()
        return values

    return _make


@pytest.fixture
def make_series(db_session: AsyncSession) -> Callable[..., Awaitable[UUID]]:
    """Insert a recurring series."""

    async def _make(
        tenant_id: UUID | None,
        patient_id: UUID,
        frequency: str = "weekly",
        **overrides: Any,
    ) -> UUID:
        series_id = uuid4()
        values = {
            "id": series_id,
            "tenant_id": tenant_id,
            "patient_id": patient_id,
            "frequency": frequency,
            "start_date": date(2026, 1, 5),
            "appointment_time": "10:30",
            "duration": 30,
            **overrides,
        }
        await db_session.execute(insert(recurring_series).values(**values))
        await db_session.commit()
        return series_id

    return _make


@pytest.fixture
def set_automation(db_session: AsyncSession) -> Callable[..., Awaitable[None]]:
    """Store clinic settings with the given automation flags."""

    async def _set(tenant_id: UUID | None, clinic_name: str | None = None, **flags: bool) -> None:
        await db_session.execute(
            insert(clinic_settings).values(
                tenant_id=tenant_id,
                clinic_name=clinic_name,
                automation_settings=flags,
            )
        )
        await db_session.commit()

    return _set
