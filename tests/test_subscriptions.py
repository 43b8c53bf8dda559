"""Tests for the tenant trial lifecycle."""

from datetime import UTC, datetime, timedelta
from uuid import uuid4

import pytest
from sqlalchemy import update

from app.core.exceptions import NotFoundException
from app.models.tenants import tenants
from app.services.notification_service import NotificationDispatcher
from app.services.subscription_service import (
    SubscriptionService,
    days_remaining,
    process_expired_trials,
    send_trial_expiration_warnings,
)

NOW = datetime(2026, 5, 4, 9, 0, tzinfo=UTC)


async def _expire_at(db_session, tenant_id, expires_at) -> None:
    await db_session.execute(
        update(tenants).where(tenants.c.id == tenant_id).values(subscription_expires_at=expires_at)
    )
    await db_session.commit()


@pytest.fixture
def service(db_session, email_transport, sms_transport) -> SubscriptionService:
    dispatcher = NotificationDispatcher(
        db_session, email_transport=email_transport, sms_transport=sms_transport
    )
    return SubscriptionService(db_session, dispatcher)


def test_days_remaining_rounds_up() -> None:
    assert days_remaining(NOW + timedelta(days=2, hours=1), NOW) == 3
    assert days_remaining(NOW + timedelta(days=3), NOW) == 3
    assert days_remaining(NOW - timedelta(hours=1), NOW) == 0


@pytest.mark.asyncio
async def test_start_trial(db_session, tenant, service) -> None:
    await db_session.execute(
        update(tenants)
        .where(tenants.c.id == tenant["id"])
        .values(subscription_status="expired", trial_warning_threshold=1)
    )
    await db_session.commit()

    state = await service.start_trial(tenant["id"], now=NOW)

    assert state.plan == "trial"
    assert state.status == "active"
    assert state.expires_at == NOW + timedelta(days=7)
    assert state.trial_warning_threshold is None


@pytest.mark.asyncio
async def test_start_trial_unknown_tenant(service) -> None:
    with pytest.raises(NotFoundException):
        await service.start_trial(uuid4(), now=NOW)


@pytest.mark.asyncio
async def test_expired_trial_is_handled_once(
    db_session, session_factory, tenant, admin_user
) -> None:
    await _expire_at(db_session, tenant["id"], NOW - timedelta(seconds=1))

    first = await process_expired_trials(session_factory, now=NOW)
    second = await process_expired_trials(session_factory, now=NOW)

    assert first.success is True
    assert first.processed == 1
    assert first.expired == 1
    assert second.processed == 0
    assert second.expired == 0

    state = await SubscriptionService(db_session).get_state(tenant["id"])
    assert state is not None
    assert state.status == "expired"
    assert state.is_expired(NOW)


@pytest.mark.asyncio
async def test_expiration_notifies_admins(db_session, tenant, admin_user, service, email_transport) -> None:
    await _expire_at(db_session, tenant["id"], NOW - timedelta(minutes=5))

    result = await service.handle_trial_expiration(tenant["id"], now=NOW)

    assert result.success is True
    assert result.handled is True
    assert "Subscription status updated to expired" in result.actions
    assert "Trial limitations enforced" in result.actions
    assert [sent["to"] for sent in email_transport.sent] == ["admin@sunrise.test"]


@pytest.mark.asyncio
async def test_running_trial_is_left_alone(tenant, service) -> None:
    result = await service.handle_trial_expiration(tenant["id"], now=NOW)

    assert result.success is True
    assert result.handled is False


@pytest.mark.asyncio
async def test_disabled_expiration_keeps_tenant_active(
    db_session, tenant, set_automation, service
) -> None:
    await set_automation(tenant["id"], auto_trial_expiration=False)
    await _expire_at(db_session, tenant["id"], NOW - timedelta(days=1))

    result = await service.handle_trial_expiration(tenant["id"], now=NOW)

    assert result.success is True
    assert result.handled is False
    state = await service.get_state(tenant["id"])
    assert state is not None
    assert state.status == "active"


@pytest.mark.asyncio
async def test_unknown_tenant_expiration(service) -> None:
    result = await service.handle_trial_expiration(uuid4(), now=NOW)

    assert result.success is False
    assert result.error == "Tenant not found"


@pytest.mark.asyncio
async def test_warning_sent_once_per_threshold(
    db_session, tenant, admin_user, service, email_transport, sms_transport
) -> None:
    await _expire_at(db_session, tenant["id"], NOW + timedelta(days=2, hours=20))

    assert await service.send_trial_warning(tenant["id"], now=NOW) is True
    assert await service.send_trial_warning(tenant["id"], now=NOW + timedelta(hours=2)) is False
    assert await service.send_trial_warning(tenant["id"], now=NOW + timedelta(days=1)) is True

    assert len(email_transport.sent) == 2
    assert "3 Days" in email_transport.sent[0]["subject"]
    assert "2 Days" in email_transport.sent[1]["subject"]
    assert sms_transport.sent[0]["to"] == "+15550000001"

    state = await service.get_state(tenant["id"])
    assert state is not None
    assert state.trial_warning_threshold == 2


@pytest.mark.asyncio
async def test_warning_sweep_only_covers_window(
    db_session, session_factory, tenant, admin_user
) -> None:
    other_id = uuid4()
    await db_session.execute(
        tenants.insert().values(
            id=other_id,
            name="Far Away Clinic",
            subscription_plan="trial",
            subscription_status="active",
            subscription_expires_at=NOW + timedelta(days=6),
        )
    )
    await db_session.commit()
    await _expire_at(db_session, tenant["id"], NOW + timedelta(days=1))

    first = await send_trial_expiration_warnings(session_factory, now=NOW)
    second = await send_trial_expiration_warnings(session_factory, now=NOW)

    assert first.success is True
    assert first.warnings_sent == 1
    assert second.warnings_sent == 0
