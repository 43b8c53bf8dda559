"""Tests for best-effort multi-channel notification dispatch."""

import asyncio
from uuid import uuid4

import httpx
import pytest
from sqlalchemy import func, select

from app.models.notifications import notifications
from app.schemas.notifications import (
    InAppContent,
    NotificationChannel,
    NotificationEnvelope,
    NotificationRecipient,
    TransportResult,
)
from app.services.notification_service import NotificationDispatcher, normalize_phone
from app.services.transports import EmailTransport, SmsTransport


def _envelope(**overrides) -> NotificationEnvelope:
    values = {
        "recipient": NotificationRecipient(
            user_id=uuid4(),
            email="sam.carter@example.com",
            phone="(555) 010-2030",
        ),
        "sms_message": "Your appointment is tomorrow at 10:30",
        "email_subject": "Appointment reminder",
        "email_html": "<p>See you tomorrow</p>",
        "in_app": InAppContent(title="Reminder", message="Appointment tomorrow"),
    }
    values.update(overrides)
    return NotificationEnvelope(**values)


async def _notification_count(db_session) -> int:
    result = await db_session.execute(select(func.count()).select_from(notifications))
    return result.scalar_one()


def test_normalize_phone() -> None:
    assert normalize_phone("(555) 010-2030") == "+15550102030"
    assert normalize_phone("+44 20 7946 0958") == "+44 20 7946 0958"


@pytest.mark.asyncio
async def test_failing_email_does_not_stop_other_channels(
    db_session, email_transport, sms_transport
) -> None:
    """Email failing while SMS succeeds still creates the in-app notification."""
    email_transport.raises = True
    dispatcher = NotificationDispatcher(
        db_session,
        email_transport=email_transport,
        sms_transport=sms_transport,
    )

    result = await dispatcher.dispatch(_envelope())

    assert result.sms_sent is True
    assert result.email_sent is False
    assert result.in_app_created is True
    assert sms_transport.sent[0]["to"] == "+15550102030"
    assert await _notification_count(db_session) == 1


@pytest.mark.asyncio
async def test_rejected_sms_is_reported(db_session, email_transport, sms_transport) -> None:
    sms_transport.fail = True
    dispatcher = NotificationDispatcher(
        db_session,
        email_transport=email_transport,
        sms_transport=sms_transport,
    )

    result = await dispatcher.dispatch(_envelope())

    assert result.sms_sent is False
    assert result.email_sent is True
    assert result.in_app_created is True


@pytest.mark.asyncio
async def test_slow_channel_times_out(db_session, email_transport) -> None:
    class SlowSms:
        async def send(self, to: str, message: str) -> TransportResult:
            await asyncio.sleep(5)
            return TransportResult(success=True)

    dispatcher = NotificationDispatcher(
        db_session,
        email_transport=email_transport,
        sms_transport=SlowSms(),
        timeout=0.05,
    )

    result = await dispatcher.dispatch(_envelope())

    assert result.sms_sent is False
    assert result.email_sent is True


@pytest.mark.asyncio
async def test_channels_without_contact_details_are_skipped(
    db_session, email_transport, sms_transport
) -> None:
    dispatcher = NotificationDispatcher(
        db_session, email_transport=email_transport, sms_transport=sms_transport
    )

    result = await dispatcher.dispatch(
        _envelope(recipient=NotificationRecipient(email="only-email@example.com"))
    )

    assert result.model_dump() == {"sms_sent": False, "email_sent": True, "in_app_created": False}
    assert sms_transport.sent == []
    assert await _notification_count(db_session) == 0


@pytest.mark.asyncio
async def test_channel_selection(db_session, email_transport, sms_transport) -> None:
    dispatcher = NotificationDispatcher(
        db_session, email_transport=email_transport, sms_transport=sms_transport
    )

    result = await dispatcher.dispatch(_envelope(channels={NotificationChannel.EMAIL}))

    assert result.email_sent is True
    assert result.sms_sent is False
    assert result.in_app_created is False


@pytest.mark.asyncio
async def test_unconfigured_transports_log_and_succeed() -> None:
    assert (await EmailTransport(api_key="").send("a@example.com", "s", "<p>x</p>")).success
    assert (await SmsTransport(account_sid="", auth_token="").send("+15550000000", "x")).success


@pytest.mark.asyncio
async def test_sms_transport_posts_to_twilio() -> None:
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(201, json={"sid": "SM123"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = SmsTransport("AC1", "token", "+15550001111", client=client)
        result = await transport.send("+15550102030", "hello")

    assert result.success is True
    assert result.message_id == "SM123"
    assert requests[0].url.path.endswith("/Accounts/AC1/Messages.json")
    assert b"Body=hello" in requests[0].content


@pytest.mark.asyncio
async def test_sms_transport_reports_twilio_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"})

    async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
        transport = SmsTransport("AC1", "token", "+15550001111", client=client)
        result = await transport.send("+1000", "hello")

    assert result.success is False
    assert result.error == "Invalid 'To' Phone Number"
