"""Best-effort multi-channel notification dispatch."""

import asyncio
import re
from collections.abc import Awaitable

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.metrics import NOTIFICATION_CHANNEL_FAILURES
from app.schemas.notifications import (
    DispatchResult,
    NotificationChannel,
    NotificationEnvelope,
    TransportResult,
)
from app.services.transports import EmailTransport, InAppTransport, SmsTransport

logger = structlog.get_logger(__name__)

_NON_DIGITS = re.compile(r"\D")


def normalize_phone(phone: str) -> str:
    """
    Normalise a phone number for SMS delivery.

    Numbers that already carry a country code are kept; anything else is
    assumed to be North American and gets a +1 prefix.

    Args:
        phone: Raw phone number

    Returns:
        E.164 style number
    """
    phone = phone.strip()
    if phone.startswith("+"):
        return phone
    return f"+1{_NON_DIGITS.sub('', phone)}"


class NotificationDispatcher:
    """
    Sends one envelope over SMS, email and in-app, in that order.

    Channels are independent: a failing or slow channel is logged and counted
    but never stops the remaining channels, and dispatch never raises.
    """

    def __init__(
        self,
        db: AsyncSession,
        email_transport: EmailTransport | None = None,
        sms_transport: SmsTransport | None = None,
        in_app_transport: InAppTransport | None = None,
        timeout: float | None = None,
    ):
        """Initialize dispatcher with a session and optional transport overrides."""
        self.db = db
        self.email_transport = email_transport or EmailTransport()
        self.sms_transport = sms_transport or SmsTransport()
        self.in_app_transport = in_app_transport or InAppTransport(db)
        self.timeout = timeout if timeout is not None else settings.notification_timeout_seconds

    async def dispatch(self, envelope: NotificationEnvelope) -> DispatchResult:
        """
        Deliver an envelope on every applicable channel.

        Args:
            envelope: Recipient, content and channel hints

        Returns:
            Which channels succeeded
        """
        recipient = envelope.recipient
        result = DispatchResult()

        if (
            NotificationChannel.SMS in envelope.channels
            and recipient.phone
            and envelope.sms_message
        ):
            result.sms_sent = await self._attempt(
                NotificationChannel.SMS,
                self.sms_transport.send(normalize_phone(recipient.phone), envelope.sms_message),
            )

        if (
            NotificationChannel.EMAIL in envelope.channels
            and recipient.email
            and envelope.email_subject
            and envelope.email_html
        ):
            result.email_sent = await self._attempt(
                NotificationChannel.EMAIL,
                self.email_transport.send(
                    recipient.email, envelope.email_subject, envelope.email_html
                ),
            )

        if (
            NotificationChannel.IN_APP in envelope.channels
            and recipient.user_id
            and envelope.in_app is not None
        ):
            result.in_app_created = await self._attempt(
                NotificationChannel.IN_APP,
                self.in_app_transport.create(recipient.user_id, envelope.tenant_id, envelope.in_app),
            )

        logger.info(
            "notification_dispatched",
            user_id=str(recipient.user_id) if recipient.user_id else None,
            tenant_id=str(envelope.tenant_id) if envelope.tenant_id else None,
            sms_sent=result.sms_sent,
            email_sent=result.email_sent,
            in_app_created=result.in_app_created,
        )
        return result

    async def _attempt(
        self,
        channel: NotificationChannel,
        call: Awaitable[TransportResult],
    ) -> bool:
        """Run one transport call, converting every failure into False."""
        try:
            outcome = await asyncio.wait_for(call, timeout=self.timeout)
        except TimeoutError:
            error = f"timed out after {self.timeout}s"
        except Exception as e:
            error = str(e) or e.__class__.__name__
        else:
            if outcome.success:
                return True
            error = outcome.error or "transport reported failure"

        if channel == NotificationChannel.IN_APP:
            await self._reset_session()

        NOTIFICATION_CHANNEL_FAILURES.labels(channel=channel.value).inc()
        logger.warning("notification_channel_failed", channel=channel.value, error=error)
        return False

    async def _reset_session(self) -> None:
        try:
            await self.db.rollback()
        except Exception as e:
            logger.warning("notification_session_rollback_failed", error=str(e))
