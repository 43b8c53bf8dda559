"""Delivery transports used by the notification dispatcher.

Each transport returns a TransportResult instead of raising for delivery
problems. A transport without credentials logs the message and reports
success so that development setups run without external accounts.
"""

import asyncio
from datetime import UTC, datetime
from typing import Any
from uuid import UUID

import httpx
import resend
import structlog
from firebase_admin import messaging
from sqlalchemy import insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.firebase import is_firebase_initialized
from app.models.notifications import notifications
from app.models.push_tokens import push_tokens
from app.schemas.notifications import InAppContent, TransportResult

logger = structlog.get_logger(__name__)


class EmailTransport:
    """Email delivery through the Resend API."""

    def __init__(self, api_key: str | None = None, from_address: str | None = None):
        """Initialize with optional overrides of the configured credentials."""
        self.api_key = api_key if api_key is not None else settings.resend_api_key
        self.from_address = from_address or settings.email_from_address

    async def send(self, to: str, subject: str, html: str) -> TransportResult:
        """
        Send one HTML email.

        Args:
            to: Recipient address
            subject: Subject line
            html: HTML body

        Returns:
            Transport result with the Resend message id on success
        """
        if not self.api_key:
            logger.info("email_transport_not_configured", to=to, subject=subject)
            return TransportResult(success=True)

        resend.api_key = self.api_key
        payload: dict[str, Any] = {
            "from": self.from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        try:
            # The Resend SDK is synchronous
            response = await asyncio.to_thread(resend.Emails.send, payload)
        except Exception as e:
            logger.error("email_send_failed", to=to, subject=subject, error=str(e))
            return TransportResult(success=False, error=str(e))

        message_id = response.get("id") if isinstance(response, dict) else None
        logger.info("email_sent", to=to, subject=subject, message_id=message_id)
        return TransportResult(success=True, message_id=message_id)


class SmsTransport:
    """SMS delivery through the Twilio REST API."""

    def __init__(
        self,
        account_sid: str | None = None,
        auth_token: str | None = None,
        from_number: str | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize with optional overrides of the configured credentials."""
        self.account_sid = account_sid if account_sid is not None else settings.twilio_account_sid
        self.auth_token = auth_token if auth_token is not None else settings.twilio_auth_token
        self.from_number = from_number if from_number is not None else settings.twilio_phone_number
        self.client = client

    @property
    def configured(self) -> bool:
        """Whether Twilio credentials are present."""
        return bool(self.account_sid and self.auth_token and self.from_number)

    async def send(self, to: str, message: str) -> TransportResult:
        """
        Send one SMS.

        Args:
            to: Recipient phone number in E.164 format
            message: Message body

        Returns:
            Transport result with the Twilio message SID on success
        """
        if not self.configured:
            logger.info("sms_transport_not_configured", to=to)
            return TransportResult(success=True)

        url = f"{settings.twilio_api_base_url}/Accounts/{self.account_sid}/Messages.json"
        data = {"To": to, "From": self.from_number, "Body": message}

        try:
            if self.client is not None:
                response = await self._post(self.client, url, data)
            else:
                async with httpx.AsyncClient() as client:
                    response = await self._post(client, url, data)
        except httpx.HTTPError as e:
            logger.error("sms_send_failed", to=to, error=str(e))
            return TransportResult(success=False, error=str(e))

        if response.status_code in (200, 201):
            message_sid = response.json().get("sid")
            logger.info("sms_sent", to=to, message_sid=message_sid)
            return TransportResult(success=True, message_id=message_sid)

        try:
            error_data = response.json()
        except ValueError:
            error_data = {}
        error_message = error_data.get("message") or f"HTTP {response.status_code}"
        logger.error(
            "sms_send_rejected",
            to=to,
            status_code=response.status_code,
            error_code=error_data.get("code"),
            error=error_message,
        )
        return TransportResult(success=False, error=error_message)

    async def _post(self, client: httpx.AsyncClient, url: str, data: dict[str, str]) -> httpx.Response:
        return await client.post(
            url,
            auth=(self.account_sid or "", self.auth_token or ""),
            data=data,
            timeout=10.0,
        )


class InAppTransport:
    """In-app notification store with best-effort push to the user's devices."""

    def __init__(self, db: AsyncSession):
        """Initialize with a database session."""
        self.db = db

    async def create(
        self,
        user_id: UUID,
        tenant_id: UUID | None,
        content: InAppContent,
    ) -> TransportResult:
        """
        Store an in-app notification and push it to active devices.

        Args:
            user_id: Receiving user or patient account
            tenant_id: Tenant scope
            content: Notification content

        Returns:
            Transport result carrying the notification id
        """
        data = {"action_url": content.action_url} if content.action_url else None
        result = await self.db.execute(
            insert(notifications).values(
                user_id=user_id,
                tenant_id=tenant_id,
                notification_type=content.notification_type,
                priority=content.priority,
                title=content.title,
                message=content.message,
                action_url=content.action_url,
                related_entity_type=content.related_entity_type,
                related_entity_id=content.related_entity_id,
                data=data,
            )
        )
        notification_id = result.inserted_primary_key[0]
        await self.db.commit()

        logger.info(
            "in_app_notification_created",
            notification_id=str(notification_id),
            user_id=str(user_id),
            notification_type=content.notification_type,
        )

        await self._push(user_id, content, notification_id)
        return TransportResult(success=True, message_id=str(notification_id))

    async def _push(self, user_id: UUID, content: InAppContent, notification_id: UUID) -> None:
        """Push to FCM. Failures are logged and never affect the stored notification."""
        if not settings.push_notifications_enabled or not is_firebase_initialized():
            return

        try:
            result = await self.db.execute(
                select(push_tokens.c.fcm_token).where(
                    push_tokens.c.user_id == user_id,
                    push_tokens.c.is_active == True,  # noqa: E712
                )
            )
            tokens = list(result.scalars())
            if not tokens:
                logger.debug("no_active_tokens_for_user", user_id=str(user_id))
                return

            success_count, failure_count = await send_push_notification(
                tokens=tokens,
                title=content.title,
                body=content.message,
                data={
                    "notification_id": str(notification_id),
                    "type": content.notification_type,
                    "action_url": content.action_url or "",
                },
            )

            if success_count:
                await self.db.execute(
                    update(push_tokens)
                    .where(push_tokens.c.fcm_token.in_(tokens))
                    .values(last_used_at=datetime.now(UTC))
                )
                await self.db.commit()
        except Exception as e:
            await self.db.rollback()
            logger.warning("push_delivery_failed", user_id=str(user_id), error=str(e))


async def send_push_notification(
    tokens: list[str],
    title: str,
    body: str,
    data: dict[str, str] | None = None,
) -> tuple[int, int]:
    """
    Send push notification to multiple devices.

    Args:
        tokens: List of FCM tokens
        title: Notification title
        body: Notification body
        data: Optional data payload

    Returns:
        Tuple of (success_count, failure_count)
    """
    if not tokens:
        return 0, 0

    message = messaging.MulticastMessage(
        notification=messaging.Notification(title=title, body=body),
        data=data or {},
        tokens=tokens,
        apns=messaging.APNSConfig(
            payload=messaging.APNSPayload(aps=messaging.Aps(sound="default", badge=1)),
        ),
        android=messaging.AndroidConfig(
            priority="high",
            notification=messaging.AndroidNotification(sound="default", priority="high"),
        ),
    )

    response = await asyncio.to_thread(messaging.send_each_for_multicast, message)

    logger.info(
        "push_notification_sent",
        title=title,
        success_count=response.success_count,
        failure_count=response.failure_count,
    )
    return response.success_count, response.failure_count
