"""Notification dispatch schemas."""

from enum import Enum
from typing import Literal
from uuid import UUID

from pydantic import BaseModel, Field


class NotificationChannel(str, Enum):
    """Delivery channels, in dispatch order."""

    SMS = "sms"
    EMAIL = "email"
    IN_APP = "in_app"


NotificationType = Literal[
    "appointment",
    "visit",
    "prescription",
    "lab_result",
    "invoice",
    "reminder",
    "system",
    "broadcast",
]

NotificationPriority = Literal["low", "normal", "high", "urgent"]


class NotificationRecipient(BaseModel):
    """Addresses of a single recipient. Missing addresses skip their channel."""

    user_id: UUID | None = None
    email: str | None = None
    phone: str | None = None


class InAppContent(BaseModel):
    """Content of an in-app notification."""

    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1)
    notification_type: NotificationType = "system"
    priority: NotificationPriority = "normal"
    action_url: str | None = None
    related_entity_type: str | None = None
    related_entity_id: UUID | None = None


class NotificationEnvelope(BaseModel):
    """One message addressed to one recipient across several channels."""

    recipient: NotificationRecipient
    tenant_id: UUID | None = None
    sms_message: str | None = None
    email_subject: str | None = None
    email_html: str | None = None
    in_app: InAppContent | None = None
    channels: set[NotificationChannel] = Field(
        default_factory=lambda: set(NotificationChannel),
        description="Channels the dispatcher may attempt",
    )


class TransportResult(BaseModel):
    """Outcome of a single transport call."""

    success: bool
    message_id: str | None = None
    error: str | None = None


class DispatchResult(BaseModel):
    """Per-channel outcome of a dispatch."""

    sms_sent: bool = False
    email_sent: bool = False
    in_app_created: bool = False
