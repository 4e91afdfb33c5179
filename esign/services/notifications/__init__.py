"""Notification senders for the signing workflow."""

from typing import Optional

from esign.config.settings import NotificationSettings, get_settings
from esign.services.notifications.base import (
    DeliveryResult,
    NotificationAttachment,
    NotificationSender,
    NotificationTemplate,
    SenderType,
    TemplateContext,
)
from esign.services.notifications.mock import MockNotificationSender
from esign.services.notifications.sendgrid import SendGridNotificationSender

_sender: Optional[NotificationSender] = None


def create_notification_sender(settings: NotificationSettings) -> NotificationSender:
    """Build the sender selected by ``settings.provider``."""
    provider = SenderType(settings.provider.lower())
    if provider == SenderType.SENDGRID:
        return SendGridNotificationSender(
            api_key=settings.sendgrid_api_key or "",
            from_email=settings.from_email,
            from_name=settings.from_name,
        )
    return MockNotificationSender()


def get_notification_sender() -> NotificationSender:
    """Get or create the configured sender singleton."""
    global _sender
    if _sender is None:
        _sender = create_notification_sender(get_settings().notifications)
    return _sender


__all__ = [
    "DeliveryResult",
    "MockNotificationSender",
    "NotificationAttachment",
    "NotificationSender",
    "NotificationTemplate",
    "SendGridNotificationSender",
    "SenderType",
    "TemplateContext",
    "create_notification_sender",
    "get_notification_sender",
]
