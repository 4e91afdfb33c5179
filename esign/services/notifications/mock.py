"""In-process notification sender for development and tests."""

import logging
import uuid
from dataclasses import dataclass
from typing import List, Optional, Set

from esign.services.notifications.base import (
    DeliveryResult,
    NotificationSender,
    SenderType,
    TemplateContext,
)
from esign.services.notifications.templates import RenderedNotification, render

logger = logging.getLogger(__name__)


@dataclass
class SentNotification:
    """A notification captured by :class:`MockNotificationSender`."""
    message_id: str
    recipient_email: str
    context: TemplateContext
    rendered: RenderedNotification


class MockNotificationSender(NotificationSender):
    """Records every notification instead of delivering it."""

    sender_type = SenderType.MOCK

    def __init__(self, fail_for: Optional[Set[str]] = None):
        self.sent: List[SentNotification] = []
        self.fail_for: Set[str] = set(fail_for or ())

    def send(self, recipient_email: str, context: TemplateContext) -> DeliveryResult:
        if recipient_email in self.fail_for:
            logger.warning(f"Mock sender configured to fail for {recipient_email}")
            return DeliveryResult.failure_result(
                error_message=f"Simulated delivery failure for {recipient_email}",
                sender=self.sender_type,
                error_code="simulated",
            )

        rendered = render(context)
        message_id = f"mock-{uuid.uuid4().hex[:12]}"
        self.sent.append(
            SentNotification(
                message_id=message_id,
                recipient_email=recipient_email,
                context=context,
                rendered=rendered,
            )
        )
        logger.info(f"[MOCK] {context.template.value} to {recipient_email}: {rendered.subject}")
        return DeliveryResult.success_result(message_id, self.sender_type)

    def sent_to(self, recipient_email: str) -> List[SentNotification]:
        return [n for n in self.sent if n.recipient_email == recipient_email]

    def clear(self) -> None:
        self.sent.clear()
