"""Base notification sender interface."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from esign.models.base import utcnow

logger = logging.getLogger(__name__)


class NotificationTemplate(str, Enum):
    """Notifications the signing workflow sends."""
    SIGNATURE_REQUEST = "signature_request"
    SIGNATURE_REMINDER = "signature_reminder"
    SIGNATURE_COMPLETED = "signature_completed"


class SenderType(str, Enum):
    """Supported sender implementations."""
    SENDGRID = "sendgrid"
    MOCK = "mock"


@dataclass
class NotificationAttachment:
    """File attached to a notification."""
    filename: str
    content: bytes
    content_type: str = "application/pdf"


@dataclass
class TemplateContext:
    """Variables for rendering one notification."""
    template: NotificationTemplate
    recipient_name: str
    document_name: str
    firm_name: str
    signing_link: Optional[str] = None
    custom_message: Optional[str] = None
    subject: Optional[str] = None
    reminder_number: Optional[int] = None
    days_since_sent: Optional[int] = None
    attachments: List[NotificationAttachment] = field(default_factory=list)
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class DeliveryResult:
    """Result of a delivery attempt."""
    success: bool
    message_id: Optional[str] = None
    sender: Optional[SenderType] = None
    error_code: Optional[str] = None
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=utcnow)

    @classmethod
    def success_result(cls, message_id: str, sender: SenderType) -> "DeliveryResult":
        return cls(success=True, message_id=message_id, sender=sender)

    @classmethod
    def failure_result(
        cls,
        error_message: str,
        sender: Optional[SenderType] = None,
        error_code: Optional[str] = None,
    ) -> "DeliveryResult":
        return cls(
            success=False,
            sender=sender,
            error_code=error_code,
            error_message=error_message,
        )


class NotificationSender(ABC):
    """
    Abstract base class for notification senders.

    Implementations report transport failures through the returned
    :class:`DeliveryResult` instead of raising.
    """

    sender_type: SenderType

    @abstractmethod
    def send(self, recipient_email: str, context: TemplateContext) -> DeliveryResult:
        """
        Render and deliver one notification.

        Args:
            recipient_email: Destination address
            context: Template name and variables

        Returns:
            DeliveryResult with success/failure information
        """
        pass
