"""SendGrid notification sender implementation."""

import base64
import logging
from typing import Any, Dict, Optional

import httpx

from esign.services.notifications.base import (
    DeliveryResult,
    NotificationSender,
    SenderType,
    TemplateContext,
)
from esign.services.notifications.templates import TemplateError, render

logger = logging.getLogger(__name__)


class SendGridNotificationSender(NotificationSender):
    """Delivers notifications through the SendGrid v3 mail API."""

    sender_type = SenderType.SENDGRID
    API_BASE_URL = "https://api.sendgrid.com/v3"

    def __init__(
        self,
        api_key: str,
        from_email: str,
        from_name: str = "",
        timeout: float = 30.0,
        client: Optional[httpx.Client] = None,
    ):
        if not api_key:
            raise ValueError("SendGrid API key is required")
        self.api_key = api_key
        self.from_email = from_email
        self.from_name = from_name
        self.timeout = timeout
        self._client = client

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, recipient_email: str, context: TemplateContext) -> Dict[str, Any]:
        rendered = render(context)

        payload: Dict[str, Any] = {
            "personalizations": [
                {"to": [{"email": recipient_email, "name": context.recipient_name}]}
            ],
            "from": {"email": self.from_email, "name": self.from_name},
            "subject": rendered.subject,
            "content": [
                {"type": "text/plain", "value": rendered.text_content},
                {"type": "text/html", "value": rendered.html_content},
            ],
            "custom_args": {"template": context.template.value},
        }

        if context.attachments:
            payload["attachments"] = [
                {
                    "content": base64.b64encode(a.content).decode("ascii"),
                    "filename": a.filename,
                    "type": a.content_type,
                    "disposition": "attachment",
                }
                for a in context.attachments
            ]

        return payload

    def send(self, recipient_email: str, context: TemplateContext) -> DeliveryResult:
        """Send a notification via SendGrid."""
        try:
            payload = self._build_payload(recipient_email, context)
        except TemplateError as e:
            return DeliveryResult.failure_result(
                error_message=str(e),
                sender=self.sender_type,
                error_code="template",
            )

        try:
            if self._client is not None:
                response = self._client.post(
                    f"{self.API_BASE_URL}/mail/send",
                    headers=self._get_headers(),
                    json=payload,
                    timeout=self.timeout,
                )
            else:
                with httpx.Client() as client:
                    response = client.post(
                        f"{self.API_BASE_URL}/mail/send",
                        headers=self._get_headers(),
                        json=payload,
                        timeout=self.timeout,
                    )
        except httpx.HTTPError as e:
            logger.error(f"SendGrid request to {recipient_email} failed: {e}")
            return DeliveryResult.failure_result(
                error_message=str(e),
                sender=self.sender_type,
            )

        if response.status_code in (200, 201, 202):
            # SendGrid returns message ID in X-Message-Id header
            message_id = response.headers.get("x-message-id", "")
            return DeliveryResult.success_result(message_id, self.sender_type)

        try:
            errors = response.json().get("errors", [])
        except ValueError:
            errors = []
        error_msg = errors[0].get("message") if errors else f"HTTP {response.status_code}"
        return DeliveryResult.failure_result(
            error_message=error_msg,
            sender=self.sender_type,
            error_code=str(response.status_code),
        )
