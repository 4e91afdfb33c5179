"""Tests for notification rendering and senders."""

import base64
import json

import httpx
import pytest

from esign.config.settings import NotificationSettings
from esign.services.notifications import (
    MockNotificationSender,
    NotificationAttachment,
    NotificationTemplate,
    SendGridNotificationSender,
    SenderType,
    TemplateContext,
    create_notification_sender,
)
from esign.services.notifications.templates import TemplateError, render


def request_context(**overrides):
    values = dict(
        template=NotificationTemplate.SIGNATURE_REQUEST,
        recipient_name="Alex <Client>",
        document_name="Engagement Letter",
        firm_name="Example & Partners LLP",
        signing_link="https://sign.example.com/sign?token=abc",
    )
    values.update(overrides)
    return TemplateContext(**values)


class TestTemplates:
    """Test cases for rendering."""

    def test_request_template(self):
        rendered = render(request_context(custom_message="Please sign by Friday"))

        assert rendered.subject == "Please sign: Engagement Letter"
        assert "Alex &lt;Client&gt;" in rendered.html_content
        assert "Example &amp; Partners LLP" in rendered.html_content
        assert "Please sign by Friday" in rendered.text_content
        assert "https://sign.example.com/sign?token=abc" in rendered.text_content

    def test_custom_subject(self):
        rendered = render(request_context(subject="Your engagement letter"))

        assert rendered.subject == "Your engagement letter"

    def test_reminder_template(self):
        rendered = render(
            request_context(
                template=NotificationTemplate.SIGNATURE_REMINDER,
                reminder_number=2,
                days_since_sent=6,
            )
        )

        assert rendered.subject == "Reminder: Please sign Engagement Letter"
        assert rendered.text_content.startswith("Reminder #2")
        assert "sent 6 day(s) ago" in rendered.text_content

    def test_completed_template_needs_no_link(self):
        rendered = render(
            request_context(template=NotificationTemplate.SIGNATURE_COMPLETED, signing_link=None)
        )

        assert rendered.subject == "Signed Document: Engagement Letter"

    def test_link_required_for_request(self):
        with pytest.raises(TemplateError):
            render(request_context(signing_link=None))


class TestMockSender:
    def test_records_sent_notifications(self):
        sender = MockNotificationSender()

        result = sender.send("alex@example.com", request_context())

        assert result.success is True
        assert result.sender == SenderType.MOCK
        assert result.message_id.startswith("mock-")
        assert len(sender.sent_to("alex@example.com")) == 1

    def test_simulated_failure(self):
        sender = MockNotificationSender(fail_for={"alex@example.com"})

        result = sender.send("alex@example.com", request_context())

        assert result.success is False
        assert result.error_code == "simulated"
        assert sender.sent == []


class TestSendGridSender:
    """Test cases for SendGridNotificationSender."""

    def make_sender(self, handler):
        client = httpx.Client(transport=httpx.MockTransport(handler))
        return SendGridNotificationSender(
            api_key="SG.test",
            from_email="no-reply@example.com",
            from_name="Document Signing",
            client=client,
        )

    def test_successful_send(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["auth"] = request.headers["authorization"]
            captured["payload"] = json.loads(request.content)
            return httpx.Response(202, headers={"X-Message-Id": "sg-123"})

        result = self.make_sender(handler).send("alex@example.com", request_context())

        assert result.success is True
        assert result.message_id == "sg-123"
        assert captured["url"] == "https://api.sendgrid.com/v3/mail/send"
        assert captured["auth"] == "Bearer SG.test"
        payload = captured["payload"]
        assert payload["personalizations"][0]["to"][0]["email"] == "alex@example.com"
        assert payload["subject"] == "Please sign: Engagement Letter"
        assert payload["custom_args"] == {"template": "signature_request"}
        assert "attachments" not in payload

    def test_attachments_are_base64(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["payload"] = json.loads(request.content)
            return httpx.Response(202)

        context = request_context(
            template=NotificationTemplate.SIGNATURE_COMPLETED,
            attachments=[NotificationAttachment("contract_signed.pdf", b"%PDF-1.4 signed")],
        )
        self.make_sender(handler).send("alex@example.com", context)

        attachment = captured["payload"]["attachments"][0]
        assert attachment["filename"] == "contract_signed.pdf"
        assert attachment["type"] == "application/pdf"
        assert base64.b64decode(attachment["content"]) == b"%PDF-1.4 signed"

    def test_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"errors": [{"message": "Invalid from address"}]})

        result = self.make_sender(handler).send("alex@example.com", request_context())

        assert result.success is False
        assert result.error_code == "400"
        assert result.error_message == "Invalid from address"

    def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused")

        result = self.make_sender(handler).send("alex@example.com", request_context())

        assert result.success is False
        assert "connection refused" in result.error_message

    def test_template_error_not_sent(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(202)

        result = self.make_sender(handler).send("alex@example.com", request_context(signing_link=None))

        assert result.error_code == "template"
        assert calls == []

    def test_api_key_required(self):
        with pytest.raises(ValueError):
            SendGridNotificationSender(api_key="", from_email="no-reply@example.com")


class TestSenderFactory:
    def test_mock_by_default(self):
        assert isinstance(create_notification_sender(NotificationSettings()), MockNotificationSender)

    def test_sendgrid(self):
        sender = create_notification_sender(
            NotificationSettings(provider="SendGrid", sendgrid_api_key="SG.key")
        )

        assert isinstance(sender, SendGridNotificationSender)
        assert sender.from_email == "no-reply@example.com"

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            create_notification_sender(NotificationSettings(provider="pigeon"))
