"""Tests for the reminder scheduler."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from esign.models import AuditEventType, SignatureAuditLog
from esign.services.notifications.base import NotificationTemplate
from esign.services.reminder_service import ReminderService
from esign.tasks.celery_app import build_beat_schedule
from esign.tasks.reminder_tasks import run_reminder_tick


@pytest.fixture
def reminders(session, store, notifier, settings):
    return ReminderService(session, store, notifier, settings)


def reminders_sent(notifier):
    return [n for n in notifier.sent if n.context.template == NotificationTemplate.SIGNATURE_REMINDER]


class TestReminderTick:
    """Test cases for ReminderService.tick."""

    def test_due_request_reminds_unsigned_recipients(self, reminders, notifier, make_request, now):
        request = make_request(recipients=2)

        result = reminders.tick(now + timedelta(days=3))

        assert result.processed == 1
        assert result.reminders_sent == 2
        assert {n.recipient_email for n in reminders_sent(notifier)} == {
            "signer0@example.com",
            "signer1@example.com",
        }
        assert request.reminders_sent_count == 1
        assert request.last_reminder_sent_at == now + timedelta(days=3)
        assert request.next_reminder_date == now + timedelta(days=6)

    def test_reminder_carries_number_and_link(self, reminders, notifier, make_request, now):
        make_request(recipients=1)

        reminders.tick(now + timedelta(days=3))

        sent = reminders_sent(notifier)[0]
        assert sent.context.reminder_number == 1
        assert sent.context.days_since_sent == 3
        assert sent.context.signing_link.startswith("https://sign.example.com/sign?token=")
        assert sent.rendered.subject == "Reminder: Please sign Engagement Letter"

    def test_signed_recipient_not_reminded(self, reminders, notifier, make_request, sign_all, now):
        request = make_request(recipients=2)
        sign_all(request, request.recipients[0])

        result = reminders.tick(now + timedelta(days=3))

        assert result.reminders_sent == 1
        assert [n.recipient_email for n in reminders_sent(notifier)] == ["signer1@example.com"]

    def test_not_due_yet(self, reminders, notifier, make_request, now):
        make_request(recipients=1)

        result = reminders.tick(now + timedelta(days=2, hours=23))

        assert result.processed == 0
        assert reminders_sent(notifier) == []

    def test_max_reminders_disables_schedule(self, reminders, notifier, make_request, now):
        request = make_request(recipients=1)

        reminders.tick(now + timedelta(days=3))
        reminders.tick(now + timedelta(days=6))
        third = reminders.tick(now + timedelta(days=9))

        assert request.reminders_sent_count == 2
        assert request.reminder_enabled is False
        assert request.next_reminder_date is None
        assert third.processed == 0
        assert len(reminders_sent(notifier)) == 2

    def test_terminal_requests_skipped(self, service, reminders, notifier, make_request, sign_all, staff_user, now):
        cancelled = make_request(recipients=1)
        service.cancel(cancelled.id, staff_user, now=now)
        completed = make_request(recipients=1)
        sign_all(completed, completed.recipients[0])

        result = reminders.tick(now + timedelta(days=3))

        assert result.processed == 0
        assert reminders_sent(notifier) == []

    def test_reminded_recently_is_skipped(self, session, reminders, notifier, make_request, now):
        request = make_request(recipients=1)
        request.last_reminder_sent_at = now + timedelta(days=2)
        session.commit()

        result = reminders.tick(now + timedelta(days=3))

        assert result.skipped == 1
        assert reminders_sent(notifier) == []

    def test_expired_link_not_reminded(self, session, reminders, notifier, make_request, now):
        request = make_request(recipients=2)
        request.recipients[0].token_expires_at = now + timedelta(days=1)
        session.commit()

        result = reminders.tick(now + timedelta(days=3))

        assert result.reminders_sent == 1
        assert [n.recipient_email for n in reminders_sent(notifier)] == ["signer1@example.com"]

    def test_failed_delivery_counts_as_error(self, reminders, notifier, make_request, now):
        make_request(recipients=2)
        notifier.fail_for.add("signer0@example.com")

        result = reminders.tick(now + timedelta(days=3))

        assert result.errors == 1
        assert result.reminders_sent == 1

    def test_reminder_is_audited(self, session, reminders, make_request, now):
        request = make_request(recipients=1)

        reminders.tick(now + timedelta(days=3))

        events = session.execute(
            select(SignatureAuditLog).where(
                SignatureAuditLog.event_type == AuditEventType.REMINDER_SENT.value
            )
        ).scalars().all()
        assert len(events) == 1
        assert events[0].signature_request_recipient_id == request.recipients[0].id
        assert events[0].event_details == {"reminder_number": 1, "days_since_sent": 3}
        assert events[0].auth_method == "system"


class TestReminderTask:
    def test_run_reminder_tick_returns_counts(self, session, store, notifier, settings, make_request, now):
        make_request(recipients=2)

        counts = run_reminder_tick(session, store, notifier, now=now + timedelta(days=3), settings=settings)

        assert counts == {"processed": 1, "reminders_sent": 2, "skipped": 0, "errors": 0}

    def test_beat_schedule_uses_tick_interval(self, settings):
        schedule = build_beat_schedule(settings)

        entry = schedule["process-signature-reminders"]
        assert entry["task"] == "esign.tasks.process_signature_reminders"
        assert entry["schedule"] == timedelta(seconds=settings.reminders.tick_interval_seconds)
