"""Periodic reminders for unsigned recipients."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from esign.config.settings import Settings, get_settings
from esign.infrastructure.storage.document_store import DocumentStore
from esign.models.signature import (
    OPEN_STATUSES,
    AuditEventType,
    AuthMethod,
    SignatureRequest,
)
from esign.services.audit_trail_service import AuditTrailService
from esign.services.context import SYSTEM_CONTEXT
from esign.services.notifications.base import (
    NotificationSender,
    NotificationTemplate,
    TemplateContext,
)
from esign.services.token_service import TokenService
from esign.utils.errors import AccessError

logger = logging.getLogger(__name__)


@dataclass
class ReminderResult:
    """Counts from one reminder run."""
    processed: int = 0
    reminders_sent: int = 0
    skipped: int = 0
    errors: int = 0
    error_details: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "processed": self.processed,
            "reminders_sent": self.reminders_sent,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class ReminderService:
    """
    Sends reminders for open requests whose next reminder is due.

    ``tick`` only depends on the ``now`` it is given, so it can be driven
    by any scheduler.
    """

    def __init__(
        self,
        session: Session,
        document_store: DocumentStore,
        notifier: NotificationSender,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.notifier = notifier
        self.settings = settings or get_settings()
        self.audit = AuditTrailService(session, document_store, self.settings.audit_secret_key)
        self.tokens = TokenService(session, self.audit, self.settings.tokens)

    def due_requests(self, now: datetime) -> List[SignatureRequest]:
        return list(
            self.session.execute(
                select(SignatureRequest)
                .where(
                    SignatureRequest.status.in_(sorted(OPEN_STATUSES)),
                    SignatureRequest.reminder_enabled.is_(True),
                    SignatureRequest.next_reminder_date.is_not(None),
                    SignatureRequest.next_reminder_date <= now,
                    SignatureRequest.reminders_sent_count < self.settings.reminders.max_reminders,
                )
                .order_by(SignatureRequest.next_reminder_date, SignatureRequest.id)
            ).scalars()
        )

    def tick(self, now: datetime) -> ReminderResult:
        """Process every due request. Each request is committed on its own."""
        result = ReminderResult()
        requests = self.due_requests(now)
        logger.info(f"Found {len(requests)} signature requests due for reminders")

        for request in requests:
            result.processed += 1
            try:
                self._process(request, now, result)
                self.session.commit()
            except Exception as e:
                self.session.rollback()
                logger.exception(f"Error processing reminders for request {request.id}")
                result.errors += 1
                result.error_details.append(f"{request.id}: {e}")

        logger.info(
            f"Reminder run complete: processed={result.processed} "
            f"sent={result.reminders_sent} skipped={result.skipped} errors={result.errors}"
        )
        return result

    def _process(self, request: SignatureRequest, now: datetime, result: ReminderResult) -> None:
        interval = timedelta(days=request.reminder_interval_days)

        if request.last_reminder_sent_at and request.last_reminder_sent_at + interval > now:
            logger.debug(f"Request {request.id} was reminded recently, skipping")
            result.skipped += 1
            return

        unsigned = [r for r in request.recipients if r.signed_at is None]
        if not unsigned:
            logger.info(f"Request {request.id} has no unsigned recipients, skipping")
            result.skipped += 1
            return

        reminder_number = request.reminders_sent_count + 1
        days_since_sent = max((now - request.created_at).days, 0)

        for recipient in unsigned:
            if recipient.token_expires_at is not None and recipient.token_expires_at <= now:
                logger.info(f"Recipient {recipient.id} link expired, no reminder sent")
                continue
            try:
                link = self.tokens.signing_link(recipient)
            except AccessError:
                logger.warning(f"Recipient {recipient.id} has no usable link, no reminder sent")
                result.errors += 1
                continue

            delivery = self.notifier.send(
                recipient.email,
                TemplateContext(
                    template=NotificationTemplate.SIGNATURE_REMINDER,
                    recipient_name=recipient.name,
                    document_name=request.friendly_name,
                    firm_name=self.settings.notifications.firm_name,
                    signing_link=link,
                    reminder_number=reminder_number,
                    days_since_sent=days_since_sent,
                ),
            )
            if not delivery.success:
                logger.error(
                    f"Reminder to {recipient.email} for request {request.id} failed: "
                    f"{delivery.error_message}"
                )
                result.errors += 1
                continue

            recipient.reminder_sent_at = now
            self.audit.append(
                recipient,
                AuditEventType.REMINDER_SENT,
                context=SYSTEM_CONTEXT,
                details={
                    "reminder_number": reminder_number,
                    "days_since_sent": days_since_sent,
                },
                auth_method=AuthMethod.SYSTEM,
                metadata={
                    "max_reminders": self.settings.reminders.max_reminders,
                    "reminder_interval_days": request.reminder_interval_days,
                },
                now=now,
            )
            result.reminders_sent += 1
            logger.info(
                f"Sent reminder #{reminder_number} to {recipient.email} for request {request.id}"
            )

        request.reminders_sent_count = reminder_number
        request.last_reminder_sent_at = now
        request.updated_at = now

        if reminder_number >= self.settings.reminders.max_reminders:
            request.reminder_enabled = False
            request.next_reminder_date = None
            logger.info(
                f"Request {request.id} reached max reminders "
                f"({self.settings.reminders.max_reminders}), reminders disabled"
            )
        else:
            request.next_reminder_date = now + interval
