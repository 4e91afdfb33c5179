"""
Signature Reminder Tasks

Out-of-process timer for the reminder scheduler.
"""

import logging
from datetime import datetime
from typing import Dict, Optional

from sqlalchemy.orm import Session

from esign.config.settings import Settings
from esign.database.database import get_db_context
from esign.infrastructure.storage.document_store import DocumentStore, get_document_store
from esign.models.base import utcnow
from esign.services.notifications import NotificationSender, get_notification_sender
from esign.services.reminder_service import ReminderService
from esign.tasks.celery_app import celery_app

logger = logging.getLogger(__name__)


def run_reminder_tick(
    session: Session,
    document_store: DocumentStore,
    notifier: NotificationSender,
    now: Optional[datetime] = None,
    settings: Optional[Settings] = None,
) -> Dict[str, int]:
    """Run one reminder pass and return its counts."""
    result = ReminderService(session, document_store, notifier, settings).tick(now or utcnow())
    return result.to_dict()


@celery_app.task(
    name="esign.tasks.process_signature_reminders",
    bind=True,
    max_retries=3,
    default_retry_delay=300,
)
def process_signature_reminders(self) -> Dict[str, int]:
    """Send due signature reminders."""
    logger.info("Starting signature reminder processing")
    try:
        with get_db_context() as session:
            return run_reminder_tick(session, get_document_store(), get_notification_sender())
    except Exception as exc:
        logger.exception("Signature reminder processing failed")
        raise self.retry(exc=exc)
