"""
Celery Application Entry Point

Broker configuration and the periodic schedule for background work.
"""

import logging
from datetime import timedelta
from typing import Any, Dict, List, Optional

from celery import Celery

from esign.config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


# Auto-discover tasks from these modules
TASK_MODULES: List[str] = [
    "esign.tasks.reminder_tasks",
]


def build_beat_schedule(settings: Settings) -> Dict[str, Any]:
    """Periodic task schedule for Celery Beat."""
    return {
        "process-signature-reminders": {
            "task": "esign.tasks.process_signature_reminders",
            "schedule": timedelta(seconds=settings.reminders.tick_interval_seconds),
            "options": {"queue": "default"},
        },
    }


def create_celery_app(settings: Optional[Settings] = None, name: str = "esign") -> Celery:
    """Create and configure the Celery application."""
    settings = settings or get_settings()

    app = Celery(name)
    app.conf.update(
        broker_url=settings.celery_broker_url,
        task_serializer="json",
        result_serializer="json",
        accept_content=["json"],
        timezone="UTC",
        enable_utc=True,
        task_acks_late=True,
        task_reject_on_worker_lost=True,
        task_default_queue="default",
        task_track_started=True,
        beat_schedule=build_beat_schedule(settings),
    )

    logger.info(f"Celery app '{name}' configured with broker: {settings.celery_broker_url}")
    return app


celery_app = create_celery_app()
celery_app.autodiscover_tasks(TASK_MODULES)
