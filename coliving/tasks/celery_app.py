"""Celery app and tasks for background audit writes and scheduled reminders."""

import logging
from typing import Optional

from celery import Celery
from celery.schedules import crontab

from coliving.core.config import settings
from coliving.core.exceptions import StorageError

logger = logging.getLogger("coliving")

celery_app = Celery(
    "coliving",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_soft_time_limit=600,  # 10 min soft limit
    task_time_limit=900,  # 15 min hard limit
    task_publish_retry_policy={"max_retries": 1, "interval_start": 0, "interval_step": 0.2},
    beat_schedule={
        "daily-payment-reminders": {
            "task": "process_payment_reminders",
            "schedule": crontab(hour=settings.REMINDER_CRON_HOUR, minute=0),
        },
    },
)


@celery_app.task(
    bind=True,
    name="write_audit_entry",
    max_retries=3,
    default_retry_delay=5,
    ignore_result=True,
)
def write_audit_entry(self, params: dict) -> None:
    """Persist one audit entry off the request path.

    Retries on store failures, then drops the entry with an error log.
    """
    from coliving.db.kv import kv_store
    from coliving.models.audit import AuditLogParams
    from coliving.services.audit_service import audit_service

    payload = AuditLogParams.model_validate(params)
    try:
        audit_service.write_entry(kv_store, payload)
    except StorageError as e:
        if self.request.retries >= self.max_retries:
            logger.error(
                "Dropping audit entry %s for %s after %s retries: %s",
                payload.action, payload.user_id, self.max_retries, e.message,
            )
            return
        raise self.retry(exc=e)


@celery_app.task(bind=True, name="process_payment_reminders")
def process_payment_reminders(self, retention_days: Optional[int] = None) -> dict:
    """Daily reminder run triggered by celery beat."""
    from coliving.db.kv import kv_store
    from coliving.services.notification_service import ResendEmailDispatcher
    from coliving.services.payment_source import KVPaymentSource
    from coliving.services.reminder_processor import run_scheduled_reminders

    stats = run_scheduled_reminders(
        kv_store,
        KVPaymentSource(kv_store),
        ResendEmailDispatcher(),
        retention_days=retention_days,
    )
    logger.info("Scheduled reminder run finished: %s", stats)
    return stats
