"""Scheduler-triggered endpoints, authenticated by the CRON_SECRET bearer token."""

import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from coliving.core.config import settings
from coliving.core.security import verify_cron_secret
from coliving.db.kv import KVStore, get_store
from coliving.schemas.schemas import CronResponse
from coliving.services.notification_service import NotificationDispatcher, get_dispatcher
from coliving.services.payment_source import PaymentSource, get_payment_source
from coliving.services.reminder_processor import run_scheduled_reminders

logger = logging.getLogger("coliving")

router = APIRouter(prefix="/cron", tags=["cron"], dependencies=[Depends(verify_cron_secret)])


@router.post("/payment-reminders", response_model=CronResponse)
async def run_payment_reminders(
    store: KVStore = Depends(get_store),
    payments: PaymentSource = Depends(get_payment_source),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Process due payment reminders, then drop reminder logs past retention."""
    logger.info("Starting automated payment reminder processing")
    try:
        stats = run_scheduled_reminders(
            store, payments, dispatcher, retention_days=settings.REMINDER_RETENTION_DAYS,
        )
    except Exception as e:
        logger.exception("Failed to process automated reminders")
        return JSONResponse(
            status_code=500,
            content={
                "success": False,
                "error": str(e),
                "timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )
    return CronResponse(success=True, timestamp=datetime.now(timezone.utc), stats=stats)


@router.get("/payment-reminders")
async def payment_reminders_status():
    """Liveness probe for the scheduler."""
    return {
        "message": "Payment reminder cron job endpoint is active",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "nextScheduledRun": f"Daily at {settings.REMINDER_CRON_HOUR:02d}:00 UTC",
    }
