"""Manual payment reminder API router."""

from fastapi import APIRouter, Depends, Request

from coliving.core.security import SessionUser, require_staff
from coliving.db.kv import KVStore, get_store
from coliving.models.reminder import ReminderStatus
from coliving.schemas.schemas import DataResponse, ManualReminderRequest
from coliving.services.audit_service import audit_service
from coliving.services.notification_service import NotificationDispatcher, get_dispatcher
from coliving.services.payment_source import PaymentSource, get_payment_source
from coliving.services.reminder_processor import ReminderProcessor

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/{payment_id}/send-reminder", response_model=DataResponse)
async def send_payment_reminder(
    payment_id: str,
    body: ManualReminderRequest,
    request: Request,
    store: KVStore = Depends(get_store),
    payments: PaymentSource = Depends(get_payment_source),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
    user: SessionUser = Depends(require_staff),
):
    """Send a reminder for one payment now, outside the daily schedule."""
    processor = ReminderProcessor(store, payments, dispatcher)
    entry = processor.send_manual_reminder(payment_id, body.reminder_type)
    audit_service.log_from_request(
        store,
        request,
        user_id=user.id,
        action="reminder.manual_sent",
        resource="payment",
        resource_id=payment_id,
        changes={"reminderType": body.reminder_type.value, "status": entry.status.value},
    )
    sent = entry.status != ReminderStatus.failed
    return DataResponse(
        success=sent,
        data=entry.to_store(),
        message="Reminder sent" if sent else entry.error,
    )
