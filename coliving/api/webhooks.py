"""Delivery callbacks from the email provider."""

import logging

from fastapi import APIRouter, Depends, Request

from coliving.core.exceptions import ValidationError
from coliving.db.kv import KVStore, get_store
from coliving.services.reminder_service import reminder_log_service

logger = logging.getLogger("coliving")

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/resend")
async def resend_webhook(request: Request, store: KVStore = Depends(get_store)):
    """Apply delivered/opened/bounced events to the matching reminder log."""
    try:
        event = await request.json()
    except ValueError as e:
        raise ValidationError("Webhook body must be JSON") from e
    if not isinstance(event, dict):
        raise ValidationError("Webhook body must be a JSON object")

    logger.info("Received Resend webhook: %s %s", event.get("type"), (event.get("data") or {}).get("email_id"))
    entry = reminder_log_service.handle_delivery_event(store, event)
    return {"success": True, "updated": entry.id if entry else None}
