"""Payment reminder templating and outbound email dispatch (Resend)."""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx
from pydantic import BaseModel

from coliving.core.config import settings
from coliving.core.exceptions import UpstreamDispatchError
from coliving.models.payment import PaymentRecord, PropertyInfo, TenantContact
from coliving.models.reminder import ReminderType

logger = logging.getLogger("coliving")


class DispatchResult(BaseModel):
    message_id: Optional[str] = None


class NotificationDispatcher(ABC):
    """Sends a message to a tenant contact.

    Implementations raise UpstreamDispatchError when the send fails.
    """

    channel: str = "email"

    @abstractmethod
    def send(self, to: str, subject: str, body: str) -> DispatchResult:
        ...


class ResendEmailDispatcher(NotificationDispatcher):
    """Email delivery through the Resend HTTP API."""

    channel = "email"

    def __init__(
        self,
        api_key: Optional[str] = None,
        from_email: Optional[str] = None,
        api_url: Optional[str] = None,
        timeout: float = 30,
    ):
        self.api_key = api_key if api_key is not None else settings.RESEND_API_KEY
        self.from_email = from_email or settings.RESEND_FROM_EMAIL
        self.api_url = api_url or settings.RESEND_API_URL
        self.timeout = timeout

    def send(self, to: str, subject: str, body: str) -> DispatchResult:
        if not self.api_key:
            raise UpstreamDispatchError("Email service not configured (missing RESEND_API_KEY)")
        try:
            resp = httpx.post(
                self.api_url,
                json={
                    "from": self.from_email,
                    "to": [to],
                    "subject": subject,
                    "text": body,
                    "tags": [{"name": "type", "value": "payment-reminder"}],
                },
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise UpstreamDispatchError(f"Resend send failed: {e}") from e

        message_id = resp.json().get("id")
        logger.info("Payment reminder sent to %s: %s", to, message_id)
        return DispatchResult(message_id=message_id)


def reminder_subject(reminder_type: ReminderType, property_name: str) -> str:
    if reminder_type == ReminderType.upcoming:
        return f"Payment Reminder: {property_name} - Due Soon"
    if reminder_type == ReminderType.due:
        return f"Payment Due Today: {property_name}"
    return f"Urgent: Overdue Payment - {property_name}"


def render_reminder(
    reminder_type: ReminderType,
    payment: PaymentRecord,
    tenant: TenantContact,
    prop: Optional[PropertyInfo],
    contact_email: Optional[str] = None,
    custom_message: Optional[str] = None,
) -> tuple[str, str]:
    """Build the (subject, body) pair for one payment reminder."""
    property_name = prop.name if prop else "your residence"
    contact = contact_email or (prop.contact_email if prop else None) or settings.SUPPORT_EMAIL
    methods = ", ".join(prop.payment_methods) if prop else "Bank Transfer, Cash"
    due = f"{payment.due_date:%B} {payment.due_date.day}, {payment.due_date.year}"
    amount = f"{payment.amount:,.2f} {payment.currency}"

    if reminder_type == ReminderType.upcoming:
        opening = f"This is a friendly reminder that your payment of {amount} is due on {due}."
    elif reminder_type == ReminderType.due:
        opening = f"Your payment of {amount} is due today ({due})."
    else:
        opening = f"Your payment of {amount} was due on {due} and is now overdue."

    lines = [
        f"Hi {tenant.name},",
        "",
        opening,
        f"Payment reference: {payment.reference or f'PAY-{payment.id}'}",
        f"Accepted payment methods: {methods}",
    ]
    if custom_message:
        lines += ["", custom_message]
    lines += [
        "",
        f"Questions? Contact us at {contact}.",
        "",
        property_name,
    ]
    return reminder_subject(reminder_type, property_name), "\n".join(lines)


def get_dispatcher() -> NotificationDispatcher:
    """FastAPI dependency providing the outbound reminder channel."""
    return ResendEmailDispatcher()
