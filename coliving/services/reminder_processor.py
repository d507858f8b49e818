"""Automated payment reminder processing.

One run walks every outstanding payment, decides whether a reminder is due
today under the property's policy, dispatches it, and records the outcome in
the reminder log. Runs are at-least-once: a failed dispatch is logged as
``failed`` and picked up again by the next scheduled run.
"""

import logging
import uuid
from datetime import date, datetime, timezone
from typing import Callable, NamedTuple, Optional

from pydantic import Field

from coliving.core.config import settings as app_settings
from coliving.core.exceptions import NotFoundError, UpstreamDispatchError, ValidationError
from coliving.db.kv import KVStore
from coliving.models.audit import CamelModel
from coliving.models.payment import PaymentRecord, TenantContact
from coliving.models.reminder import (
    ReminderLogEntry,
    ReminderLogInput,
    ReminderSettingsInput,
    ReminderStatus,
    ReminderType,
)
from coliving.services.audit_service import audit_service
from coliving.services.notification_service import NotificationDispatcher, render_reminder
from coliving.services.payment_source import PaymentSource
from coliving.services.reminder_service import (
    reminder_log_service,
    reminder_settings_service,
    tenant_preference_service,
)

logger = logging.getLogger("coliving")

SYSTEM_USER = "system"
RATE_WINDOW_SECONDS = 3600


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProcessResult(CamelModel):
    processed: int = 0
    sent: int = 0
    skipped: int = 0
    failed: int = 0
    errors: int = 0
    error_messages: list[str] = Field(default_factory=list)


class Decision(NamedTuple):
    send: bool
    reason: str = ""
    reminder_type: Optional[ReminderType] = None
    bucket: int = 0
    settings: Optional[ReminderSettingsInput] = None


def classify(due_date: date, today: date, policy: ReminderSettingsInput) -> Optional[tuple[ReminderType, int]]:
    """Return (reminder type, day bucket) when the policy fires today, else None.

    The bucket is days until due: positive before, zero on, negative after.
    """
    days_until_due = (due_date - today).days
    if days_until_due > 0:
        if days_until_due in policy.days_before_due:
            return ReminderType.upcoming, days_until_due
    elif days_until_due == 0:
        if 0 in policy.days_before_due or 0 in policy.days_after_due:
            return ReminderType.due, 0
    elif -days_until_due in policy.days_after_due:
        return ReminderType.overdue, days_until_due
    return None


class ReminderProcessor:
    """Evaluates and dispatches reminders for every outstanding payment."""

    def __init__(
        self,
        store: KVStore,
        payments: PaymentSource,
        dispatcher: NotificationDispatcher,
        holidays: Optional[list[date]] = None,
        claim_ttl_seconds: Optional[int] = None,
        rate_limit_per_hour: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.payments = payments
        self.dispatcher = dispatcher
        self.holidays = set(holidays if holidays is not None else app_settings.REMINDER_HOLIDAYS)
        self.claim_ttl_seconds = claim_ttl_seconds or app_settings.REMINDER_CLAIM_TTL_SECONDS
        self.rate_limit_per_hour = rate_limit_per_hour or app_settings.REMINDER_RATE_LIMIT_PER_HOUR
        self.clock = clock
        self.run_id = uuid.uuid4().hex

    def policy_for(self, property_id: Optional[str]) -> ReminderSettingsInput:
        """Property settings, else the stored default, else built-in defaults."""
        stored = reminder_settings_service.get_reminder_settings(self.store, property_id)
        return stored if stored is not None else ReminderSettingsInput()

    def evaluate(self, payment: PaymentRecord, today: date) -> Decision:
        """Run the policy gate for one payment without side effects."""
        policy = self.policy_for(payment.property_id)
        if not policy.enabled:
            return Decision(False, "Reminders disabled for property")

        fired = classify(payment.due_date, today, policy)
        if fired is None:
            return Decision(False, "Not scheduled for today")
        reminder_type, bucket = fired

        prefs = tenant_preference_service.get_tenant_preferences(self.store, payment.tenant_id)
        if prefs is not None and (prefs.opt_out or not prefs.email_enabled):
            return Decision(False, "Tenant opted out of reminders")

        if today.weekday() >= 5 and not policy.send_on_weekends:
            return Decision(False, "Weekend sending disabled")
        if today in self.holidays and not policy.send_on_holidays:
            return Decision(False, "Holiday sending disabled")

        history = reminder_log_service.get_reminder_history(self.store, payment.id)
        active = [r for r in history if r.status != ReminderStatus.failed]
        if len(active) >= policy.max_reminders_per_payment:
            return Decision(False, "Maximum reminders reached")
        if any(r.reminder_type == reminder_type and r.bucket == bucket for r in active):
            return Decision(False, "Already sent for this bucket")
        if any(r.sent_at.astimezone(timezone.utc).date() == today for r in active):
            return Decision(False, "Already sent reminder today")

        return Decision(True, reminder_type=reminder_type, bucket=bucket, settings=policy)

    def process(self, today: Optional[date] = None) -> ProcessResult:
        """Process all outstanding payments for ``today`` (UTC date by default).

        Listing payments may raise StorageError; failures for a single payment
        are counted and the batch continues.
        """
        today = today or self.clock().date()
        result = ProcessResult()

        for payment in self.payments.list_outstanding():
            result.processed += 1
            try:
                outcome = self._process_payment(payment, today)
            except Exception as e:
                result.errors += 1
                message = f"Failed to process payment {payment.id}: {e}"
                result.error_messages.append(message)
                logger.exception(message)
                continue

            if outcome == ReminderStatus.sent:
                result.sent += 1
            elif outcome == ReminderStatus.failed:
                result.failed += 1
                result.error_messages.append(f"Dispatch failed for payment {payment.id}")
            else:
                result.skipped += 1

        logger.info(
            "Reminder processing complete: %s sent, %s skipped, %s failed, %s errors",
            result.sent, result.skipped, result.failed, result.errors,
        )
        return result

    def _get_tenant(self, payment: PaymentRecord) -> TenantContact:
        tenant = self.payments.get_tenant(payment.tenant_id)
        if tenant is None:
            raise NotFoundError(f"Tenant {payment.tenant_id} not found for payment {payment.id}")
        return tenant

    def within_rate_limit(self, email: str) -> bool:
        """Count one send to ``email`` in the current hour; False once the hourly cap is passed."""
        window = int(self.clock().timestamp()) // RATE_WINDOW_SECONDS
        count = self.store.incr_with_ttl(f"reminder_rate:{email.lower()}:{window}", RATE_WINDOW_SECONDS)
        return count <= self.rate_limit_per_hour

    def _process_payment(self, payment: PaymentRecord, today: date) -> Optional[ReminderStatus]:
        decision = self.evaluate(payment, today)
        if not decision.send:
            logger.debug("Skipping reminder for payment %s: %s", payment.id, decision.reason)
            return None

        claim_key = (
            f"reminder_claim:{payment.id}:{decision.reminder_type.value}:{decision.bucket}:{today.isoformat()}"
        )
        if not self.store.set_if_absent(claim_key, self.run_id, self.claim_ttl_seconds):
            logger.debug("Skipping reminder for payment %s: claimed by another run", payment.id)
            return None

        try:
            tenant = self._get_tenant(payment)
            if not self.within_rate_limit(tenant.email):
                logger.info("Rate limit exceeded for %s, skipping payment %s", tenant.email, payment.id)
                self.store.delete(claim_key)
                return None
            entry = self.dispatch(
                payment, decision.reminder_type, decision.bucket, decision.settings, tenant=tenant,
            )
        except Exception:
            self.store.delete(claim_key)
            raise
        if entry.status == ReminderStatus.failed:
            # Let the next scheduled run retry this bucket.
            self.store.delete(claim_key)
        return entry.status

    def dispatch(
        self,
        payment: PaymentRecord,
        reminder_type: ReminderType,
        bucket: int,
        policy: ReminderSettingsInput,
        tenant: Optional[TenantContact] = None,
    ) -> ReminderLogEntry:
        """Send one reminder and log it as ``sent`` or ``failed``."""
        tenant = tenant or self._get_tenant(payment)
        prop = self.payments.get_property(payment.property_id) if payment.property_id else None

        subject, body = render_reminder(
            reminder_type,
            payment,
            tenant,
            prop,
            contact_email=policy.contact_email,
            custom_message=policy.custom_message,
        )
        log = ReminderLogInput(
            tenant_id=payment.tenant_id,
            payment_id=payment.id,
            property_id=payment.property_id,
            reminder_type=reminder_type,
            status=ReminderStatus.sent,
            sent_at=self.clock(),
            channel=self.dispatcher.channel,
            bucket=bucket,
            email_address=tenant.email,
        )

        try:
            result = self.dispatcher.send(tenant.email, subject, body)
        except UpstreamDispatchError as e:
            logger.error("Failed to send reminder for payment %s: %s", payment.id, e.message)
            log.status = ReminderStatus.failed
            log.error = e.message
            return reminder_log_service.create_reminder_log(self.store, log)

        log.message_id = result.message_id
        entry = reminder_log_service.create_reminder_log(self.store, log)
        audit_service.record(
            self.store,
            user_id=SYSTEM_USER,
            action="reminder.sent",
            resource="payment",
            resource_id=payment.id,
            changes={
                "reminderLogId": entry.id,
                "reminderType": reminder_type.value,
                "bucket": bucket,
                "tenantId": payment.tenant_id,
            },
        )
        return entry

    def send_manual_reminder(
        self, payment_id: str, reminder_type: ReminderType, today: Optional[date] = None,
    ) -> ReminderLogEntry:
        """Dispatch a reminder now regardless of schedule; the per-payment cap still applies."""
        today = today or self.clock().date()
        payment = self.payments.get_payment(payment_id)
        if payment is None:
            raise NotFoundError("Payment not found")

        policy = self.policy_for(payment.property_id)
        history = reminder_log_service.get_reminder_history(self.store, payment.id)
        active = [r for r in history if r.status != ReminderStatus.failed]
        if len(active) >= policy.max_reminders_per_payment:
            raise ValidationError(
                "Maximum reminders reached",
                [{"field": "paymentId", "message": f"limit is {policy.max_reminders_per_payment}"}],
            )
        return self.dispatch(payment, reminder_type, (payment.due_date - today).days, policy)


def run_scheduled_reminders(
    store: KVStore,
    payments: PaymentSource,
    dispatcher: NotificationDispatcher,
    retention_days: Optional[int] = None,
    today: Optional[date] = None,
) -> dict:
    """One scheduled invocation: process reminders, then apply log retention."""
    processor = ReminderProcessor(store, payments, dispatcher)
    results = processor.process(today)
    cleaned = reminder_log_service.cleanup_old_reminder_logs(
        store, retention_days or app_settings.REMINDER_RETENTION_DAYS,
    )
    stats = results.model_dump(by_alias=True)
    stats["cleanedUpLogs"] = cleaned
    return stats
