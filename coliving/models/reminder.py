"""Reminder settings, reminder log and tenant preference records."""

import enum
from datetime import datetime
from typing import Annotated, Optional

from pydantic import EmailStr, Field, field_validator

from coliving.models.audit import CamelModel


class ReminderType(str, enum.Enum):
    upcoming = "upcoming"
    due = "due"
    overdue = "overdue"


class ReminderStatus(str, enum.Enum):
    sent = "sent"
    delivered = "delivered"
    opened = "opened"
    bounced = "bounced"
    failed = "failed"


DayOffset = Annotated[int, Field(ge=0)]


def _ordered_days(value: Optional[list[int]]) -> Optional[list[int]]:
    if value is None:
        return None
    return sorted(set(value))


class ReminderSettingsInput(CamelModel):
    """Reminder policy for one property, or the default when property_id is None."""

    property_id: Optional[str] = None
    enabled: bool = True
    days_before_due: list[DayOffset] = Field(default_factory=lambda: [7])
    days_after_due: list[DayOffset] = Field(default_factory=lambda: [0, 3])
    send_on_weekends: bool = False
    send_on_holidays: bool = False
    max_reminders_per_payment: int = Field(5, ge=1, le=10)
    custom_message: Optional[str] = None
    contact_email: Optional[EmailStr] = None

    @field_validator("days_before_due", "days_after_due")
    @classmethod
    def order_days(cls, value):
        return _ordered_days(value)


class ReminderSettings(ReminderSettingsInput):
    id: str
    created_at: datetime
    updated_at: datetime


class ReminderSettingsUpdate(CamelModel):
    """Partial update; only fields explicitly set are merged."""

    enabled: Optional[bool] = None
    days_before_due: Optional[list[DayOffset]] = None
    days_after_due: Optional[list[DayOffset]] = None
    send_on_weekends: Optional[bool] = None
    send_on_holidays: Optional[bool] = None
    max_reminders_per_payment: Optional[int] = Field(None, ge=1, le=10)
    custom_message: Optional[str] = None
    contact_email: Optional[EmailStr] = None

    @field_validator("days_before_due", "days_after_due")
    @classmethod
    def order_days(cls, value):
        return _ordered_days(value)


class ReminderLogInput(CamelModel):
    tenant_id: str
    payment_id: str
    property_id: Optional[str] = None
    reminder_type: ReminderType
    status: ReminderStatus
    sent_at: datetime
    channel: str = "email"
    bucket: int = 0  # day offset: >0 before due, 0 due day, <0 after due
    email_address: Optional[str] = None
    message_id: Optional[str] = None
    error: Optional[str] = None


class ReminderLogEntry(ReminderLogInput):
    id: str
    delivered_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class ReminderLogUpdate(CamelModel):
    status: Optional[ReminderStatus] = None
    delivered_at: Optional[datetime] = None
    opened_at: Optional[datetime] = None
    error: Optional[str] = None


class ReminderLogFilters(CamelModel):
    payment_id: Optional[str] = None
    tenant_id: Optional[str] = None
    property_id: Optional[str] = None
    reminder_type: Optional[ReminderType] = None
    status: Optional[ReminderStatus] = None
    sent_from: Optional[datetime] = None
    sent_to: Optional[datetime] = None


class TenantReminderPreferences(CamelModel):
    tenant_id: str
    email_enabled: bool = True
    opt_out: bool = False
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ReminderAnalytics(CamelModel):
    total_sent: int
    total_delivered: int
    total_opened: int
    total_bounced: int
    total_failed: int
    delivery_rate: float
    open_rate: float
    bounce_rate: float
    period_from: datetime
    period_to: datetime
