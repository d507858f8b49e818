"""Pydantic schemas for API request/response serialization."""

from datetime import datetime
from typing import Any, Optional

from pydantic import Field

from coliving.models.audit import AuditEntry, CamelModel
from coliving.models.reminder import ReminderSettingsUpdate, ReminderType


# ---- Audit ----
class Pagination(CamelModel):
    limit: int
    offset: int
    has_more: bool


class AuditLogPage(CamelModel):
    logs: list[AuditEntry]
    total: int
    pagination: Pagination


# ---- Reminder settings ----
class ReminderSettingsPatch(ReminderSettingsUpdate):
    """PATCH body: the target property plus the fields to change."""

    property_id: Optional[str] = None


class DataResponse(CamelModel):
    success: bool = True
    data: Any = None
    message: Optional[str] = None


class ListResponse(CamelModel):
    success: bool = True
    data: list[Any]
    count: int


# ---- Tenant preferences ----
class TenantPreferencesUpdate(CamelModel):
    email_enabled: Optional[bool] = None
    opt_out: Optional[bool] = None


# ---- Manual reminders ----
class ManualReminderRequest(CamelModel):
    reminder_type: ReminderType = ReminderType.due


# ---- Cron ----
class CronResponse(CamelModel):
    success: bool
    timestamp: datetime
    stats: dict[str, Any] = Field(default_factory=dict)


class MessageResponse(CamelModel):
    message: str
