"""Records persisted in the KV store."""

from coliving.models.audit import AuditEntry, AuditLogFilter, AuditLogParams
from coliving.models.payment import PaymentRecord, PropertyInfo, TenantContact
from coliving.models.reminder import (
    ReminderAnalytics, ReminderLogEntry, ReminderLogFilters, ReminderLogInput,
    ReminderLogUpdate, ReminderSettings, ReminderSettingsInput,
    ReminderSettingsUpdate, ReminderStatus, ReminderType,
    TenantReminderPreferences,
)

__all__ = [
    "AuditEntry", "AuditLogFilter", "AuditLogParams",
    "PaymentRecord", "PropertyInfo", "TenantContact",
    "ReminderAnalytics", "ReminderLogEntry", "ReminderLogFilters",
    "ReminderLogInput", "ReminderLogUpdate", "ReminderSettings",
    "ReminderSettingsInput", "ReminderSettingsUpdate", "ReminderStatus",
    "ReminderType", "TenantReminderPreferences",
]
