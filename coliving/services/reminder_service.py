"""Reminder settings, reminder log and tenant preference storage."""

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from coliving.core.exceptions import ValidationError
from coliving.db.kv import KVStore
from coliving.models.reminder import (
    ReminderAnalytics,
    ReminderLogEntry,
    ReminderLogFilters,
    ReminderLogInput,
    ReminderLogUpdate,
    ReminderSettings,
    ReminderSettingsInput,
    ReminderSettingsUpdate,
    ReminderStatus,
    TenantReminderPreferences,
)

logger = logging.getLogger("coliving")

DEFAULT_SETTINGS_KEY = "reminder_settings:default"
LOGS_BY_DATE = "reminder_logs:by_date"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _validate(model, data):
    if isinstance(data, model):
        return data
    try:
        return model.model_validate(data)
    except PydanticValidationError as e:
        raise ValidationError.from_pydantic(e) from e


class ReminderSettingsService:
    """Per-property reminder policy with an explicit default record."""

    @staticmethod
    def _property_key(property_id: str) -> str:
        return f"reminder_settings:property:{property_id}"

    @staticmethod
    def _load(store: KVStore, key: str) -> Optional[ReminderSettings]:
        raw = store.get_json(key)
        return ReminderSettings.model_validate(raw) if raw else None

    @staticmethod
    def get_default(store: KVStore) -> Optional[ReminderSettings]:
        return ReminderSettingsService._load(store, DEFAULT_SETTINGS_KEY)

    @staticmethod
    def set_default(store: KVStore, settings: ReminderSettings) -> ReminderSettings:
        if settings.property_id is not None:
            raise ValidationError(
                "Default settings cannot belong to a property",
                [{"field": "propertyId", "message": "must be null for default settings"}],
            )
        store.set_json(DEFAULT_SETTINGS_KEY, settings.to_store())
        return settings

    @staticmethod
    def get_property_settings(store: KVStore, property_id: str) -> Optional[ReminderSettings]:
        return ReminderSettingsService._load(store, ReminderSettingsService._property_key(property_id))

    @staticmethod
    def get_reminder_settings(store: KVStore, property_id: Optional[str] = None) -> Optional[ReminderSettings]:
        """Property-specific settings, falling back to the default record."""
        if property_id:
            settings = ReminderSettingsService.get_property_settings(store, property_id)
            if settings is not None:
                return settings
        return ReminderSettingsService.get_default(store)

    @staticmethod
    def create_reminder_settings(
        store: KVStore, data: Union[ReminderSettingsInput, dict],
    ) -> ReminderSettings:
        """Validate and persist settings; replaces any record at the same key."""
        payload = _validate(ReminderSettingsInput, data)
        now = _now()
        settings = ReminderSettings(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            **payload.model_dump(),
        )
        if settings.property_id is None:
            return ReminderSettingsService.set_default(store, settings)
        store.set_json(ReminderSettingsService._property_key(settings.property_id), settings.to_store())
        return settings

    @staticmethod
    def update_reminder_settings(
        store: KVStore,
        property_id: Optional[str],
        data: Union[ReminderSettingsUpdate, dict],
    ) -> Optional[ReminderSettings]:
        """Merge explicitly-set fields into an existing record.

        Returns None without writing anything when no record exists at the key.
        """
        patch = _validate(ReminderSettingsUpdate, data)
        if property_id:
            existing = ReminderSettingsService.get_property_settings(store, property_id)
        else:
            existing = ReminderSettingsService.get_default(store)
        if existing is None:
            return None

        merged = existing.model_dump()
        merged.update(patch.model_dump(exclude_unset=True))
        merged["updated_at"] = _now()
        updated = _validate(ReminderSettings, merged)

        if property_id:
            store.set_json(ReminderSettingsService._property_key(property_id), updated.to_store())
            return updated
        return ReminderSettingsService.set_default(store, updated)

    @staticmethod
    def delete_reminder_settings(store: KVStore, property_id: Optional[str]) -> bool:
        key = ReminderSettingsService._property_key(property_id) if property_id else DEFAULT_SETTINGS_KEY
        return store.delete(key) > 0


class ReminderLogService:
    """Per-payment reminder history with set indexes and a by-date sorted set."""

    @staticmethod
    def _key(log_id: str) -> str:
        return f"reminder_log:{log_id}"

    @staticmethod
    def _index_keys(entry: ReminderLogEntry) -> list[str]:
        keys = [
            f"reminder_logs:payment:{entry.payment_id}",
            f"reminder_logs:tenant:{entry.tenant_id}",
            f"reminder_logs:type:{entry.reminder_type.value}",
            f"reminder_logs:status:{entry.status.value}",
        ]
        if entry.property_id:
            keys.append(f"reminder_logs:property:{entry.property_id}")
        return keys

    @staticmethod
    def _message_key(message_id: str) -> str:
        return f"reminder_logs:message:{message_id}"

    @staticmethod
    def _resolve(store: KVStore, ids) -> list[ReminderLogEntry]:
        ids = list(ids)
        raw_entries = store.get_many_json([ReminderLogService._key(log_id) for log_id in ids])
        return [ReminderLogEntry.model_validate(raw) for raw in raw_entries if raw is not None]

    @staticmethod
    def create_reminder_log(store: KVStore, data: Union[ReminderLogInput, dict]) -> ReminderLogEntry:
        payload = _validate(ReminderLogInput, data)
        now = _now()
        entry = ReminderLogEntry(id=str(uuid.uuid4()), created_at=now, updated_at=now, **payload.model_dump())

        store.set_json(ReminderLogService._key(entry.id), entry.to_store())
        for index in ReminderLogService._index_keys(entry):
            store.set_add(index, entry.id)
        store.sorted_add(LOGS_BY_DATE, entry.id, _as_utc(entry.sent_at).timestamp())
        if entry.message_id:
            store.set_json(ReminderLogService._message_key(entry.message_id), entry.id)
        return entry

    @staticmethod
    def get_reminder_log(store: KVStore, log_id: str) -> Optional[ReminderLogEntry]:
        raw = store.get_json(ReminderLogService._key(log_id))
        return ReminderLogEntry.model_validate(raw) if raw else None

    @staticmethod
    def update_reminder_log(
        store: KVStore, log_id: str, data: Union[ReminderLogUpdate, dict],
    ) -> Optional[ReminderLogEntry]:
        patch = _validate(ReminderLogUpdate, data)
        existing = ReminderLogService.get_reminder_log(store, log_id)
        if existing is None:
            return None

        merged = existing.model_dump()
        merged.update(patch.model_dump(exclude_unset=True))
        merged["updated_at"] = _now()
        updated = ReminderLogEntry.model_validate(merged)

        if updated.status != existing.status:
            store.set_remove(f"reminder_logs:status:{existing.status.value}", log_id)
            store.set_add(f"reminder_logs:status:{updated.status.value}", log_id)
        store.set_json(ReminderLogService._key(log_id), updated.to_store())
        return updated

    @staticmethod
    def get_reminder_history(store: KVStore, payment_id: str) -> list[ReminderLogEntry]:
        """All reminders for a payment, oldest first."""
        ids = store.set_members(f"reminder_logs:payment:{payment_id}")
        return sorted(ReminderLogService._resolve(store, ids), key=lambda r: _as_utc(r.sent_at))

    @staticmethod
    def get_reminder_logs(
        store: KVStore, filters: Optional[ReminderLogFilters] = None,
    ) -> list[ReminderLogEntry]:
        """Filtered reminder logs, newest first.

        The narrowest available set index seeds the scan; every filter is then
        applied to the resolved entries.
        """
        filters = filters or ReminderLogFilters()
        if filters.payment_id:
            ids = store.set_members(f"reminder_logs:payment:{filters.payment_id}")
        elif filters.tenant_id:
            ids = store.set_members(f"reminder_logs:tenant:{filters.tenant_id}")
        elif filters.property_id:
            ids = store.set_members(f"reminder_logs:property:{filters.property_id}")
        elif filters.reminder_type:
            ids = store.set_members(f"reminder_logs:type:{filters.reminder_type.value}")
        elif filters.status:
            ids = store.set_members(f"reminder_logs:status:{filters.status.value}")
        else:
            ids = store.sorted_members(LOGS_BY_DATE)

        results = []
        for entry in ReminderLogService._resolve(store, ids):
            sent_at = _as_utc(entry.sent_at)
            if filters.payment_id and entry.payment_id != filters.payment_id:
                continue
            if filters.tenant_id and entry.tenant_id != filters.tenant_id:
                continue
            if filters.property_id and entry.property_id != filters.property_id:
                continue
            if filters.reminder_type and entry.reminder_type != filters.reminder_type:
                continue
            if filters.status and entry.status != filters.status:
                continue
            if filters.sent_from and sent_at < _as_utc(filters.sent_from):
                continue
            if filters.sent_to and sent_at > _as_utc(filters.sent_to):
                continue
            results.append(entry)
        return sorted(results, key=lambda r: _as_utc(r.sent_at), reverse=True)

    @staticmethod
    def find_by_message_id(store: KVStore, message_id: str) -> Optional[ReminderLogEntry]:
        log_id = store.get_json(ReminderLogService._message_key(message_id))
        if not log_id:
            return None
        return ReminderLogService.get_reminder_log(store, log_id)

    @staticmethod
    def delete_reminder_log(store: KVStore, log_id: str) -> bool:
        entry = ReminderLogService.get_reminder_log(store, log_id)
        if entry is None:
            store.sorted_remove(LOGS_BY_DATE, log_id)
            return False
        for index in ReminderLogService._index_keys(entry):
            store.set_remove(index, log_id)
        keys = [ReminderLogService._key(log_id)]
        if entry.message_id:
            keys.append(ReminderLogService._message_key(entry.message_id))
        store.delete(*keys)
        store.sorted_remove(LOGS_BY_DATE, log_id)
        return True

    @staticmethod
    def cleanup_old_reminder_logs(
        store: KVStore, days_to_keep: int = 90, now: Optional[datetime] = None,
    ) -> int:
        """Delete reminder logs sent at or before ``now - days_to_keep``."""
        cutoff = _as_utc(now or _now()) - timedelta(days=days_to_keep)
        old_ids = store.sorted_range_by_score(LOGS_BY_DATE, "-inf", cutoff.timestamp())
        deleted = sum(1 for log_id in old_ids if ReminderLogService.delete_reminder_log(store, log_id))
        if deleted:
            logger.info("Cleaned up %s reminder logs older than %s days", deleted, days_to_keep)
        return deleted

    @staticmethod
    def get_reminder_analytics(
        store: KVStore,
        property_id: Optional[str] = None,
        sent_from: Optional[datetime] = None,
        sent_to: Optional[datetime] = None,
    ) -> ReminderAnalytics:
        period_to = sent_to or _now()
        period_from = sent_from or period_to - timedelta(days=30)
        logs = ReminderLogService.get_reminder_logs(
            store,
            ReminderLogFilters(property_id=property_id, sent_from=period_from, sent_to=period_to),
        )

        def count(*statuses: ReminderStatus) -> int:
            return sum(1 for log in logs if log.status in statuses)

        total_sent = len(logs)
        total_delivered = count(ReminderStatus.delivered, ReminderStatus.opened)
        total_opened = count(ReminderStatus.opened)
        total_bounced = count(ReminderStatus.bounced)
        return ReminderAnalytics(
            total_sent=total_sent,
            total_delivered=total_delivered,
            total_opened=total_opened,
            total_bounced=total_bounced,
            total_failed=count(ReminderStatus.failed),
            delivery_rate=total_delivered / total_sent if total_sent else 0.0,
            open_rate=total_opened / total_delivered if total_delivered else 0.0,
            bounce_rate=total_bounced / total_sent if total_sent else 0.0,
            period_from=period_from,
            period_to=period_to,
        )

    @staticmethod
    def handle_delivery_event(store: KVStore, event: dict[str, Any]) -> Optional[ReminderLogEntry]:
        """Apply a provider delivery callback to the matching reminder log."""
        event_type = event.get("type")
        data = event.get("data") or {}
        message_id = data.get("email_id")
        if not message_id:
            return None

        entry = ReminderLogService.find_by_message_id(store, message_id)
        if entry is None:
            logger.info("No reminder log for message %s (%s)", message_id, event_type)
            return None

        if event_type == "email.delivered":
            update = ReminderLogUpdate(status=ReminderStatus.delivered, delivered_at=_now())
        elif event_type == "email.opened":
            update = ReminderLogUpdate(status=ReminderStatus.opened, opened_at=_now())
        elif event_type == "email.bounced":
            update = ReminderLogUpdate(status=ReminderStatus.bounced, error=data.get("reason") or "Email bounced")
        else:
            # email.delivery_delayed and unknown events leave the entry as is
            return entry
        return ReminderLogService.update_reminder_log(store, entry.id, update)


class TenantPreferenceService:

    @staticmethod
    def _key(tenant_id: str) -> str:
        return f"tenant_reminder_prefs:{tenant_id}"

    @staticmethod
    def get_tenant_preferences(store: KVStore, tenant_id: str) -> Optional[TenantReminderPreferences]:
        raw = store.get_json(TenantPreferenceService._key(tenant_id))
        return TenantReminderPreferences.model_validate(raw) if raw else None

    @staticmethod
    def save_tenant_preferences(
        store: KVStore, tenant_id: str, email_enabled: Optional[bool] = None, opt_out: Optional[bool] = None,
    ) -> TenantReminderPreferences:
        """Create or update preferences; unspecified fields keep their value."""
        now = _now()
        prefs = TenantPreferenceService.get_tenant_preferences(store, tenant_id)
        if prefs is None:
            prefs = TenantReminderPreferences(tenant_id=tenant_id, created_at=now)
        changes: dict[str, Any] = {"updated_at": now}
        if email_enabled is not None:
            changes["email_enabled"] = email_enabled
        if opt_out is not None:
            changes["opt_out"] = opt_out
        prefs = prefs.model_copy(update=changes)
        store.set_json(TenantPreferenceService._key(tenant_id), prefs.to_store())
        return prefs

    @staticmethod
    def delete_tenant_preferences(store: KVStore, tenant_id: str) -> bool:
        return store.delete(TenantPreferenceService._key(tenant_id)) > 0


reminder_settings_service = ReminderSettingsService()
reminder_log_service = ReminderLogService()
tenant_preference_service = TenantPreferenceService()
