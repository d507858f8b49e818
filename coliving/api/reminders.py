"""Reminder settings, history and tenant preference API router."""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from coliving.core.exceptions import NotFoundError
from coliving.core.security import SessionUser, require_staff
from coliving.db.kv import KVStore, get_store
from coliving.models.reminder import (
    ReminderLogFilters,
    ReminderSettingsInput,
    ReminderStatus,
    ReminderType,
)
from coliving.schemas.schemas import (
    DataResponse,
    ListResponse,
    MessageResponse,
    ReminderSettingsPatch,
    TenantPreferencesUpdate,
)
from coliving.services.audit_service import audit_service
from coliving.services.reminder_service import (
    reminder_log_service,
    reminder_settings_service,
    tenant_preference_service,
)

router = APIRouter(prefix="/reminders", tags=["reminders"])


@router.get("/settings", response_model=DataResponse)
async def get_reminder_settings(
    property_id: Optional[str] = Query(None, alias="propertyId"),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Settings for a property (or the default); built-in defaults when none are stored."""
    settings = reminder_settings_service.get_reminder_settings(store, property_id)
    if settings is None:
        settings = ReminderSettingsInput(property_id=property_id)
    return DataResponse(data=settings.to_store())


@router.post("/settings", response_model=DataResponse)
async def create_reminder_settings(
    body: ReminderSettingsInput,
    request: Request,
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Create reminder settings for a property, or the default when propertyId is omitted."""
    settings = reminder_settings_service.create_reminder_settings(store, body)
    audit_service.log_from_request(
        store,
        request,
        user_id=user.id,
        action="reminder_settings.created",
        resource="reminder_settings",
        resource_id=settings.property_id or "default",
        changes=body.to_store(),
    )
    return DataResponse(data=settings.to_store(), message="Reminder settings created successfully")


@router.patch("/settings", response_model=DataResponse)
async def update_reminder_settings(
    body: ReminderSettingsPatch,
    request: Request,
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Partially update existing settings; 404 when there is nothing to update."""
    changes = body.model_dump(exclude_unset=True, exclude={"property_id"})
    settings = reminder_settings_service.update_reminder_settings(store, body.property_id, changes)
    if settings is None:
        raise NotFoundError("Settings not found")
    audit_service.log_from_request(
        store,
        request,
        user_id=user.id,
        action="reminder_settings.updated",
        resource="reminder_settings",
        resource_id=body.property_id or "default",
        changes=body.model_dump(mode="json", by_alias=True, exclude_unset=True),
    )
    return DataResponse(data=settings.to_store(), message="Reminder settings updated successfully")


@router.delete("/settings", response_model=MessageResponse)
async def delete_reminder_settings(
    request: Request,
    property_id: Optional[str] = Query(None, alias="propertyId"),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Delete property settings (or the default record)."""
    if not reminder_settings_service.delete_reminder_settings(store, property_id):
        raise NotFoundError("Settings not found")
    audit_service.log_from_request(
        store,
        request,
        user_id=user.id,
        action="reminder_settings.deleted",
        resource="reminder_settings",
        resource_id=property_id or "default",
    )
    return MessageResponse(message="Reminder settings deleted")


@router.get("/analytics", response_model=DataResponse)
async def get_reminder_analytics(
    property_id: Optional[str] = Query(None, alias="propertyId"),
    sent_from: Optional[datetime] = Query(None, alias="from"),
    sent_to: Optional[datetime] = Query(None, alias="to"),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Delivery, open and bounce rates over a period (default: last 30 days)."""
    analytics = reminder_log_service.get_reminder_analytics(store, property_id, sent_from, sent_to)
    return DataResponse(data=analytics.to_store())


@router.get("/preferences/{tenant_id}", response_model=DataResponse)
async def get_tenant_preferences(
    tenant_id: str,
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    prefs = tenant_preference_service.get_tenant_preferences(store, tenant_id)
    if prefs is None:
        raise NotFoundError("Preferences not found")
    return DataResponse(data=prefs.to_store())


@router.put("/preferences/{tenant_id}", response_model=DataResponse)
async def save_tenant_preferences(
    tenant_id: str,
    body: TenantPreferencesUpdate,
    request: Request,
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Create or update a tenant's reminder opt-out preferences."""
    prefs = tenant_preference_service.save_tenant_preferences(
        store, tenant_id, email_enabled=body.email_enabled, opt_out=body.opt_out,
    )
    audit_service.log_from_request(
        store,
        request,
        user_id=user.id,
        action="tenant_preferences.updated",
        resource="tenant",
        resource_id=tenant_id,
        changes=body.model_dump(mode="json", by_alias=True, exclude_unset=True),
    )
    return DataResponse(data=prefs.to_store(), message="Preferences saved")


@router.get("/{tenant_id}", response_model=ListResponse)
async def get_tenant_reminder_history(
    tenant_id: str,
    property_id: Optional[str] = Query(None, alias="propertyId"),
    reminder_type: Optional[ReminderType] = Query(None, alias="reminderType"),
    status: Optional[ReminderStatus] = Query(None),
    sent_from: Optional[datetime] = Query(None, alias="from"),
    sent_to: Optional[datetime] = Query(None, alias="to"),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_staff),
):
    """Reminder history for a tenant, newest first."""
    reminders = reminder_log_service.get_reminder_logs(
        store,
        ReminderLogFilters(
            tenant_id=tenant_id,
            property_id=property_id,
            reminder_type=reminder_type,
            status=status,
            sent_from=sent_from,
            sent_to=sent_to,
        ),
    )
    return ListResponse(data=[r.to_store() for r in reminders], count=len(reminders))
