"""Audit entry records."""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Records are stored and served with camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_store(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


class AuditLogParams(CamelModel):
    """Input for a single audit entry."""

    user_id: str
    action: str  # e.g. "reminder_settings.updated", "reminder.sent"
    resource: str  # reminder_settings, reminder, payment, tenant, ...
    resource_id: str
    changes: dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditEntry(AuditLogParams):
    """Immutable audit trail entry.

    Entries are APPEND-ONLY: written once by the audit service and never
    updated or deleted afterwards.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    timestamp: datetime


class AuditLogFilter(CamelModel):
    user_id: Optional[str] = None
    resource: Optional[str] = None
    resource_id: Optional[str] = None
    action: Optional[str] = None
    limit: int = Field(50, ge=1, le=1000)
    offset: int = Field(0, ge=0)
