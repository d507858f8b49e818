"""Append-only audit trail for admin mutations.

Entries live at ``audit:<id>``; three Redis lists index them newest first:
``audit:global``, ``audit:user:<userId>`` and
``audit:resource:<resource>:<resourceId>``. Lists are capped, so old IDs fall
off the tail while the entries themselves stay readable by ID.
"""

import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Union

from fastapi import Request
from kombu.exceptions import OperationalError

from coliving.core.config import settings
from coliving.db.kv import KVStore
from coliving.models.audit import AuditEntry, AuditLogFilter, AuditLogParams

logger = logging.getLogger("coliving")

GLOBAL_INDEX = "audit:global"


def entry_key(audit_id: str) -> str:
    return f"audit:{audit_id}"


def user_index(user_id: str) -> str:
    return f"audit:user:{user_id}"


def resource_index(resource: str, resource_id: str) -> str:
    return f"audit:resource:{resource}:{resource_id}"


def new_audit_id() -> str:
    return f"audit_{int(time.time() * 1000)}_{uuid.uuid4().hex[:9]}"


class AuditService:
    """Records immutable audit log entries and reads them back by index."""

    @staticmethod
    def write_entry(store: KVStore, params: AuditLogParams) -> AuditEntry:
        """Write one entry and push its ID onto the three indexes.

        Raises StorageError; callers decide whether to retry or drop.
        """
        entry = AuditEntry(
            id=new_audit_id(),
            timestamp=datetime.now(timezone.utc),
            **params.model_dump(),
        )
        store.set_json(entry_key(entry.id), entry.to_store())
        store.push_capped(user_index(entry.user_id), entry.id, settings.AUDIT_USER_CAP)
        store.push_capped(
            resource_index(entry.resource, entry.resource_id), entry.id, settings.AUDIT_RESOURCE_CAP,
        )
        store.push_capped(GLOBAL_INDEX, entry.id, settings.AUDIT_GLOBAL_CAP)
        return entry

    @staticmethod
    def create_audit_log(store: KVStore, params: Union[AuditLogParams, dict]) -> None:
        """Best-effort write. Never raises; errors are logged and the entry is dropped."""
        try:
            if not isinstance(params, AuditLogParams):
                params = AuditLogParams.model_validate(params)
            AuditService.write_entry(store, params)
        except Exception:
            logger.exception("Failed to create audit log")

    @staticmethod
    def record(store: KVStore, **params: Any) -> None:
        """Fire-and-forget entry point used by request handlers.

        Hands the write to the Celery worker; writes inline when async
        auditing is off or the broker cannot be reached.
        """
        try:
            payload = AuditLogParams.model_validate(params)
        except ValueError:
            logger.exception("Dropping malformed audit entry for action %s", params.get("action"))
            return

        if settings.AUDIT_ASYNC:
            from coliving.tasks.celery_app import write_audit_entry

            try:
                write_audit_entry.delay(payload.to_store())
                return
            except OperationalError as e:
                logger.warning("Audit queue unavailable, writing inline: %s", e)
            except Exception:
                logger.exception("Could not enqueue audit entry %s, writing inline", payload.action)

        AuditService.create_audit_log(store, payload)

    @staticmethod
    def log_from_request(
        store: KVStore,
        request: Request,
        user_id: str,
        action: str,
        resource: str,
        resource_id: str,
        changes: Optional[dict[str, Any]] = None,
    ) -> None:
        """Record an audit entry extracting IP and user-agent from the request."""
        ip = request.client.host if request.client else None
        ua = request.headers.get("user-agent", "")[:500]
        AuditService.record(
            store,
            user_id=user_id,
            action=action,
            resource=resource,
            resource_id=resource_id,
            changes=changes or {},
            ip_address=ip,
            user_agent=ua,
        )

    @staticmethod
    def get_audit_logs(store: KVStore, query: AuditLogFilter) -> dict[str, Any]:
        """Page through an index and resolve entries.

        ``total`` is the length of the index that was scanned, not the number
        of entries left after the action/resource filters are applied to the
        page.
        """
        if query.user_id:
            index = user_index(query.user_id)
        elif query.resource and query.resource_id:
            index = resource_index(query.resource, query.resource_id)
        else:
            index = GLOBAL_INDEX

        total = store.list_length(index)
        ids = store.list_range(index, query.offset, query.offset + query.limit - 1)
        raw_entries = store.get_many_json([entry_key(audit_id) for audit_id in ids])

        logs = []
        for raw in raw_entries:
            if raw is None:
                # Index entries may outlive their record.
                continue
            entry = AuditEntry.model_validate(raw)
            if query.user_id and entry.user_id != query.user_id:
                continue
            if query.resource and entry.resource != query.resource:
                continue
            if query.resource_id and entry.resource_id != query.resource_id:
                continue
            if query.action and entry.action != query.action:
                continue
            logs.append(entry)

        return {"logs": logs, "total": total}

    @staticmethod
    def get_user_audit_trail(store: KVStore, user_id: str, limit: int = 100) -> list[AuditEntry]:
        """Newest-first entries for one user."""
        result = AuditService.get_audit_logs(store, AuditLogFilter(user_id=user_id, limit=limit))
        return result["logs"]

    @staticmethod
    def get_resource_audit_trail(
        store: KVStore, resource: str, resource_id: str, limit: int = 100,
    ) -> list[AuditEntry]:
        result = AuditService.get_audit_logs(
            store, AuditLogFilter(resource=resource, resource_id=resource_id, limit=limit),
        )
        return result["logs"]


audit_service = AuditService()
