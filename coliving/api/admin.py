"""Admin / Audit API router."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from coliving.core.security import SessionUser, require_owner
from coliving.db.kv import KVStore, get_store
from coliving.models.audit import AuditEntry, AuditLogFilter
from coliving.schemas.schemas import AuditLogPage, Pagination
from coliving.services.audit_service import audit_service

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/audit", response_model=AuditLogPage)
async def get_audit_logs(
    user_id: Optional[str] = Query(None, alias="userId"),
    resource: Optional[str] = Query(None),
    resource_id: Optional[str] = Query(None, alias="resourceId"),
    action: Optional[str] = Query(None),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_owner),
):
    """Query audit logs (property owners only)."""
    result = audit_service.get_audit_logs(
        store,
        AuditLogFilter(
            user_id=user_id,
            resource=resource,
            resource_id=resource_id,
            action=action,
            limit=limit,
            offset=offset,
        ),
    )
    return AuditLogPage(
        logs=result["logs"],
        total=result["total"],
        pagination=Pagination(limit=limit, offset=offset, has_more=offset + limit < result["total"]),
    )


@router.get("/audit/users/{user_id}", response_model=list[AuditEntry])
async def get_user_audit_trail(
    user_id: str,
    limit: int = Query(100, ge=1, le=1000),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_owner),
):
    """Newest-first audit trail for one user (owners only)."""
    return audit_service.get_user_audit_trail(store, user_id, limit)


@router.get("/audit/resources/{resource}/{resource_id}", response_model=list[AuditEntry])
async def get_resource_audit_trail(
    resource: str,
    resource_id: str,
    limit: int = Query(100, ge=1, le=500),
    store: KVStore = Depends(get_store),
    user: SessionUser = Depends(require_owner),
):
    """Newest-first audit trail for one resource (owners only)."""
    return audit_service.get_resource_audit_trail(store, resource, resource_id, limit)


@router.get("/health")
async def health_check(store: KVStore = Depends(get_store)):
    """Redis health check."""
    redis_ok = store.health_check()
    return {
        "redis": "ok" if redis_ok else "error",
        "status": "healthy" if redis_ok else "degraded",
    }
