from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Query, Request

from linksy.permissions import require_authenticated, require_permission
from linksy.routes._deps import auth_from_request, ok, tenant_id_from_request
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["audit"])


@router.get("/audit-logs")
def list_audit_logs(
    request: Request,
    action: str | None = None,
    resource_type: str | None = None,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
):
    require_permission(auth_from_request(request), "audit:read")
    data = store.list_audit_logs(
        tenant_id=tenant_id_from_request(request),
        action=action,
        resource_type=resource_type,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.get("/audit-logs/verify")
def verify_audit_logs(request: Request):
    require_permission(auth_from_request(request), "audit:read")
    return ok(request, store.verify_audit_integrity(tenant_id=tenant_id_from_request(request)))


@router.get("/activity")
def activity_feed(
    request: Request,
    scope: Literal["company", "personal"] = "company",
    action_type: str | None = None,
    limit: int = Query(default=20, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    auth = auth_from_request(request)
    require_authenticated(auth)
    data = store.activity_feed(
        tenant_id=tenant_id_from_request(request),
        viewer=auth,
        scope=scope,
        action_type=action_type,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)
