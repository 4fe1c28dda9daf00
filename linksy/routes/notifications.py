from __future__ import annotations

from fastapi import APIRouter, Query, Request

from linksy.permissions import require_permission
from linksy.routes._deps import auth_from_request, ok, tenant_id_from_request
from linksy.schemas import NotificationUpdateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["notifications"])


@router.get("/notifications")
def list_notifications(
    request: Request,
    unread_only: bool = False,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    auth = auth_from_request(request)
    require_permission(auth, "notifications:read")
    data = store.list_notifications(
        tenant_id=tenant_id_from_request(request),
        user_id=auth.subject,
        unread_only=unread_only,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/notifications/read-all")
def mark_all_read(request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "notifications:write")
    return ok(request, store.mark_all_notifications_read(tenant_id=tenant_id_from_request(request), user_id=auth.subject))


@router.patch("/notifications/{notification_id}")
def mark_notification(notification_id: str, payload: NotificationUpdateRequest, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "notifications:write")
    data = store.mark_notification(
        tenant_id=tenant_id_from_request(request),
        notification_id=notification_id,
        user_id=auth.subject,
        is_read=payload.is_read,
    )
    return ok(request, data)
