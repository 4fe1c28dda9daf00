from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from linksy.permissions import require_tenant_admin
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import WebhookCreateRequest, WebhookUpdateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["webhooks"])


def _target_tenant(request: Request, requested: str | None) -> str:
    auth = auth_from_request(request)
    require_tenant_admin(auth)
    if requested and auth.is_site_admin:
        return requested
    return tenant_id_from_request(request)


@router.get("/webhooks")
def list_webhooks(request: Request, tenant_id: str | None = None):
    return ok(request, store.list_webhooks(tenant_id=_target_tenant(request, tenant_id)))


@router.post("/webhooks")
def create_webhook(
    payload: WebhookCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    tenant_id = _target_tenant(request, payload.tenant_id)
    actor_id = auth_from_request(request).subject
    body = payload.model_dump(exclude={"tenant_id"})
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/webhooks",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_webhook(tenant_id=tenant_id, actor_id=actor_id, payload=body),
    )
    return created(request, data)


@router.get("/webhooks/{webhook_id}")
def get_webhook(webhook_id: str, request: Request, tenant_id: str | None = None):
    data = store.get_webhook(tenant_id=_target_tenant(request, tenant_id), webhook_id=webhook_id)
    return ok(request, data)


@router.patch("/webhooks/{webhook_id}")
def update_webhook(webhook_id: str, payload: WebhookUpdateRequest, request: Request, tenant_id: str | None = None):
    data = store.update_webhook(
        tenant_id=_target_tenant(request, tenant_id),
        webhook_id=webhook_id,
        actor_id=auth_from_request(request).subject,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/webhooks/{webhook_id}")
def delete_webhook(webhook_id: str, request: Request, tenant_id: str | None = None):
    data = store.delete_webhook(
        tenant_id=_target_tenant(request, tenant_id),
        webhook_id=webhook_id,
        actor_id=auth_from_request(request).subject,
    )
    return ok(request, data)


@router.get("/webhooks/{webhook_id}/secret")
def get_webhook_secret(webhook_id: str, request: Request, tenant_id: str | None = None):
    data = store.get_webhook_secret(tenant_id=_target_tenant(request, tenant_id), webhook_id=webhook_id)
    return ok(request, data)


@router.post("/webhooks/{webhook_id}/secret")
def rotate_webhook_secret(webhook_id: str, request: Request, tenant_id: str | None = None):
    data = store.rotate_webhook_secret(
        tenant_id=_target_tenant(request, tenant_id),
        webhook_id=webhook_id,
        actor_id=auth_from_request(request).subject,
    )
    return ok(request, data)


@router.post("/webhooks/{webhook_id}/test")
def test_webhook(webhook_id: str, request: Request, tenant_id: str | None = None):
    data = store.test_webhook(tenant_id=_target_tenant(request, tenant_id), webhook_id=webhook_id)
    return ok(request, data)


@router.get("/webhooks/{webhook_id}/deliveries")
def list_webhook_deliveries(
    webhook_id: str,
    request: Request,
    tenant_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    data = store.list_webhook_deliveries(
        tenant_id=_target_tenant(request, tenant_id),
        webhook_id=webhook_id,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)
