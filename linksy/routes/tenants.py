from __future__ import annotations

from fastapi import APIRouter, Header, Request

from linksy.errors import forbidden
from linksy.permissions import can_manage_tenant, require_site_admin
from linksy.routes._deps import auth_from_request, created, ok, run_mutation
from linksy.schemas import TenantCreateRequest, TenantUpdateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["tenants"])


def _require_tenant_manager(request: Request, tenant_id: str) -> None:
    if not can_manage_tenant(auth_from_request(request), tenant_id):
        raise forbidden("Tenant admin access required")


@router.get("/tenants")
def list_tenants(request: Request):
    require_site_admin(auth_from_request(request))
    items = store.list_tenants()
    return ok(request, {"items": items, "total": len(items)})


@router.post("/tenants")
def create_tenant(
    payload: TenantCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_site_admin(auth)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/tenants",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_tenant(actor_id=auth.subject, payload=body),
    )
    return created(request, data)


@router.get("/tenants/{tenant_id}")
def get_tenant(tenant_id: str, request: Request):
    _require_tenant_manager(request, tenant_id)
    return ok(request, store.get_tenant(tenant_id=tenant_id))


@router.patch("/tenants/{tenant_id}")
def update_tenant(tenant_id: str, payload: TenantUpdateRequest, request: Request):
    _require_tenant_manager(request, tenant_id)
    data = store.update_tenant(
        tenant_id=tenant_id,
        actor_id=auth_from_request(request).subject,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/tenants/{tenant_id}")
def delete_tenant(tenant_id: str, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    return ok(request, store.delete_tenant(tenant_id=tenant_id, actor_id=auth.subject))
