from __future__ import annotations

from fastapi import APIRouter, Header, Request

from linksy.permissions import require_authenticated, require_site_admin
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import (
    NeedCategoryCreateRequest,
    NeedCategoryUpdateRequest,
    NeedCreateRequest,
    NeedUpdateRequest,
)
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["taxonomy"])


@router.get("/need-categories")
def list_need_categories(request: Request, active_only: bool = False):
    require_authenticated(auth_from_request(request))
    items = store.list_need_categories(tenant_id=tenant_id_from_request(request), active_only=active_only)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/need-categories")
def create_need_category(
    payload: NeedCategoryCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    require_site_admin(auth_from_request(request))
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/need-categories",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_need_category(tenant_id=tenant_id, payload=body),
    )
    return created(request, data)


@router.patch("/need-categories/{category_id}")
def update_need_category(category_id: str, payload: NeedCategoryUpdateRequest, request: Request):
    require_site_admin(auth_from_request(request))
    data = store.update_need_category(
        tenant_id=tenant_id_from_request(request),
        category_id=category_id,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/need-categories/{category_id}")
def delete_need_category(category_id: str, request: Request):
    require_site_admin(auth_from_request(request))
    return ok(request, store.delete_need_category(tenant_id=tenant_id_from_request(request), category_id=category_id))


@router.get("/needs")
def list_needs(request: Request, category_id: str | None = None):
    require_authenticated(auth_from_request(request))
    items = store.list_needs(tenant_id=tenant_id_from_request(request), category_id=category_id)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/needs")
def create_need(
    payload: NeedCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    require_site_admin(auth_from_request(request))
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/needs",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_need(tenant_id=tenant_id, payload=body),
    )
    return created(request, data)


@router.patch("/needs/{need_id}")
def update_need(need_id: str, payload: NeedUpdateRequest, request: Request):
    require_site_admin(auth_from_request(request))
    data = store.update_need(
        tenant_id=tenant_id_from_request(request),
        need_id=need_id,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/needs/{need_id}")
def delete_need(need_id: str, request: Request):
    require_site_admin(auth_from_request(request))
    return ok(request, store.delete_need(tenant_id=tenant_id_from_request(request), need_id=need_id))
