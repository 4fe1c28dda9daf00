from __future__ import annotations

from fastapi import APIRouter, Header, Request

from linksy.permissions import require_site_admin, require_tenant_admin
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import (
    CrisisKeywordCreateRequest,
    CrisisKeywordUpdateRequest,
    CrisisOverrideRequest,
    CrisisTestRequest,
)
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["crisis"])


@router.get("/crisis-keywords")
def list_crisis_keywords(request: Request, crisis_type: str | None = None):
    require_site_admin(auth_from_request(request))
    items = store.list_crisis_keywords(tenant_id=tenant_id_from_request(request), crisis_type=crisis_type)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/crisis-keywords")
def create_crisis_keyword(
    payload: CrisisKeywordCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_site_admin(auth)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/crisis-keywords",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_crisis_keyword(tenant_id=tenant_id, actor_id=auth.subject, payload=body),
    )
    return created(request, data)


@router.post("/crisis-keywords/test")
def test_crisis_keywords(payload: CrisisTestRequest, request: Request):
    require_site_admin(auth_from_request(request))
    tenant_id = payload.tenant_id or tenant_id_from_request(request)
    return ok(request, store.test_crisis_message(tenant_id=tenant_id, message=payload.message))


@router.patch("/crisis-keywords/{keyword_id}")
def update_crisis_keyword(keyword_id: str, payload: CrisisKeywordUpdateRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.update_crisis_keyword(
        tenant_id=tenant_id_from_request(request),
        keyword_id=keyword_id,
        actor_id=auth.subject,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/crisis-keywords/{keyword_id}")
def delete_crisis_keyword(keyword_id: str, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.delete_crisis_keyword(
        tenant_id=tenant_id_from_request(request),
        keyword_id=keyword_id,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.get("/hosts/{host_id}/crisis-overrides")
def list_crisis_overrides(host_id: str, request: Request):
    require_tenant_admin(auth_from_request(request))
    items = store.list_crisis_overrides(tenant_id=tenant_id_from_request(request), host_id=host_id)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/hosts/{host_id}/crisis-overrides")
def set_crisis_override(host_id: str, payload: CrisisOverrideRequest, request: Request):
    require_tenant_admin(auth_from_request(request))
    data = store.set_crisis_override(
        tenant_id=tenant_id_from_request(request),
        host_id=host_id,
        keyword_id=payload.keyword_id,
        action=payload.action,
    )
    return ok(request, data)


@router.delete("/hosts/{host_id}/crisis-overrides/{keyword_id}")
def delete_crisis_override(host_id: str, keyword_id: str, request: Request):
    require_tenant_admin(auth_from_request(request))
    data = store.delete_crisis_override(
        tenant_id=tenant_id_from_request(request),
        host_id=host_id,
        keyword_id=keyword_id,
    )
    return ok(request, data)
