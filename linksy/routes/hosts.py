from __future__ import annotations

from fastapi import APIRouter, Request

from linksy.permissions import require_authenticated, require_tenant_admin
from linksy.routes._deps import auth_from_request, created, ok, tenant_id_from_request
from linksy.schemas import CustomFieldCreateRequest, CustomFieldUpdateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["hosts"])


@router.get("/hosts/{host_id}/custom-fields")
def list_custom_fields(host_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    items = store.list_custom_fields(tenant_id=tenant_id_from_request(request), host_id=host_id)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/hosts/{host_id}/custom-fields")
def create_custom_field(host_id: str, payload: CustomFieldCreateRequest, request: Request):
    require_tenant_admin(auth_from_request(request))
    data = store.create_custom_field(
        tenant_id=tenant_id_from_request(request),
        host_id=host_id,
        payload=payload.model_dump(),
    )
    return created(request, data)


@router.patch("/hosts/{host_id}/custom-fields/{field_id}")
def update_custom_field(host_id: str, field_id: str, payload: CustomFieldUpdateRequest, request: Request):
    require_tenant_admin(auth_from_request(request))
    data = store.update_custom_field(
        tenant_id=tenant_id_from_request(request),
        host_id=host_id,
        field_id=field_id,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/hosts/{host_id}/custom-fields/{field_id}")
def delete_custom_field(host_id: str, field_id: str, request: Request):
    require_tenant_admin(auth_from_request(request))
    data = store.delete_custom_field(
        tenant_id=tenant_id_from_request(request),
        host_id=host_id,
        field_id=field_id,
    )
    return ok(request, data)
