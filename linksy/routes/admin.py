from __future__ import annotations

from fastapi import APIRouter, Query, Request

from linksy.permissions import require_site_admin, require_tenant_admin
from linksy.routes._deps import auth_from_request, ok, tenant_id_from_request
from linksy.schemas import ContactMergeRequest, ProviderBulkStatusRequest, ProviderMergeRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])


@router.get("/providers/duplicates")
def provider_duplicates(
    request: Request,
    threshold: float = Query(default=0.7, ge=0, le=1),
    limit: int = Query(default=50, ge=1, le=200),
):
    require_site_admin(auth_from_request(request))
    data = store.find_duplicate_providers(
        tenant_id=tenant_id_from_request(request),
        threshold=threshold,
        limit=limit,
    )
    return ok(request, data)


@router.post("/providers/merge")
def merge_providers(payload: ProviderMergeRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.merge_providers(
        tenant_id=tenant_id_from_request(request),
        primary_id=payload.primary_provider_id,
        merge_id=payload.merge_provider_id,
        field_choices=payload.field_choices,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.patch("/providers/bulk")
def bulk_update_providers(payload: ProviderBulkStatusRequest, request: Request):
    auth = auth_from_request(request)
    require_tenant_admin(auth)
    data = store.bulk_update_providers(
        tenant_id=tenant_id_from_request(request),
        ids=payload.ids,
        status=payload.status,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.delete("/providers/{provider_id}/purge")
def purge_provider(provider_id: str, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.purge_provider(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.get("/contacts/duplicates")
def contact_duplicates(request: Request, provider_id: str = ""):
    require_site_admin(auth_from_request(request))
    data = store.find_duplicate_contacts(tenant_id=tenant_id_from_request(request), provider_id=provider_id)
    return ok(request, data)


@router.post("/contacts/merge")
def merge_contacts(payload: ContactMergeRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.merge_contacts(
        tenant_id=tenant_id_from_request(request),
        provider_id=payload.provider_id,
        primary_contact_id=payload.primary_contact_id,
        merge_contact_id=payload.merge_contact_id,
        actor_id=auth.subject,
    )
    return ok(request, data)
