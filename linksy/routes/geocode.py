from __future__ import annotations

from fastapi import APIRouter, Request

from linksy.permissions import require_site_admin
from linksy.routes._deps import auth_from_request, ok, tenant_id_from_request
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["geocode"])


@router.get("/admin/geocode")
def geocode_status(request: Request):
    require_site_admin(auth_from_request(request))
    return ok(request, store.geocode_status(tenant_id=tenant_id_from_request(request)))


@router.post("/admin/geocode")
def run_geocode_batch(request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    return ok(request, store.run_geocode_batch(tenant_id=tenant_id_from_request(request), actor_id=auth.subject))
