from __future__ import annotations

from fastapi import APIRouter, Query, Request

from linksy.permissions import require_site_admin, require_tenant_admin
from linksy.routes._deps import auth_from_request, ok, tenant_id_from_request
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["stats"])


@router.get("/stats/overview")
def stats_overview(request: Request):
    require_tenant_admin(auth_from_request(request))
    return ok(request, store.stats_overview(tenant_id=tenant_id_from_request(request)))


@router.get("/stats/freshness")
def stats_freshness(request: Request, limit: int = Query(default=50, ge=1, le=500)):
    require_tenant_admin(auth_from_request(request))
    return ok(request, store.stats_freshness(tenant_id=tenant_id_from_request(request), limit=limit))


@router.get("/stats/sla")
def stats_sla(request: Request, provider_id: str | None = None):
    require_tenant_admin(auth_from_request(request))
    return ok(request, store.sla_stats(tenant_id=tenant_id_from_request(request), provider_id=provider_id))


@router.get("/stats/search-analytics")
def search_analytics(request: Request):
    require_tenant_admin(auth_from_request(request))
    return ok(request, store.search_analytics(tenant_id=tenant_id_from_request(request)))


@router.get("/admin/reports/reassignments")
def reassignment_report(request: Request, date_from: str | None = None, date_to: str | None = None):
    require_site_admin(auth_from_request(request))
    data = store.reassignment_report(
        tenant_id=tenant_id_from_request(request),
        date_from=date_from,
        date_to=date_to,
    )
    return ok(request, data)
