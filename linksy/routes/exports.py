from __future__ import annotations

from typing import Literal

from fastapi import APIRouter, Request, Response

from linksy.csv_export import content_disposition
from linksy.permissions import require_site_admin
from linksy.routes._deps import auth_from_request, tenant_id_from_request
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["exports"])


def _csv_response(filename: str, body: str) -> Response:
    return Response(
        content=body,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.get("/admin/export/referrals")
def export_referrals(
    request: Request,
    status: Literal["all", "open", "closed"] = "all",
    include_legacy: bool = True,
    date_from: str | None = None,
    date_to: str | None = None,
):
    require_site_admin(auth_from_request(request))
    filename, body = store.export_referrals_csv(
        tenant_id=tenant_id_from_request(request),
        status=status,
        include_legacy=include_legacy,
        date_from=date_from,
        date_to=date_to,
    )
    return _csv_response(filename, body)


@router.get("/admin/export/providers")
def export_providers(request: Request):
    require_site_admin(auth_from_request(request))
    filename, body = store.export_providers_csv(tenant_id=tenant_id_from_request(request))
    return _csv_response(filename, body)


@router.get("/admin/export/call-logs")
def export_call_logs(request: Request):
    require_site_admin(auth_from_request(request))
    filename, body = store.export_call_logs_csv(tenant_id=tenant_id_from_request(request))
    return _csv_response(filename, body)


@router.get("/admin/export/surveys")
def export_surveys(request: Request):
    require_site_admin(auth_from_request(request))
    filename, body = store.export_surveys_csv(tenant_id=tenant_id_from_request(request))
    return _csv_response(filename, body)
