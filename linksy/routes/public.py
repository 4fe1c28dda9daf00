from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from linksy.routes._deps import created, enforce_rate_limit, ok, run_mutation, tenant_id_from_request
from linksy.schemas import (
    CrisisCheckRequest,
    InteractionRequest,
    ProviderApplicationRequest,
    PublicTicketRequest,
    SurveyResponseRequest,
    WidgetSearchRequest,
)
from linksy.store import store

router = APIRouter(prefix="/api/v1/public", tags=["public"])

DEFAULT_HOST_TICKETS_PER_HOUR = 20


@router.get("/hosts/{slug}")
def get_host_config(slug: str, request: Request):
    return ok(request, store.public_host_config(slug=slug))


@router.post("/hosts/{slug}/search")
def widget_search(slug: str, payload: WidgetSearchRequest, request: Request):
    return ok(request, store.widget_search(slug=slug, payload=payload.model_dump()))


@router.post("/hosts/{slug}/tickets")
def create_public_ticket(
    slug: str,
    payload: PublicTicketRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    host = store.get_host_by_slug(slug=slug)
    settings = host.get("host_settings") or {}
    per_hour = int(settings.get("ticket_rate_limit_per_hour") or DEFAULT_HOST_TICKETS_PER_HOUR)
    body = payload.model_dump()

    # replays of a stored Idempotency-Key return before this runs and cost no quota
    def _create() -> dict:
        enforce_rate_limit(f"public_ticket:{host['provider_id']}", limit=per_hour, window_seconds=3600)
        return store.create_public_ticket(host=host, payload=body)

    data = run_mutation(
        request,
        endpoint=f"POST:/api/v1/public/hosts/{slug}/tickets",
        idempotency_key=idempotency_key,
        payload=body,
        execute=_create,
    )
    return created(request, data)


@router.get("/hosts/{slug}/directory")
def host_directory(
    slug: str,
    request: Request,
    q: str | None = None,
    sector: str | None = None,
    referral_type: str | None = None,
    lat: float | None = Query(default=None, ge=-90, le=90),
    lng: float | None = Query(default=None, ge=-180, le=180),
    radius_miles: float | None = Query(default=None, gt=0),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    data = store.host_directory(
        slug=slug,
        q=q,
        sector=sector,
        referral_type=referral_type,
        lat=lat,
        lng=lng,
        radius_miles=radius_miles,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/hosts/{slug}/crisis-check")
def crisis_check(slug: str, payload: CrisisCheckRequest, request: Request):
    return ok(request, store.host_crisis_check(slug=slug, message=payload.message))


@router.post("/hosts/{slug}/interactions")
def track_interaction(slug: str, payload: InteractionRequest, request: Request):
    host = store.get_host_by_slug(slug=slug)
    return created(request, store.record_interaction(host=host, payload=payload.model_dump()))


@router.get("/need-categories")
def public_need_categories(request: Request):
    items = store.list_need_categories(tenant_id=tenant_id_from_request(request), active_only=True)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/provider-applications")
def submit_provider_application(
    payload: ProviderApplicationRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/public/provider-applications",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_provider_application(tenant_id=tenant_id, payload=body),
    )
    return created(request, data)


@router.get("/surveys/{token}")
def get_public_survey(token: str, request: Request):
    return ok(request, store.get_public_survey(token=token))


@router.patch("/surveys/{token}")
def submit_survey(token: str, payload: SurveyResponseRequest, request: Request):
    return ok(request, store.submit_survey(token=token, rating=payload.rating, feedback=payload.feedback))
