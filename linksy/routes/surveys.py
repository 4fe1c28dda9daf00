from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from linksy.permissions import require_authenticated
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import SurveyCreateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["surveys"])


@router.get("/surveys")
def list_surveys(
    request: Request,
    ticket_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    require_authenticated(auth_from_request(request))
    data = store.list_surveys(
        tenant_id=tenant_id_from_request(request),
        ticket_id=ticket_id,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/surveys")
def create_survey(
    payload: SurveyCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_authenticated(auth)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/surveys",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_survey(tenant_id=tenant_id, actor_id=auth.subject, payload=body),
    )
    return created(request, data)
