from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from linksy.permissions import require_authenticated
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import CallLogCreateRequest, CallLogUpdateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["call-logs"])


@router.get("/call-logs")
def list_call_logs(
    request: Request,
    ticket_id: str | None = None,
    provider_id: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    require_authenticated(auth_from_request(request))
    data = store.list_call_logs(
        tenant_id=tenant_id_from_request(request),
        ticket_id=ticket_id,
        provider_id=provider_id,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/call-logs")
def create_call_log(
    payload: CallLogCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_authenticated(auth)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/call-logs",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_call_log(tenant_id=tenant_id, actor_id=auth.subject, payload=body),
    )
    return created(request, data)


@router.get("/call-logs/{call_log_id}")
def get_call_log(call_log_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    return ok(request, store.get_call_log(tenant_id=tenant_id_from_request(request), call_log_id=call_log_id))


@router.patch("/call-logs/{call_log_id}")
def update_call_log(call_log_id: str, payload: CallLogUpdateRequest, request: Request):
    require_authenticated(auth_from_request(request))
    data = store.update_call_log(
        tenant_id=tenant_id_from_request(request),
        call_log_id=call_log_id,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/call-logs/{call_log_id}")
def delete_call_log(call_log_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    return ok(request, store.delete_call_log(tenant_id=tenant_id_from_request(request), call_log_id=call_log_id))
