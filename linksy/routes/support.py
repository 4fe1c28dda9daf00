from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from linksy.permissions import require_authenticated, require_site_admin
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import SupportCommentRequest, SupportTicketCreateRequest, SupportTicketUpdateRequest
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["support"])


@router.get("/support-tickets")
def list_support_tickets(
    request: Request,
    status: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    auth = auth_from_request(request)
    require_authenticated(auth)
    data = store.list_support_tickets(
        tenant_id=tenant_id_from_request(request),
        viewer=auth,
        status=status,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/support-tickets")
def create_support_ticket(
    payload: SupportTicketCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_authenticated(auth)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/support-tickets",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_support_ticket(tenant_id=tenant_id, submitter=auth, payload=body),
    )
    return created(request, data)


@router.get("/support-tickets/{support_ticket_id}")
def get_support_ticket(support_ticket_id: str, request: Request):
    auth = auth_from_request(request)
    require_authenticated(auth)
    data = store.get_support_ticket(
        tenant_id=tenant_id_from_request(request),
        support_ticket_id=support_ticket_id,
        viewer=auth,
    )
    return ok(request, data)


@router.patch("/support-tickets/{support_ticket_id}")
def update_support_ticket(support_ticket_id: str, payload: SupportTicketUpdateRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.update_support_ticket(
        tenant_id=tenant_id_from_request(request),
        support_ticket_id=support_ticket_id,
        viewer=auth,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.post("/support-tickets/{support_ticket_id}/comments")
def add_support_comment(support_ticket_id: str, payload: SupportCommentRequest, request: Request):
    auth = auth_from_request(request)
    require_authenticated(auth)
    data = store.add_support_comment(
        tenant_id=tenant_id_from_request(request),
        support_ticket_id=support_ticket_id,
        author=auth,
        content=payload.content,
        is_internal=payload.is_internal,
    )
    return created(request, data)
