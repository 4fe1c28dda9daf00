from __future__ import annotations

from fastapi import APIRouter, Header, Query, Request

from linksy.errors import forbidden
from linksy.permissions import (
    can_manage_provider,
    provider_contact_for,
    require_authenticated,
    require_site_admin,
    require_tenant_admin,
)
from linksy.routes._deps import auth_from_request, created, ok, run_mutation, tenant_id_from_request
from linksy.schemas import (
    TicketAssignRequest,
    TicketBulkUpdateRequest,
    TicketCommentRequest,
    TicketCreateRequest,
    TicketForwardRequest,
    TicketReassignRequest,
    TicketUpdateRequest,
)
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["tickets"])


def _visible_ticket(request: Request, ticket_id: str) -> dict:
    auth = auth_from_request(request)
    require_authenticated(auth)
    return store.get_ticket_detail(tenant_id=tenant_id_from_request(request), ticket_id=ticket_id, viewer=auth)


def _actor_type(request: Request, ticket: dict) -> str:
    """Resolve who is acting on a ticket, or refuse when they have no stake in it."""
    auth = auth_from_request(request)
    if auth.is_site_admin:
        return "site_admin"
    if auth.is_tenant_admin:
        return "tenant_admin"
    contacts = store.contacts_for_user(tenant_id=tenant_id_from_request(request), user_id=auth.subject)
    if provider_contact_for(auth, provider_id=ticket.get("provider_id"), contacts=contacts) is not None:
        return "provider_contact"
    if ticket.get("assigned_to") == auth.subject:
        return "provider_contact"
    raise forbidden("Provider access required")


@router.get("/tickets")
def list_tickets(
    request: Request,
    q: str | None = None,
    status: str | None = None,
    provider_id: str | None = None,
    need_id: str | None = None,
    date_from: str | None = None,
    date_to: str | None = None,
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    auth = auth_from_request(request)
    require_authenticated(auth)
    data = store.list_tickets(
        tenant_id=tenant_id_from_request(request),
        viewer=auth,
        q=q,
        status=status,
        provider_id=provider_id,
        need_id=need_id,
        date_from=date_from,
        date_to=date_to,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/tickets")
def create_ticket(
    payload: TicketCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_tenant_admin(auth)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/tickets",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_ticket(tenant_id=tenant_id, actor_id=auth.subject, payload=body),
    )
    return created(request, data)


@router.patch("/tickets/bulk")
def bulk_update_tickets(payload: TicketBulkUpdateRequest, request: Request):
    auth = auth_from_request(request)
    require_tenant_admin(auth)
    data = store.bulk_update_tickets(
        tenant_id=tenant_id_from_request(request),
        ids=payload.ids,
        status=payload.status,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.get("/tickets/{ticket_id}")
def get_ticket(ticket_id: str, request: Request):
    return ok(request, _visible_ticket(request, ticket_id))


@router.patch("/tickets/{ticket_id}")
def update_ticket(ticket_id: str, payload: TicketUpdateRequest, request: Request):
    ticket = _visible_ticket(request, ticket_id)
    data = store.update_ticket(
        tenant_id=tenant_id_from_request(request),
        ticket_id=ticket_id,
        actor_id=auth_from_request(request).subject,
        actor_type=_actor_type(request, ticket),
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.post("/tickets/{ticket_id}/assign")
def assign_ticket(ticket_id: str, payload: TicketAssignRequest, request: Request):
    auth = auth_from_request(request)
    require_authenticated(auth)
    tenant_id = tenant_id_from_request(request)
    ticket = store.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
    contacts = store.contacts_for_user(tenant_id=tenant_id, user_id=auth.subject)
    if not can_manage_provider(auth, provider_id=ticket.get("provider_id"), contacts=contacts):
        raise forbidden("Provider admin access required")
    data = store.assign_ticket(
        tenant_id=tenant_id,
        ticket_id=ticket_id,
        contact_id=payload.contact_id,
        actor_id=auth.subject,
        actor_type=_actor_type(request, ticket),
    )
    return ok(request, data)


@router.get("/tickets/{ticket_id}/comments")
def list_ticket_comments(ticket_id: str, request: Request):
    _visible_ticket(request, ticket_id)
    items = store.list_ticket_comments(
        tenant_id=tenant_id_from_request(request),
        ticket_id=ticket_id,
        viewer=auth_from_request(request),
    )
    return ok(request, {"items": items, "total": len(items)})


@router.post("/tickets/{ticket_id}/comments")
def add_ticket_comment(
    ticket_id: str,
    payload: TicketCommentRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    _visible_ticket(request, ticket_id)
    auth = auth_from_request(request)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint=f"POST:/api/v1/tickets/{ticket_id}/comments",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.add_ticket_comment(
            tenant_id=tenant_id,
            ticket_id=ticket_id,
            author=auth,
            content=payload.content,
            is_private=payload.is_private,
        ),
    )
    return created(request, data)


@router.get("/tickets/{ticket_id}/events")
def list_ticket_events(ticket_id: str, request: Request):
    _visible_ticket(request, ticket_id)
    items = store.list_ticket_events(tenant_id=tenant_id_from_request(request), ticket_id=ticket_id)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/tickets/{ticket_id}/forward")
def forward_ticket(ticket_id: str, payload: TicketForwardRequest, request: Request):
    auth = auth_from_request(request)
    require_authenticated(auth)
    tenant_id = tenant_id_from_request(request)
    ticket = store.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
    if auth.is_site_admin:
        actor_type = "site_admin"
    else:
        contacts = store.contacts_for_user(tenant_id=tenant_id, user_id=auth.subject)
        if provider_contact_for(auth, provider_id=ticket.get("provider_id"), contacts=contacts) is None:
            raise forbidden("Only contacts of the ticket's provider can forward it")
        actor_type = "provider_contact"
    data = store.forward_ticket(
        tenant_id=tenant_id,
        ticket_id=ticket_id,
        actor_id=auth.subject,
        actor_type=actor_type,
        payload=payload.model_dump(),
    )
    return ok(request, data)


@router.post("/admin/tickets/{ticket_id}/reassign")
def reassign_ticket(ticket_id: str, payload: TicketReassignRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.reassign_ticket(
        tenant_id=tenant_id_from_request(request),
        ticket_id=ticket_id,
        actor_id=auth.subject,
        payload=payload.model_dump(),
    )
    return ok(request, data)


@router.get("/admin/tickets/aging")
def ticket_aging(
    request: Request,
    threshold_hours: int = Query(default=48, ge=1),
    notify: bool = False,
    notify_user_ids: list[str] | None = Query(default=None),
):
    require_tenant_admin(auth_from_request(request))
    data = store.ticket_aging(
        tenant_id=tenant_id_from_request(request),
        threshold_hours=threshold_hours,
        notify=notify,
        notify_user_ids=notify_user_ids,
    )
    return ok(request, data)
