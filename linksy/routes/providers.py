from __future__ import annotations

from fastapi import APIRouter, File, Header, Query, Request, UploadFile

from linksy.permissions import (
    require_authenticated,
    require_provider_access,
    require_site_admin,
    require_tenant_admin,
)
from linksy.routes._deps import (
    auth_from_request,
    created,
    enforce_rate_limit_preset,
    ok,
    run_mutation,
    tenant_id_from_request,
)
from linksy.schemas import (
    ApplicationReviewRequest,
    ContactCreateRequest,
    ContactUpdateRequest,
    EventCreateRequest,
    EventReviewRequest,
    LocationCreateRequest,
    LocationUpdateRequest,
    NoteCreateRequest,
    NoteUpdateRequest,
    ProviderCreateRequest,
    ProviderNeedsRequest,
    ProviderUpdateRequest,
    SetParentRequest,
)
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["providers"])


def _require_provider(request: Request, provider_id: str, *, manage: bool = False) -> None:
    auth = auth_from_request(request)
    require_authenticated(auth)
    tenant_id = tenant_id_from_request(request)
    store.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
    require_provider_access(
        auth,
        provider_id=provider_id,
        contacts=store.contacts_for_user(tenant_id=tenant_id, user_id=auth.subject),
        manage=manage,
    )


@router.get("/providers")
def list_providers(
    request: Request,
    q: str | None = None,
    sector: str | None = None,
    status: str = "active",
    referral_type: str | None = None,
    is_host: bool | None = None,
    lat: float | None = Query(default=None, ge=-90, le=90),
    lng: float | None = Query(default=None, ge=-180, le=180),
    radius_miles: float | None = Query(default=None, gt=0),
    limit: int = Query(default=50, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
):
    require_authenticated(auth_from_request(request))
    data = store.list_providers(
        tenant_id=tenant_id_from_request(request),
        q=q,
        sector=sector,
        status=status,
        referral_type=referral_type,
        is_host=is_host,
        lat=lat,
        lng=lng,
        radius_miles=radius_miles,
        limit=limit,
        offset=offset,
    )
    return ok(request, data)


@router.post("/providers")
def create_provider(
    payload: ProviderCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    auth = auth_from_request(request)
    require_tenant_admin(auth)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint="POST:/api/v1/providers",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_provider(tenant_id=tenant_id, actor_id=auth.subject, payload=body),
    )
    return created(request, data)


@router.get("/providers/{provider_id}")
def get_provider(provider_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    return ok(request, store.get_provider_detail(tenant_id=tenant_id_from_request(request), provider_id=provider_id))


@router.patch("/providers/{provider_id}")
def update_provider(provider_id: str, payload: ProviderUpdateRequest, request: Request):
    _require_provider(request, provider_id, manage=True)
    data = store.update_provider(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        actor_id=auth_from_request(request).subject,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/providers/{provider_id}")
def delete_provider(provider_id: str, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.delete_provider(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.post("/providers/{provider_id}/set-parent")
def set_parent(provider_id: str, payload: SetParentRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.set_provider_parent(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        parent_provider_id=payload.parent_provider_id,
        actor_id=auth.subject,
    )
    return ok(request, data)


@router.get("/providers/{provider_id}/children")
def list_children(provider_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    items = store.list_provider_children(tenant_id=tenant_id_from_request(request), provider_id=provider_id)
    return ok(request, {"items": items, "total": len(items)})


@router.get("/providers/{provider_id}/parent-stats")
def parent_stats(provider_id: str, request: Request):
    _require_provider(request, provider_id)
    return ok(request, store.get_parent_stats(tenant_id=tenant_id_from_request(request), provider_id=provider_id))


@router.get("/providers/{provider_id}/analytics")
def provider_analytics(provider_id: str, request: Request):
    _require_provider(request, provider_id)
    return ok(request, store.provider_analytics(tenant_id=tenant_id_from_request(request), provider_id=provider_id))


# Locations


@router.get("/providers/{provider_id}/locations")
def list_locations(provider_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    items = store.list_locations(tenant_id=tenant_id_from_request(request), provider_id=provider_id)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/providers/{provider_id}/locations")
def create_location(
    provider_id: str,
    payload: LocationCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    _require_provider(request, provider_id, manage=True)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint=f"POST:/api/v1/providers/{provider_id}/locations",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_location(tenant_id=tenant_id, provider_id=provider_id, payload=body),
    )
    return created(request, data)


@router.patch("/providers/{provider_id}/locations/{location_id}")
def update_location(provider_id: str, location_id: str, payload: LocationUpdateRequest, request: Request):
    _require_provider(request, provider_id, manage=True)
    data = store.update_location(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        location_id=location_id,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/providers/{provider_id}/locations/{location_id}")
def delete_location(provider_id: str, location_id: str, request: Request):
    _require_provider(request, provider_id, manage=True)
    data = store.delete_location(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        location_id=location_id,
    )
    return ok(request, data)


# Contacts


@router.get("/providers/{provider_id}/contacts")
def list_contacts(provider_id: str, request: Request, include_archived: bool = False):
    _require_provider(request, provider_id)
    items = store.list_contacts(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        include_archived=include_archived,
    )
    return ok(request, {"items": items, "total": len(items)})


@router.post("/providers/{provider_id}/contacts")
def create_contact(
    provider_id: str,
    payload: ContactCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    _require_provider(request, provider_id, manage=True)
    tenant_id = tenant_id_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint=f"POST:/api/v1/providers/{provider_id}/contacts",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_contact(tenant_id=tenant_id, provider_id=provider_id, payload=body),
    )
    return created(request, data)


@router.patch("/providers/{provider_id}/contacts/{contact_id}")
def update_contact(provider_id: str, contact_id: str, payload: ContactUpdateRequest, request: Request):
    _require_provider(request, provider_id, manage=True)
    data = store.update_contact(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        contact_id=contact_id,
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/providers/{provider_id}/contacts/{contact_id}")
def archive_contact(provider_id: str, contact_id: str, request: Request):
    _require_provider(request, provider_id, manage=True)
    data = store.archive_contact(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        contact_id=contact_id,
    )
    return ok(request, data)


@router.post("/providers/{provider_id}/contacts/{contact_id}/set-default-handler")
def set_default_handler(provider_id: str, contact_id: str, request: Request):
    _require_provider(request, provider_id, manage=True)
    data = store.set_default_handler(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        contact_id=contact_id,
    )
    return ok(request, data)


# Notes


@router.get("/providers/{provider_id}/notes")
def list_notes(provider_id: str, request: Request):
    _require_provider(request, provider_id)
    items = store.list_notes(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        viewer=auth_from_request(request),
    )
    return ok(request, {"items": items, "total": len(items)})


@router.post("/providers/{provider_id}/notes")
def create_note(
    provider_id: str,
    payload: NoteCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    _require_provider(request, provider_id)
    tenant_id = tenant_id_from_request(request)
    auth = auth_from_request(request)
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint=f"POST:/api/v1/providers/{provider_id}/notes",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_note(tenant_id=tenant_id, provider_id=provider_id, author=auth, payload=body),
    )
    return created(request, data)


@router.patch("/providers/{provider_id}/notes/{note_id}")
def update_note(provider_id: str, note_id: str, payload: NoteUpdateRequest, request: Request):
    _require_provider(request, provider_id)
    data = store.update_note(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        note_id=note_id,
        viewer=auth_from_request(request),
        payload=payload.model_dump(exclude_unset=True),
    )
    return ok(request, data)


@router.delete("/providers/{provider_id}/notes/{note_id}")
def delete_note(provider_id: str, note_id: str, request: Request):
    _require_provider(request, provider_id)
    data = store.delete_note(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        note_id=note_id,
        viewer=auth_from_request(request),
    )
    return ok(request, data)


@router.post("/providers/{provider_id}/notes/{note_id}/attachments")
async def upload_note_attachment(
    provider_id: str,
    note_id: str,
    request: Request,
    file: UploadFile = File(...),
):
    _require_provider(request, provider_id)
    auth = auth_from_request(request)
    enforce_rate_limit_preset(auth.subject, "upload")
    content = await file.read()
    data = store.add_note_attachment(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        note_id=note_id,
        viewer=auth,
        filename=file.filename or "attachment.bin",
        content=content,
        content_type=file.content_type,
    )
    return created(request, data)


# Events


@router.get("/providers/{provider_id}/events")
def list_provider_events(provider_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    items = store.list_provider_events(tenant_id=tenant_id_from_request(request), provider_id=provider_id)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/providers/{provider_id}/events")
def create_provider_event(
    provider_id: str,
    payload: EventCreateRequest,
    request: Request,
    idempotency_key: str | None = Header(default=None, alias="Idempotency-Key"),
):
    _require_provider(request, provider_id)
    tenant_id = tenant_id_from_request(request)
    actor_id = auth_from_request(request).subject
    body = payload.model_dump()
    data = run_mutation(
        request,
        endpoint=f"POST:/api/v1/providers/{provider_id}/events",
        idempotency_key=idempotency_key,
        payload=body,
        execute=lambda: store.create_provider_event(
            tenant_id=tenant_id,
            provider_id=provider_id,
            actor_id=actor_id,
            payload=body,
        ),
    )
    return created(request, data)


@router.get("/admin/events")
def list_events_admin(request: Request, status: str | None = None):
    require_site_admin(auth_from_request(request))
    items = store.list_events_admin(tenant_id=tenant_id_from_request(request), status=status)
    return ok(request, {"items": items, "total": len(items)})


@router.post("/admin/events/{event_id}/approve")
def approve_event(event_id: str, request: Request, payload: EventReviewRequest | None = None):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.review_provider_event(
        tenant_id=tenant_id_from_request(request),
        event_id=event_id,
        approve=True,
        reviewer_id=auth.subject,
        notes=payload.notes if payload else None,
    )
    return ok(request, data)


@router.post("/admin/events/{event_id}/reject")
def reject_event(event_id: str, request: Request, payload: EventReviewRequest | None = None):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.review_provider_event(
        tenant_id=tenant_id_from_request(request),
        event_id=event_id,
        approve=False,
        reviewer_id=auth.subject,
        notes=payload.notes if payload else None,
    )
    return ok(request, data)


# Needs offered


@router.get("/providers/{provider_id}/needs")
def list_provider_needs(provider_id: str, request: Request):
    require_authenticated(auth_from_request(request))
    items = store.list_provider_needs(tenant_id=tenant_id_from_request(request), provider_id=provider_id)
    return ok(request, {"items": items, "total": len(items)})


@router.put("/providers/{provider_id}/needs")
def set_provider_needs(provider_id: str, payload: ProviderNeedsRequest, request: Request):
    _require_provider(request, provider_id, manage=True)
    items = store.set_provider_needs(
        tenant_id=tenant_id_from_request(request),
        provider_id=provider_id,
        need_ids=payload.need_ids,
    )
    return ok(request, {"items": items, "total": len(items)})


# Applications


@router.get("/admin/provider-applications")
def list_applications(request: Request, status: str | None = None):
    require_site_admin(auth_from_request(request))
    items = store.list_provider_applications(tenant_id=tenant_id_from_request(request), status=status)
    return ok(request, {"items": items, "total": len(items)})


@router.get("/admin/provider-applications/{application_id}")
def get_application(application_id: str, request: Request):
    require_site_admin(auth_from_request(request))
    data = store.get_provider_application(tenant_id=tenant_id_from_request(request), application_id=application_id)
    return ok(request, data)


@router.patch("/admin/provider-applications/{application_id}")
def review_application(application_id: str, payload: ApplicationReviewRequest, request: Request):
    auth = auth_from_request(request)
    require_site_admin(auth)
    data = store.review_provider_application(
        tenant_id=tenant_id_from_request(request),
        application_id=application_id,
        action=payload.action,
        notes=payload.notes,
        reviewer_id=auth.subject,
    )
    return ok(request, data)
