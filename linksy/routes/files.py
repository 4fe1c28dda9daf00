from __future__ import annotations

from fastapi import APIRouter, File, Form, Query, Request, Response, UploadFile

from linksy.csv_export import content_disposition
from linksy.permissions import require_permission
from linksy.routes._deps import (
    auth_from_request,
    created,
    enforce_rate_limit_preset,
    ok,
    tenant_id_from_request,
)
from linksy.store import store

router = APIRouter(prefix="/api/v1", tags=["files"])


@router.post("/files")
async def upload_file(
    request: Request,
    file: UploadFile = File(...),
    folder: str | None = Form(default=None),
    is_shared: bool = Form(default=False),
):
    auth = auth_from_request(request)
    require_permission(auth, "files:write")
    enforce_rate_limit_preset(auth.subject, "upload")
    content = await file.read()
    data = store.upload_file(
        tenant_id=tenant_id_from_request(request),
        uploader=auth,
        filename=file.filename or "upload.bin",
        content=content,
        content_type=file.content_type,
        folder=folder,
        is_shared=is_shared,
    )
    return created(request, data)


@router.get("/files")
def list_files(request: Request, folder: str | None = None):
    auth = auth_from_request(request)
    require_permission(auth, "files:read")
    items = store.list_files(tenant_id=tenant_id_from_request(request), viewer=auth, folder=folder)
    return ok(request, {"items": items, "total": len(items)})


@router.get("/files/{file_id}")
def get_file(file_id: str, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "files:read")
    return ok(request, store.get_file(tenant_id=tenant_id_from_request(request), file_id=file_id, viewer=auth))


@router.get("/files/{file_id}/download")
def download_file(file_id: str, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "files:read")
    record, content = store.download_file(tenant_id=tenant_id_from_request(request), file_id=file_id, viewer=auth)
    filename = str(record.get("filename") or "download.bin")
    return Response(
        content=content,
        media_type=str(record.get("mime_type") or "application/octet-stream"),
        headers={"Content-Disposition": content_disposition(filename)},
    )


@router.get("/files/{file_id}/url")
def file_url(file_id: str, request: Request, expires_in: int = Query(default=3600, ge=60, le=7 * 24 * 3600)):
    auth = auth_from_request(request)
    require_permission(auth, "files:read")
    data = store.file_download_url(
        tenant_id=tenant_id_from_request(request),
        file_id=file_id,
        viewer=auth,
        expires_in=expires_in,
    )
    return ok(request, data)


@router.delete("/files/{file_id}")
def delete_file(file_id: str, request: Request):
    auth = auth_from_request(request)
    require_permission(auth, "files:write")
    return ok(request, store.delete_file(tenant_id=tenant_id_from_request(request), file_id=file_id, viewer=auth))
