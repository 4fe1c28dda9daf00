from __future__ import annotations

import logging
import uuid
from collections.abc import Callable
from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse

from linksy.errors import rate_limited
from linksy.rate_limit import rate_limiter
from linksy.schemas import error_envelope, success_envelope
from linksy.security import AuthContext, redact_sensitive
from linksy.store import store

logger = logging.getLogger(__name__)


def trace_id_from_request(request: Request) -> str:
    trace_id = getattr(request.state, "trace_id", None)
    if trace_id:
        return trace_id
    return uuid.uuid4().hex


def tenant_id_from_request(request: Request) -> str:
    tenant_id = getattr(request.state, "tenant_id", None)
    if tenant_id:
        return tenant_id
    return "tenant_default"


def request_id_from_request(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return request_id
    return f"req_{uuid.uuid4().hex[:12]}"


def auth_from_request(request: Request) -> AuthContext:
    auth = getattr(request.state, "auth", None)
    if isinstance(auth, AuthContext):
        return auth
    return AuthContext.anonymous(tenant_id=tenant_id_from_request(request))


def client_ip_from_request(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for", "")
    if forwarded.strip():
        return forwarded.split(",")[0].strip()
    real_ip = request.headers.get("x-real-ip", "").strip()
    if real_ip:
        return real_ip
    if request.client is not None and request.client.host:
        return request.client.host
    return "unknown"


def enforce_rate_limit(identifier: str, *, limit: int, window_seconds: int) -> None:
    result = rate_limiter.check(identifier, limit=limit, window_seconds=window_seconds)
    if not result.success:
        raise rate_limited(
            "Too many requests. Please try again later.",
            details={"limit": result.limit, "reset": result.reset},
            headers=result.headers(),
        )


def enforce_rate_limit_preset(identifier: str, preset: str) -> None:
    result = rate_limiter.check_preset(identifier, preset)
    if not result.success:
        raise rate_limited(
            "Too many requests. Please try again later.",
            details={"limit": result.limit, "reset": result.reset},
            headers=result.headers(),
        )


def ok(request: Request, data: Any) -> dict[str, Any]:
    return success_envelope(data, trace_id_from_request(request))


def created(request: Request, data: Any) -> JSONResponse:
    return JSONResponse(
        status_code=201,
        content=success_envelope(data, trace_id_from_request(request)),
    )


def run_mutation(
    request: Request,
    *,
    endpoint: str,
    idempotency_key: str | None,
    payload: dict[str, Any],
    execute: Callable[[], dict[str, Any]],
) -> dict[str, Any]:
    """Run ``execute`` once per Idempotency-Key when the header is present."""
    if not idempotency_key:
        return execute()
    return store.run_idempotent(
        endpoint=endpoint,
        tenant_id=tenant_id_from_request(request),
        idempotency_key=idempotency_key,
        payload=payload,
        execute=execute,
    )


def error_response(
    request: Request,
    *,
    code: str,
    message: str,
    error_class: str,
    retryable: bool,
    status_code: int,
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    response = JSONResponse(
        status_code=status_code,
        content=error_envelope(
            code=code,
            message=message,
            error_class=error_class,
            retryable=retryable,
            trace_id=trace_id_from_request(request),
            details=details,
        ),
    )
    for name, value in (headers or {}).items():
        response.headers[name] = value
    return response


def append_security_audit_log(
    *,
    request: Request,
    action: str,
    code: str,
    detail: str,
) -> None:
    security_cfg = request.app.state.security_cfg
    headers_obj = dict(request.headers.items())
    headers_payload = redact_sensitive(headers_obj) if security_cfg.log_redaction_enabled else headers_obj
    try:
        store._append_audit_log(
            log={
                "tenant_id": tenant_id_from_request(request),
                "actor_id": getattr(request.state, "auth_subject", "anonymous"),
                "action": action,
                "resource_type": "security",
                "resource_id": None,
                "details": {
                    "error_code": code,
                    "detail": detail,
                    "path": request.url.path,
                    "method": request.method,
                    "headers": headers_payload,
                },
                "trace_id": trace_id_from_request(request),
            }
        )
    except Exception:
        logger.warning("security audit append failed code=%s path=%s", code, request.url.path, exc_info=True)
