from __future__ import annotations

import os
import uuid

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

from linksy.csrf import CsrfConfig, check_request_origin
from linksy.errors import ApiError
from linksy.routes import (
    admin,
    audit,
    call_logs,
    crisis,
    exports,
    files,
    geocode,
    hosts,
    notifications,
    providers,
    public,
    stats,
    support,
    surveys,
    taxonomy,
    tenants,
    tickets,
    webhooks,
)
from linksy.routes._deps import (
    append_security_audit_log,
    client_ip_from_request,
    enforce_rate_limit,
    error_response,
    request_id_from_request,
    trace_id_from_request,
)
from linksy.schemas import success_envelope
from linksy.security import (
    TENANT_ROLES,
    USER_ROLES,
    AuthContext,
    JwtSecurityConfig,
    parse_and_validate_bearer_token,
)

SECURITY_AUDITED_CODES = {
    "AUTH_UNAUTHORIZED",
    "AUTH_FORBIDDEN",
    "TENANT_SCOPE_VIOLATION",
    "CSRF_ORIGIN_INVALID",
}


def _public_rate_limit_per_minute() -> int:
    raw = os.environ.get("RATE_LIMIT_PUBLIC_PER_MINUTE", "").strip()
    try:
        return max(1, int(raw)) if raw else 100
    except ValueError:
        return 100


def _header_auth_context(request: Request) -> AuthContext:
    """Identity taken from plain headers when JWT verification is switched off."""
    role = request.headers.get("x-user-role", "user").strip()
    tenant_role = request.headers.get("x-tenant-role", "member").strip()
    return AuthContext(
        tenant_id=request.headers.get("x-tenant-id", "").strip() or "tenant_default",
        subject=request.headers.get("x-user-id", "").strip() or "local_user",
        role=role if role in USER_ROLES else "user",
        tenant_role=tenant_role if tenant_role in TENANT_ROLES else "member",
        email=request.headers.get("x-user-email", "").strip(),
    )


def _is_private_api(path: str) -> bool:
    return path.startswith("/api/v1/") and path != "/api/v1/health"


def _resolve_auth(request: Request, security_cfg: JwtSecurityConfig, public_per_minute: int) -> AuthContext:
    requested_tenant = request.headers.get("x-tenant-id", "").strip()
    path = request.url.path
    if path.startswith("/api/v1/public/"):
        enforce_rate_limit(
            f"public:{client_ip_from_request(request)}",
            limit=public_per_minute,
            window_seconds=60,
        )
        return AuthContext.anonymous(tenant_id=requested_tenant or "tenant_default")
    if not (security_cfg.enabled and _is_private_api(path)):
        return _header_auth_context(request)
    ctx = parse_and_validate_bearer_token(authorization=request.headers.get("Authorization"), cfg=security_cfg)
    # a rejected tenant switch is audited against the caller's own tenant
    request.state.auth_subject = ctx.subject
    request.state.tenant_id = ctx.tenant_id
    if requested_tenant and requested_tenant != ctx.tenant_id:
        if not ctx.is_site_admin:
            raise ApiError(
                code="TENANT_SCOPE_VIOLATION",
                message="tenant mismatch",
                error_class="security_sensitive",
                retryable=False,
                http_status=403,
            )
        # site admins act on the tenant named in the header
        ctx.tenant_id = requested_tenant
    return ctx


def _api_error_response(request: Request, exc: ApiError) -> JSONResponse:
    if exc.code in SECURITY_AUDITED_CODES:
        append_security_audit_log(request=request, action="security_blocked", code=exc.code, detail=exc.message)
    return error_response(
        request,
        code=exc.code,
        message=exc.message,
        error_class=exc.error_class,
        retryable=exc.retryable,
        status_code=exc.http_status,
        details=exc.details,
        headers=exc.headers,
    )


def _stamp_ids(request: Request, response: Response) -> Response:
    response.headers["x-trace-id"] = trace_id_from_request(request)
    response.headers["x-request-id"] = request_id_from_request(request)
    return response


def create_app() -> FastAPI:
    app = FastAPI(title="Linksy Referral API", version="0.1.0")
    security_cfg = JwtSecurityConfig.from_env()
    app.state.security_cfg = security_cfg
    csrf_cfg = CsrfConfig.from_env()
    public_per_minute = _public_rate_limit_per_minute()
    cors_origins = os.environ.get("CORS_ALLOW_ORIGINS", "http://127.0.0.1:5173,http://localhost:5173")
    allow_origins = [x.strip() for x in cors_origins.split(",") if x.strip()]
    if allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=allow_origins,
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    @app.middleware("http")
    async def bind_request_context(request: Request, call_next):
        incoming_trace_id = request.headers.get("x-trace-id", "").strip()
        request.state.trace_id = incoming_trace_id or uuid.uuid4().hex
        request.state.request_id = request.headers.get("x-request-id", f"req_{uuid.uuid4().hex[:12]}")
        request.state.auth_subject = "anonymous"
        if security_cfg.trace_id_strict_required and _is_private_api(request.url.path) and not incoming_trace_id:
            response = error_response(
                request,
                code="TRACE_ID_REQUIRED",
                message="x-trace-id header is required",
                error_class="validation",
                retryable=False,
                status_code=400,
            )
            return _stamp_ids(request, response)
        try:
            if _is_private_api(request.url.path) and not request.url.path.startswith("/api/v1/public/"):
                check_request_origin(method=request.method, headers=request.headers, cfg=csrf_cfg)
            auth_ctx = _resolve_auth(request, security_cfg, public_per_minute)
        except ApiError as exc:
            return _stamp_ids(request, _api_error_response(request, exc))
        request.state.auth = auth_ctx
        request.state.auth_subject = auth_ctx.subject
        request.state.tenant_id = auth_ctx.tenant_id
        return _stamp_ids(request, await call_next(request))

    @app.exception_handler(ApiError)
    async def handle_api_error(request: Request, exc: ApiError):
        return _api_error_response(request, exc)

    @app.exception_handler(RequestValidationError)
    async def handle_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {"loc": [str(x) for x in err.get("loc", ())], "message": str(err.get("msg", ""))}
            for err in exc.errors()
        ]
        return error_response(
            request,
            code="REQ_VALIDATION_FAILED",
            message="invalid payload",
            error_class="validation",
            retryable=False,
            status_code=400,
            details={"errors": errors},
        )

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return error_response(
                request,
                code="REQ_NOT_FOUND",
                message="resource not found",
                error_class="validation",
                retryable=False,
                status_code=404,
            )
        return error_response(
            request,
            code="REQ_HTTP_ERROR",
            message=str(exc.detail),
            error_class="validation",
            retryable=False,
            status_code=exc.status_code,
        )

    @app.get("/healthz")
    def healthz(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    @app.get("/api/v1/health")
    def health_api(request: Request) -> dict[str, object]:
        return success_envelope({"status": "ok"}, trace_id_from_request(request))

    for module in (
        tenants,
        admin,
        providers,
        taxonomy,
        tickets,
        stats,
        crisis,
        hosts,
        surveys,
        call_logs,
        support,
        webhooks,
        notifications,
        audit,
        exports,
        geocode,
        files,
        public,
    ):
        app.include_router(module.router)
    return app


app = create_app()
