from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import re
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from linksy.errors import ApiError

USER_ROLES = ("site_admin", "tenant_admin", "user")
TENANT_ROLES = ("admin", "member")

REDACTED = "***REDACTED***"
_SENSITIVE_KEYS = frozenset(
    {
        "authorization",
        "cookie",
        "token",
        "secret",
        "password",
        "api_key",
        "apikey",
        "access_token",
        "refresh_token",
        "x-linksy-signature",
    }
)
# compact JWTs, bearer values, webhook secrets and provider API keys
_SECRET_VALUE_RE = re.compile(
    r"(^bearer\s+\S{16,})|(^[\w-]{10,}\.[\w-]{10,}\.[\w-]{10,}$)|(^(whsec_|sk-|AIza)\S{12,})",
    re.IGNORECASE,
)


def _csv(raw: str) -> list[str]:
    return [x.strip() for x in raw.split(",") if x.strip()]


def _env_flag(name: str, default: bool) -> bool:
    raw = os.environ.get(name, "").strip().lower()
    return default if not raw else raw in {"1", "true", "yes", "on"}


def _b64url_decode(raw: str) -> bytes:
    return base64.urlsafe_b64decode((raw + "=" * (-len(raw) % 4)).encode("ascii"))


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _numeric_date(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


def _unauthorized(message: str) -> ApiError:
    return ApiError(
        code="AUTH_UNAUTHORIZED",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=401,
    )


def redact_sensitive(value: object) -> object:
    """Mask credential-looking keys and values before they reach the audit log."""
    if isinstance(value, dict):
        return {
            str(key): REDACTED if str(key).lower() in _SENSITIVE_KEYS else redact_sensitive(item)
            for key, item in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact_sensitive(x) for x in value]
    if isinstance(value, str) and _SECRET_VALUE_RE.search(value.strip()):
        return REDACTED
    return value


def claim_value(claims: dict[str, Any], paths: list[str]) -> Any:
    """First non-empty claim among dotted paths such as ``app_metadata.role``."""
    for path in paths:
        node: Any = claims
        for part in path.split("."):
            node = node.get(part) if isinstance(node, dict) else None
        if node not in (None, ""):
            return node
    return None


@dataclass
class AuthContext:
    tenant_id: str
    subject: str
    role: str = "user"
    tenant_role: str = "member"
    email: str = ""
    name: str = ""
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def is_site_admin(self) -> bool:
        return self.role == "site_admin"

    @property
    def is_tenant_admin(self) -> bool:
        return self.role in {"site_admin", "tenant_admin"} or self.tenant_role == "admin"

    @classmethod
    def anonymous(cls, *, tenant_id: str) -> "AuthContext":
        return cls(tenant_id=tenant_id, subject="anonymous")


@dataclass
class JwtSecurityConfig:
    """Verification settings for HS256 tokens issued by the hosted auth provider.

    Verification is switched on as soon as any of issuer, audience or shared
    secret is configured. Tenant, role and name claims are looked up through
    comma separated dotted paths so both flat claims and ``app_metadata`` /
    ``user_metadata`` style tokens are accepted.
    """

    enabled: bool
    issuer: str
    audience: str
    shared_secret: str
    required_claims: list[str]
    tenant_claims: list[str]
    role_claims: list[str]
    tenant_role_claims: list[str]
    name_claims: list[str]
    leeway_seconds: int
    log_redaction_enabled: bool
    trace_id_strict_required: bool

    @classmethod
    def from_env(cls) -> "JwtSecurityConfig":
        env = os.environ
        issuer = env.get("JWT_ISSUER", "").strip()
        audience = env.get("JWT_AUDIENCE", "").strip()
        shared_secret = env.get("JWT_SHARED_SECRET", "").strip()
        try:
            leeway = max(0, int(env.get("JWT_LEEWAY_SECONDS", "0").strip() or 0))
        except ValueError:
            leeway = 0
        return cls(
            enabled=bool(issuer or audience or shared_secret),
            issuer=issuer,
            audience=audience,
            shared_secret=shared_secret,
            required_claims=_csv(env.get("JWT_REQUIRED_CLAIMS", "sub,exp")),
            tenant_claims=_csv(env.get("JWT_TENANT_CLAIM", "tenant_id,app_metadata.tenant_id")),
            role_claims=_csv(env.get("JWT_ROLE_CLAIM", "role,app_metadata.role")),
            tenant_role_claims=_csv(env.get("JWT_TENANT_ROLE_CLAIM", "tenant_role,app_metadata.tenant_role")),
            name_claims=_csv(env.get("JWT_NAME_CLAIM", "name,user_metadata.full_name")),
            leeway_seconds=leeway,
            log_redaction_enabled=_env_flag("SECURITY_LOG_REDACTION_ENABLED", True),
            trace_id_strict_required=_env_flag("TRACE_ID_STRICT_REQUIRED", False),
        )


def _bearer_token(authorization: str | None) -> str:
    if not authorization:
        raise _unauthorized("missing Authorization bearer token")
    scheme, _, token = authorization.partition(" ")
    if scheme != "Bearer":
        raise _unauthorized("invalid Authorization header")
    token = token.strip()
    if not token:
        raise _unauthorized("empty bearer token")
    return token


def _decode_segments(token: str) -> tuple[dict[str, Any], dict[str, Any], str, str]:
    segments = token.split(".")
    if len(segments) != 3:
        raise _unauthorized("invalid token format")
    try:
        header, claims = (json.loads(_b64url_decode(x)) for x in segments[:2])
    except (json.JSONDecodeError, ValueError, TypeError):
        raise _unauthorized("invalid token payload") from None
    if not isinstance(header, dict) or not isinstance(claims, dict):
        raise _unauthorized("invalid token payload")
    return header, claims, f"{segments[0]}.{segments[1]}", segments[2]


def _verify_signature(header: dict[str, Any], signing_input: str, signature: str, cfg: JwtSecurityConfig) -> None:
    if str(header.get("alg", "")).upper() != "HS256":
        raise _unauthorized("unsupported jwt algorithm")
    if not cfg.shared_secret:
        raise _unauthorized("jwt shared secret not configured")
    try:
        signing_bytes = signing_input.encode("ascii")
        signature_bytes = signature.encode("ascii")
    except UnicodeEncodeError:
        raise _unauthorized("invalid token signature") from None
    digest = hmac.new(cfg.shared_secret.encode("utf-8"), signing_bytes, hashlib.sha256).digest()
    if not hmac.compare_digest(_b64url_encode(digest).encode("ascii"), signature_bytes):
        raise _unauthorized("invalid token signature")


def _verify_registered_claims(claims: dict[str, Any], cfg: JwtSecurityConfig) -> None:
    now_ts = int(datetime.now(UTC).timestamp())
    exp = _numeric_date(claims.get("exp"))
    if exp is None or exp + cfg.leeway_seconds <= now_ts:
        raise _unauthorized("token expired")
    nbf = _numeric_date(claims.get("nbf"))
    if nbf is not None and nbf - cfg.leeway_seconds > now_ts:
        raise _unauthorized("token not yet valid")
    if cfg.issuer and str(claims.get("iss", "")) != cfg.issuer:
        raise _unauthorized("jwt issuer mismatch")
    if cfg.audience:
        aud = claims.get("aud")
        audiences = {str(x) for x in aud} if isinstance(aud, list) else {str(aud or "")}
        if cfg.audience not in audiences:
            raise _unauthorized("jwt audience mismatch")
    for claim in cfg.required_claims:
        if claim_value(claims, [claim]) is None:
            raise _unauthorized(f"missing required claim: {claim}")


def parse_and_validate_bearer_token(*, authorization: str | None, cfg: JwtSecurityConfig) -> AuthContext:
    header, claims, signing_input, signature = _decode_segments(_bearer_token(authorization))
    _verify_signature(header, signing_input, signature, cfg)
    _verify_registered_claims(claims, cfg)

    tenant_id = str(claim_value(claims, cfg.tenant_claims) or "").strip()
    subject = str(claims.get("sub") or "").strip()
    if not tenant_id or not subject:
        raise _unauthorized("missing tenant or subject claim")
    role = str(claim_value(claims, cfg.role_claims) or "user").strip()
    tenant_role = str(claim_value(claims, cfg.tenant_role_claims) or "member").strip()
    return AuthContext(
        tenant_id=tenant_id,
        subject=subject,
        role=role if role in USER_ROLES else "user",
        tenant_role=tenant_role if tenant_role in TENANT_ROLES else "member",
        email=str(claims.get("email") or ""),
        name=str(claim_value(claims, cfg.name_claims) or ""),
        claims=claims,
    )
