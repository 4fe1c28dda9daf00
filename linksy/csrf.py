from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass
from urllib.parse import urlsplit

from linksy.errors import ApiError
from linksy.runtime_profile import env_flag

MUTATING_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def origin_of(url: str | None) -> str | None:
    if not url:
        return None
    parts = urlsplit(url.strip())
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme.lower()}://{parts.netloc.lower()}"


def _csrf_rejected(message: str) -> ApiError:
    return ApiError(
        code="CSRF_ORIGIN_INVALID",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
    )


@dataclass
class CsrfConfig:
    """Origin checks for state-changing calls made from the admin app.

    ``allowed_origins`` is the configured site URL plus the CORS allow list;
    the request's own host is always accepted over http and https.
    """

    enabled: bool
    allowed_origins: frozenset[str]

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CsrfConfig":
        env = os.environ if environ is None else environ
        candidates = [env.get("SITE_URL", "")]
        candidates.extend(env.get("CORS_ALLOW_ORIGINS", "").split(","))
        origins = {origin for origin in (origin_of(x) for x in candidates) if origin}
        return cls(
            enabled=env_flag(env, "CSRF_PROTECTION_ENABLED"),
            allowed_origins=frozenset(origins),
        )


def check_request_origin(*, method: str, headers: Mapping[str, str], cfg: CsrfConfig) -> None:
    if not cfg.enabled or method.upper() not in MUTATING_METHODS:
        return
    allowed = set(cfg.allowed_origins)
    host = headers.get("host", "").strip().lower()
    if host:
        allowed.update({f"https://{host}", f"http://{host}"})
    origin = headers.get("origin", "").strip()
    if origin:
        if origin_of(origin) not in allowed:
            raise _csrf_rejected("Invalid request origin")
        return
    referer = headers.get("referer", "").strip()
    if referer:
        if origin_of(referer) not in allowed:
            raise _csrf_rejected("Invalid request referer")
        return
    raise _csrf_rejected("Missing origin or referer header")
