from __future__ import annotations

from typing import Any


class ApiError(Exception):
    def __init__(
        self,
        *,
        code: str,
        message: str,
        error_class: str,
        retryable: bool,
        http_status: int,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.error_class = error_class
        self.retryable = retryable
        self.http_status = http_status
        self.details = details
        self.headers = headers or {}


def not_found(code: str, message: str) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=404,
    )


def invalid(message: str, *, code: str = "REQ_VALIDATION_FAILED", details: dict[str, Any] | None = None) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="validation",
        retryable=False,
        http_status=400,
        details=details,
    )


def forbidden(message: str) -> ApiError:
    return ApiError(
        code="AUTH_FORBIDDEN",
        message=message,
        error_class="security_sensitive",
        retryable=False,
        http_status=403,
    )


def conflict(code: str, message: str, *, details: dict[str, Any] | None = None) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="business_rule",
        retryable=False,
        http_status=409,
        details=details,
    )


def rate_limited(
    message: str,
    *,
    code: str = "RATE_LIMITED",
    details: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> ApiError:
    return ApiError(
        code=code,
        message=message,
        error_class="rate_limited",
        retryable=True,
        http_status=429,
        details=details,
        headers=headers,
    )
