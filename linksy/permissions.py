from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from linksy.errors import ApiError, forbidden
from linksy.security import AuthContext

SITE_ADMIN_PERMISSIONS: tuple[str, ...] = (
    "tenants:read",
    "tenants:write",
    "tenants:delete",
    "users:read",
    "users:write",
    "users:invite",
    "users:delete",
    "modules:read",
    "modules:write",
    "settings:read",
    "settings:write",
    "branding:read",
    "branding:write",
    "files:read",
    "files:write",
    "files:delete",
    "audit:read",
    "notifications:read",
    "notifications:write",
)

TENANT_ADMIN_PERMISSIONS: tuple[str, ...] = (
    "users:read",
    "users:write",
    "users:invite",
    "users:delete",
    "settings:read",
    "settings:write",
    "branding:read",
    "branding:write",
    "files:read",
    "files:write",
    "files:delete",
    "audit:read",
    "notifications:read",
    "notifications:write",
)

MEMBER_PERMISSIONS: tuple[str, ...] = (
    "settings:read",
    "files:read",
    "files:write",
    "notifications:read",
    "notifications:write",
)


def get_permissions(role: str, tenant_role: str | None = None) -> tuple[str, ...]:
    if role == "site_admin":
        return SITE_ADMIN_PERMISSIONS
    if role == "tenant_admin" or tenant_role == "admin":
        return TENANT_ADMIN_PERMISSIONS
    return MEMBER_PERMISSIONS


def has_permission(role: str, tenant_role: str | None, permission: str) -> bool:
    return permission in get_permissions(role, tenant_role)


def has_any_permission(role: str, tenant_role: str | None, permissions: Iterable[str]) -> bool:
    granted = get_permissions(role, tenant_role)
    return any(p in granted for p in permissions)


def has_all_permissions(role: str, tenant_role: str | None, permissions: Iterable[str]) -> bool:
    granted = get_permissions(role, tenant_role)
    return all(p in granted for p in permissions)


def require_authenticated(auth: AuthContext) -> None:
    if auth.subject == "anonymous":
        raise ApiError(
            code="AUTH_UNAUTHORIZED",
            message="Unauthorized",
            error_class="security_sensitive",
            retryable=False,
            http_status=401,
        )


def require_site_admin(auth: AuthContext) -> None:
    if not auth.is_site_admin:
        raise forbidden("Site admin access required")


def require_tenant_admin(auth: AuthContext) -> None:
    if not auth.is_tenant_admin:
        raise forbidden("Tenant admin access required")


def require_permission(auth: AuthContext, permission: str) -> None:
    if not has_permission(auth.role, auth.tenant_role, permission):
        raise forbidden(f"missing permission: {permission}")


def can_manage_tenant(auth: AuthContext, tenant_id: str) -> bool:
    if auth.is_site_admin:
        return True
    return auth.tenant_id == tenant_id and auth.is_tenant_admin


def provider_contact_for(
    auth: AuthContext,
    *,
    provider_id: str | None,
    contacts: Iterable[dict[str, Any]],
) -> dict[str, Any] | None:
    if not provider_id:
        return None
    for contact in contacts:
        if (
            contact.get("provider_id") == provider_id
            and contact.get("user_id") == auth.subject
            and contact.get("status") == "active"
        ):
            return contact
    return None


def can_access_provider(
    auth: AuthContext,
    *,
    provider_id: str | None,
    contacts: Iterable[dict[str, Any]],
) -> bool:
    if auth.is_tenant_admin:
        return True
    return provider_contact_for(auth, provider_id=provider_id, contacts=contacts) is not None


def can_manage_provider(
    auth: AuthContext,
    *,
    provider_id: str | None,
    contacts: Iterable[dict[str, Any]],
) -> bool:
    if auth.is_tenant_admin:
        return True
    contact = provider_contact_for(auth, provider_id=provider_id, contacts=contacts)
    return contact is not None and contact.get("contact_type") == "provider_admin"


def require_provider_access(
    auth: AuthContext,
    *,
    provider_id: str | None,
    contacts: Iterable[dict[str, Any]],
    manage: bool = False,
) -> None:
    check = can_manage_provider if manage else can_access_provider
    if not check(auth, provider_id=provider_id, contacts=contacts):
        raise forbidden("Provider access required")
