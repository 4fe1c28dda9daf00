import pytest

from linksy.errors import ApiError
from linksy.permissions import (
    can_access_provider,
    can_manage_provider,
    can_manage_tenant,
    get_permissions,
    has_all_permissions,
    has_any_permission,
    require_authenticated,
    require_provider_access,
)
from linksy.security import AuthContext

CONTACTS = [
    {"provider_id": "prv_1", "user_id": "emp", "contact_type": "provider_employee", "status": "active"},
    {"provider_id": "prv_1", "user_id": "boss", "contact_type": "provider_admin", "status": "active"},
    {"provider_id": "prv_1", "user_id": "gone", "contact_type": "provider_admin", "status": "archived"},
]


def _auth(subject: str, role: str = "user", tenant_role: str = "member", tenant_id: str = "t1") -> AuthContext:
    return AuthContext(tenant_id=tenant_id, subject=subject, role=role, tenant_role=tenant_role)


def test_role_permission_sets():
    assert "tenants:write" in get_permissions("site_admin")
    assert "tenants:write" not in get_permissions("tenant_admin")
    assert "audit:read" in get_permissions("user", "admin")
    assert "audit:read" not in get_permissions("user", "member")
    assert has_any_permission("user", "member", ["audit:read", "files:read"])
    assert not has_all_permissions("user", "member", ["audit:read", "files:read"])


def test_provider_access_rules():
    assert can_access_provider(_auth("emp"), provider_id="prv_1", contacts=CONTACTS)
    assert not can_manage_provider(_auth("emp"), provider_id="prv_1", contacts=CONTACTS)
    assert can_manage_provider(_auth("boss"), provider_id="prv_1", contacts=CONTACTS)
    assert not can_access_provider(_auth("gone"), provider_id="prv_1", contacts=CONTACTS)
    assert not can_access_provider(_auth("emp"), provider_id="prv_2", contacts=CONTACTS)
    assert can_manage_provider(_auth("x", role="tenant_admin"), provider_id="prv_2", contacts=[])


def test_require_provider_access_raises_forbidden():
    with pytest.raises(ApiError) as exc:
        require_provider_access(_auth("emp"), provider_id="prv_1", contacts=CONTACTS, manage=True)
    assert exc.value.http_status == 403


def test_tenant_management_and_anonymous():
    assert can_manage_tenant(_auth("a", role="site_admin", tenant_id="other"), "t1")
    assert can_manage_tenant(_auth("a", tenant_role="admin"), "t1")
    assert not can_manage_tenant(_auth("a", tenant_role="admin"), "t2")
    with pytest.raises(ApiError) as exc:
        require_authenticated(AuthContext.anonymous(tenant_id="t1"))
    assert exc.value.code == "AUTH_UNAUTHORIZED"
