import pathlib
import sys
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
import jwt

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from linksy.main import create_app
from linksy.rate_limit import rate_limiter
from linksy.store import store


def _issue_token(
    *,
    secret: str,
    tenant_id: str,
    subject: str,
    role: str,
    tenant_role: str,
) -> str:
    now = datetime.now(timezone.utc)
    payload = {
        "sub": subject,
        "tenant_id": tenant_id,
        "role": role,
        "tenant_role": tenant_role,
        "email": f"{subject}@example.org",
        "exp": int((now + timedelta(minutes=30)).timestamp()),
        "iat": int(now.timestamp()),
        "iss": "test-issuer",
        "aud": "test-audience",
    }
    return jwt.encode(payload, secret, algorithm="HS256")


class AuthenticatedClient:
    """Mints a bearer token from the x-tenant-id / x-user-id / x-user-role test headers."""

    def __init__(self, client: TestClient, *, jwt_secret: str):
        self._client = client
        self._jwt_secret = jwt_secret

    def request(self, method: str, url: str, **kwargs):
        headers = dict(kwargs.pop("headers", {}) or {})
        if url.startswith("/api/v1/") and not url.startswith("/api/v1/public/"):
            if "Authorization" not in headers:
                tenant_id = headers.get("x-tenant-id") or "tenant_default"
                role = headers.pop("x-user-role", "tenant_admin")
                token = _issue_token(
                    secret=self._jwt_secret,
                    tenant_id=str(tenant_id),
                    subject=headers.pop("x-user-id", f"user_{tenant_id}"),
                    role=role,
                    tenant_role=headers.pop("x-tenant-role", "member"),
                )
                headers["Authorization"] = f"Bearer {token}"
        return self._client.request(method, url, headers=headers, **kwargs)

    def __getattr__(self, name: str):
        return getattr(self._client, name)

    def get(self, url: str, **kwargs):
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs):
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs):
        return self.request("PUT", url, **kwargs)

    def patch(self, url: str, **kwargs):
        return self.request("PATCH", url, **kwargs)

    def delete(self, url: str, **kwargs):
        return self.request("DELETE", url, **kwargs)


SITE_ADMIN = {"x-user-role": "site_admin", "x-user-id": "site_admin_1"}
TENANT_ADMIN = {"x-user-role": "tenant_admin", "x-user-id": "tenant_admin_1"}
MEMBER = {"x-user-role": "user", "x-user-id": "member_1"}


@pytest.fixture(autouse=True)
def reset_store(tmp_path: pathlib.Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setenv("LINKSY_OBJECT_STORAGE_BACKEND", "local")
    monkeypatch.setenv("OBJECT_STORAGE_ROOT", str(tmp_path / "object_store"))
    monkeypatch.setenv("JWT_SHARED_SECRET", "jwt_test_secret")
    monkeypatch.setenv("JWT_ISSUER", "test-issuer")
    monkeypatch.setenv("JWT_AUDIENCE", "test-audience")
    monkeypatch.setenv("JWT_REQUIRED_CLAIMS", "tenant_id,sub,exp")
    monkeypatch.delenv("GOOGLE_MAPS_API_KEY", raising=False)
    monkeypatch.delenv("LINKSY_REQUIRE_TRUESTACK", raising=False)
    store.reset()
    rate_limiter.clear()
    yield


@pytest.fixture
def client() -> TestClient:
    app = create_app()
    base = TestClient(app)
    return AuthenticatedClient(base, jwt_secret="jwt_test_secret")


@pytest.fixture
def site_admin() -> dict[str, str]:
    return dict(SITE_ADMIN)


@pytest.fixture
def tenant_admin() -> dict[str, str]:
    return dict(TENANT_ADMIN)


@pytest.fixture
def member() -> dict[str, str]:
    return dict(MEMBER)


@pytest.fixture
def make_provider(client):
    def _make(name: str = "Food Bank", *, headers: dict[str, str] | None = None, **fields):
        body = {"name": name, "sector": "nonprofit", **fields}
        resp = client.post("/api/v1/providers", json=body, headers=headers or dict(TENANT_ADMIN))
        assert resp.status_code == 201, resp.text
        return resp.json()["data"]

    return _make
