import pytest
from fastapi.testclient import TestClient

from conftest import TENANT_ADMIN, AuthenticatedClient
from linksy.csrf import CsrfConfig, check_request_origin, origin_of
from linksy.errors import ApiError
from linksy.main import create_app
from linksy.store import store

ADMIN_APP = "https://admin.linksy.example"


def _cfg(**env) -> CsrfConfig:
    return CsrfConfig.from_env({"CSRF_PROTECTION_ENABLED": "true", **env})


def test_origin_of_normalizes_and_rejects_partial_urls():
    assert origin_of("HTTPS://Admin.Linksy.Example/providers?x=1") == ADMIN_APP
    assert origin_of("http://localhost:5173/") == "http://localhost:5173"
    assert origin_of("null") is None
    assert origin_of("") is None


def test_allowed_origins_come_from_site_url_and_cors_list():
    cfg = _cfg(SITE_URL=f"{ADMIN_APP}/", CORS_ALLOW_ORIGINS="http://localhost:5173, ,bogus")
    assert cfg.enabled is True
    assert cfg.allowed_origins == {ADMIN_APP, "http://localhost:5173"}
    assert CsrfConfig.from_env({}).enabled is False


def test_safe_methods_and_disabled_config_skip_checks():
    check_request_origin(method="GET", headers={}, cfg=_cfg())
    check_request_origin(method="POST", headers={}, cfg=CsrfConfig(enabled=False, allowed_origins=frozenset()))


@pytest.mark.parametrize(
    ("headers", "message"),
    [
        ({"origin": "https://evil.example"}, "Invalid request origin"),
        ({"referer": "https://evil.example/form"}, "Invalid request referer"),
        ({"origin": "https://evil.example", "referer": f"{ADMIN_APP}/x"}, "Invalid request origin"),
        ({}, "Missing origin or referer header"),
    ],
)
def test_foreign_or_missing_origin_is_rejected(headers, message):
    with pytest.raises(ApiError) as exc_info:
        check_request_origin(method="delete", headers={"host": "api.linksy.example", **headers}, cfg=_cfg(SITE_URL=ADMIN_APP))
    assert exc_info.value.code == "CSRF_ORIGIN_INVALID"
    assert exc_info.value.http_status == 403
    assert exc_info.value.message == message


def test_configured_origin_own_host_and_referer_fallback_pass():
    cfg = _cfg(SITE_URL=ADMIN_APP)
    check_request_origin(method="POST", headers={"origin": ADMIN_APP}, cfg=cfg)
    check_request_origin(method="PATCH", headers={"host": "api.linksy.example", "origin": "http://api.linksy.example"}, cfg=cfg)
    check_request_origin(method="PUT", headers={"referer": f"{ADMIN_APP}/providers/1"}, cfg=cfg)


def test_middleware_blocks_cross_site_mutation_and_audits_it(monkeypatch):
    monkeypatch.setenv("CSRF_PROTECTION_ENABLED", "1")
    monkeypatch.setenv("SITE_URL", ADMIN_APP)
    client = AuthenticatedClient(TestClient(create_app()), jwt_secret="jwt_test_secret")
    body = {"name": "Pantry", "sector": "nonprofit"}

    blocked = client.post("/api/v1/providers", json=body, headers={**TENANT_ADMIN, "origin": "https://evil.example"})
    assert blocked.status_code == 403
    assert blocked.json()["error"]["code"] == "CSRF_ORIGIN_INVALID"
    assert blocked.headers["x-trace-id"]
    assert not store.providers
    assert any(x["details"].get("error_code") == "CSRF_ORIGIN_INVALID" for x in store.audit_logs)

    allowed = client.post("/api/v1/providers", json=body, headers={**TENANT_ADMIN, "origin": ADMIN_APP})
    assert allowed.status_code == 201
    assert client.get("/api/v1/providers", headers=dict(TENANT_ADMIN)).status_code == 200


def test_public_widget_calls_are_not_origin_checked(monkeypatch, make_provider):
    host = make_provider("Helpline", is_host=True)
    monkeypatch.setenv("CSRF_PROTECTION_ENABLED", "1")
    raw = TestClient(create_app())
    resp = raw.post(
        f"/api/v1/public/hosts/{host['slug']}/search",
        json={"query": "food"},
        headers={"origin": "https://partner-site.example"},
    )
    assert resp.status_code == 200
