from __future__ import annotations

from pathlib import Path

import pytest

from linksy.store import InMemoryStore, create_store_from_env
from linksy.store_backends import PostgresBackedStore, SqliteBackedStore


def _provider_payload() -> dict:
    return {"name": "Food Bank", "sector": "nonprofit", "status": "active", "sla_hours": 24}


def test_sqlite_store_restores_records_and_idempotency(tmp_path: Path):
    db_path = tmp_path / "store.sqlite3"
    store1 = SqliteBackedStore(str(db_path))

    payload = _provider_payload()
    provider = store1.run_idempotent(
        endpoint="POST:/api/v1/providers",
        tenant_id="tenant_store",
        idempotency_key="idem_store_1",
        payload=payload,
        execute=lambda: store1.create_provider(tenant_id="tenant_store", actor_id="u1", payload=payload),
    )
    ticket = store1.create_ticket(
        tenant_id="tenant_store",
        actor_id="u1",
        payload={"provider_id": provider["provider_id"], "client_email": "jane@example.org"},
    )

    store2 = SqliteBackedStore(str(db_path))
    reloaded = store2.get_ticket_for_tenant(tenant_id="tenant_store", ticket_id=ticket["ticket_id"])
    assert reloaded["ticket_number"] == ticket["ticket_number"]
    assert reloaded["sla_due_at"] == ticket["sla_due_at"]
    assert store2.providers_repository.get(tenant_id="tenant_store", provider_id=provider["provider_id"]) is not None

    replay = store2.run_idempotent(
        endpoint="POST:/api/v1/providers",
        tenant_id="tenant_store",
        idempotency_key="idem_store_1",
        payload=payload,
        execute=lambda: {"unexpected": True},
    )
    assert replay["provider_id"] == provider["provider_id"]
    assert store2.verify_audit_integrity(tenant_id="tenant_store")["valid"] is True


def test_sqlite_store_reset_clears_snapshot(tmp_path: Path):
    db_path = tmp_path / "store.sqlite3"
    store1 = SqliteBackedStore(str(db_path))
    store1.create_provider(tenant_id="tenant_store", actor_id="u1", payload=_provider_payload())
    store1.reset()

    store2 = SqliteBackedStore(str(db_path))
    assert store2.providers_repository.list(tenant_id="tenant_store") == []
    assert store2.audit_logs == []


def test_store_factory_defaults_to_in_memory(monkeypatch):
    monkeypatch.delenv("LINKSY_STORE_BACKEND", raising=False)
    monkeypatch.delenv("LINKSY_REQUIRE_TRUESTACK", raising=False)
    store = create_store_from_env()
    assert isinstance(store, InMemoryStore)
    assert not isinstance(store, SqliteBackedStore)


def test_store_factory_rejects_non_postgres_when_true_stack_required():
    env = {"LINKSY_REQUIRE_TRUESTACK": "true", "LINKSY_STORE_BACKEND": "sqlite"}
    with pytest.raises(RuntimeError, match="LINKSY_STORE_BACKEND"):
        create_store_from_env(env)


def test_store_factory_requires_postgres_dsn():
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        create_store_from_env({"LINKSY_STORE_BACKEND": "postgres"})


def test_store_factory_uses_sqlite_backend_when_configured(tmp_path: Path):
    env = {"LINKSY_STORE_BACKEND": "sqlite", "LINKSY_STORE_SQLITE_PATH": str(tmp_path / "factory.sqlite3")}
    store = create_store_from_env(env)
    assert isinstance(store, SqliteBackedStore)
    created = store.create_provider(tenant_id="tenant_store", actor_id=None, payload=_provider_payload())

    reloaded = create_store_from_env(env)
    assert reloaded.providers_repository.get(tenant_id="tenant_store", provider_id=created["provider_id"])["name"] == (
        "Food Bank"
    )


class _FakeCursor:
    def __init__(self, log: list[tuple[str, tuple | None]]):
        self._log = log
        self.rowcount = 1

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, query: str, params=None):
        self._log.append((" ".join(query.strip().split()), params))

    def fetchone(self):
        return None

    def fetchall(self):
        return []


class _FakeConnection:
    def __init__(self, log: list[tuple[str, tuple | None]]):
        self._log = log
        self.commits = 0

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def cursor(self):
        return _FakeCursor(self._log)

    def commit(self):
        self.commits += 1


class _FakePsycopg:
    def __init__(self):
        self.statements: list[tuple[str, tuple | None]] = []
        self.connection = _FakeConnection(self.statements)

    def connect(self, dsn: str):
        return self.connection


def test_postgres_store_mirrors_tables_and_applies_rls(monkeypatch):
    fake = _FakePsycopg()
    monkeypatch.setattr("linksy.db.postgres._import_psycopg", lambda: fake)
    monkeypatch.setattr("linksy.db.rls._import_psycopg", lambda: fake)
    monkeypatch.setattr("linksy.store_backends._import_psycopg", lambda: fake)

    store = PostgresBackedStore(dsn="postgresql://u:p@localhost:5432/linksy", apply_rls=True)
    sql = [query for query, _ in fake.statements]
    assert any(q.startswith("CREATE TABLE IF NOT EXISTS linksy_store_state") for q in sql)
    assert any(q.startswith("CREATE TABLE IF NOT EXISTS providers") for q in sql)
    assert any("CREATE POLICY tickets_tenant_isolation ON tickets" in q for q in sql)

    fake.statements.clear()
    provider = store.create_provider(tenant_id="tenant_pg", actor_id="u1", payload=_provider_payload())
    sql = [query for query, _ in fake.statements]
    assert any(q.startswith("INSERT INTO providers") for q in sql)
    assert any(q.startswith("INSERT INTO audit_logs") for q in sql)
    assert any(q.startswith("INSERT INTO linksy_store_state") for q in sql)
    tenant_settings = [params for query, params in fake.statements if "set_config('app.current_tenant'" in query]
    assert ("tenant_pg",) in tenant_settings
    assert store.providers[provider["provider_id"]]["name"] == "Food Bank"


def test_postgres_store_rejects_blank_dsn():
    with pytest.raises(ValueError, match="POSTGRES_DSN"):
        PostgresBackedStore(dsn="  ")
