from __future__ import annotations

import json
import sqlite3
import threading
from pathlib import Path
from typing import Any

from linksy.db.postgres import PostgresTxRunner, _import_psycopg
from linksy.db.rls import PostgresRlsManager
from linksy.repositories import (
    PostgresAuditLogsRepository,
    PostgresCrisisKeywordsRepository,
    PostgresProvidersRepository,
    PostgresTicketsRepository,
)
from linksy.store import IdempotencyRecord, InMemoryStore

SNAPSHOT_SCHEMA_VERSION = 1


class _SnapshotMixin:
    """JSON snapshot of the whole in-memory state, shared by both backends."""

    def _state_snapshot(self) -> dict[str, Any]:
        idempotency_records = []
        for (scope, key), record in self.idempotency_records.items():
            idempotency_records.append(
                {
                    "scope": scope,
                    "key": key,
                    "fingerprint": record.fingerprint,
                    "data": record.data,
                }
            )
        snapshot: dict[str, Any] = {
            "schema_version": SNAPSHOT_SCHEMA_VERSION,
            "idempotency_records": idempotency_records,
            "audit_logs": self.audit_logs,
        }
        for name in self.COLLECTIONS:
            snapshot[name] = getattr(self, name)
        return snapshot

    def _restore_state(self, payload: dict[str, Any]) -> None:
        self.idempotency_records.clear()
        for item in payload.get("idempotency_records") or []:
            if not isinstance(item, dict):
                continue
            scope = item.get("scope")
            key = item.get("key")
            if not isinstance(scope, str) or not isinstance(key, str):
                continue
            self.idempotency_records[(scope, key)] = IdempotencyRecord(
                fingerprint=str(item.get("fingerprint") or ""),
                data=item.get("data") if isinstance(item.get("data"), dict) else {},
            )
        audit_logs = payload.get("audit_logs")
        self.audit_logs = [x for x in audit_logs if isinstance(x, dict)] if isinstance(audit_logs, list) else []
        for name in self.COLLECTIONS:
            value = payload.get(name)
            setattr(self, name, {str(k): v for k, v in value.items() if isinstance(v, dict)} if isinstance(value, dict) else {})
        self._bind_repositories()

    def _encode_snapshot(self) -> str:
        return json.dumps(self._state_snapshot(), sort_keys=True, ensure_ascii=True, separators=(",", ":"), default=str)

    @staticmethod
    def _decode_snapshot(payload_raw: Any) -> dict[str, Any] | None:
        if not isinstance(payload_raw, str):
            return None
        try:
            payload = json.loads(payload_raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(payload, dict):
            return None
        return payload


class SqliteBackedStore(_SnapshotMixin, InMemoryStore):
    """Persistent store backend that snapshots state to SQLite."""

    def __init__(self, db_path: str) -> None:
        super().__init__()
        self._db_path = Path(db_path).expanduser()
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = threading.RLock()
        self._initialize_database()
        self._load_state()

    def _connect(self) -> sqlite3.Connection:
        return sqlite3.connect(str(self._db_path))

    def _initialize_database(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS store_state (
                  id INTEGER PRIMARY KEY CHECK (id = 1),
                  payload TEXT NOT NULL
                )
                """
            )
            conn.commit()

    def _save_state(self) -> None:
        blob = self._encode_snapshot()
        with self._lock:
            with self._connect() as conn:
                conn.execute(
                    """
                    INSERT INTO store_state(id, payload)
                    VALUES (1, ?)
                    ON CONFLICT(id) DO UPDATE SET payload = excluded.payload
                    """,
                    (blob,),
                )
                conn.commit()

    def _load_state(self) -> None:
        with self._lock:
            with self._connect() as conn:
                row = conn.execute("SELECT payload FROM store_state WHERE id = 1").fetchone()
        if row is None:
            return
        payload = self._decode_snapshot(row[0])
        if payload is not None:
            self._restore_state(payload)

    def _after_write(self) -> None:
        if hasattr(self, "_lock"):
            self._save_state()

    def reset(self) -> None:
        super().reset()
        self._save_state()


class PostgresBackedStore(_SnapshotMixin, InMemoryStore):
    """Persistent store backend that snapshots state to PostgreSQL.

    Providers, tickets, crisis keywords and audit logs are additionally
    mirrored into tenant tables so reporting queries and row-level security
    policies can work on them directly.
    """

    MIRROR_TABLES: tuple[str, ...] = ("providers", "tickets", "crisis_keywords", "audit_logs")

    def __init__(
        self,
        *,
        dsn: str,
        table_name: str = "linksy_store_state",
        apply_rls: bool = False,
    ) -> None:
        super().__init__()
        if not dsn.strip():
            raise ValueError("POSTGRES_DSN must be provided for postgres store backend")
        self._dsn = dsn.strip()
        self._table_name = table_name.strip() or "linksy_store_state"
        self._lock = threading.RLock()
        self._tx_runner = PostgresTxRunner(self._dsn)
        self._providers_pg_repo = PostgresProvidersRepository(tx_runner=self._tx_runner, table_name="providers")
        self._tickets_pg_repo = PostgresTicketsRepository(tx_runner=self._tx_runner, table_name="tickets")
        self._crisis_keywords_pg_repo = PostgresCrisisKeywordsRepository(
            tx_runner=self._tx_runner,
            table_name="crisis_keywords",
        )
        self._audit_pg_repo = PostgresAuditLogsRepository(tx_runner=self._tx_runner, table_name="audit_logs")
        self._initialize_database()
        if apply_rls:
            PostgresRlsManager(self._dsn, tables=self.MIRROR_TABLES).apply()
        self._load_state()

    def _connect(self) -> Any:
        psycopg = _import_psycopg()
        return psycopg.connect(self._dsn)

    def _initialize_database(self) -> None:
        create_sql = f"""
                CREATE TABLE IF NOT EXISTS {self._table_name} (
                  id SMALLINT PRIMARY KEY,
                  payload JSONB NOT NULL
                )
                """
        self._tx_runner.execute_ddl(
            [
                create_sql,
                self._providers_pg_repo.ddl(),
                self._tickets_pg_repo.ddl(),
                self._crisis_keywords_pg_repo.ddl(),
                self._audit_pg_repo.ddl(),
            ]
        )

    def _save_state(self) -> None:
        blob = self._encode_snapshot()
        upsert_sql = f"""
                    INSERT INTO {self._table_name}(id, payload)
                    VALUES (1, %s::jsonb)
                    ON CONFLICT(id) DO UPDATE SET payload = EXCLUDED.payload
                    """
        with self._lock:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(upsert_sql, (blob,))
                conn.commit()

    def _load_state(self) -> None:
        select_sql = f"SELECT payload::text FROM {self._table_name} WHERE id = 1"
        with self._lock:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(select_sql)
                    row = cur.fetchone()
        if row is None:
            return
        payload = self._decode_snapshot(row[0])
        if payload is not None:
            self._restore_state(payload)

    def _after_write(self) -> None:
        if hasattr(self, "_lock"):
            self._save_state()

    def reset(self) -> None:
        with self._lock:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(f"TRUNCATE TABLE {', '.join(self.MIRROR_TABLES)}")
                conn.commit()
        super().reset()
        self._save_state()

    def _persist_provider(self, *, provider: dict[str, Any]) -> dict[str, Any]:
        saved = super()._persist_provider(provider=provider)
        self._providers_pg_repo.upsert(tenant_id=str(saved["tenant_id"]), provider=saved)
        return saved

    def _remove_provider(self, *, tenant_id: str, provider_id: str) -> bool:
        deleted = super()._remove_provider(tenant_id=tenant_id, provider_id=provider_id)
        if deleted:
            self._providers_pg_repo.delete(tenant_id=tenant_id, provider_id=provider_id)
        return deleted

    def _persist_ticket(self, *, ticket: dict[str, Any]) -> dict[str, Any]:
        saved = super()._persist_ticket(ticket=ticket)
        self._tickets_pg_repo.upsert(tenant_id=str(saved["tenant_id"]), ticket=saved)
        return saved

    def _persist_crisis_keyword(self, *, keyword: dict[str, Any]) -> dict[str, Any]:
        saved = super()._persist_crisis_keyword(keyword=keyword)
        self._crisis_keywords_pg_repo.upsert(tenant_id=str(saved["tenant_id"]), keyword=saved)
        return saved

    def _remove_crisis_keyword(self, *, tenant_id: str, keyword_id: str) -> bool:
        deleted = super()._remove_crisis_keyword(tenant_id=tenant_id, keyword_id=keyword_id)
        if deleted:
            self._crisis_keywords_pg_repo.delete(tenant_id=tenant_id, keyword_id=keyword_id)
        return deleted

    def _append_audit_log(self, *, log: dict[str, Any]) -> dict[str, Any]:
        saved = super()._append_audit_log(log=log)
        self._audit_pg_repo.append(log=saved)
        return saved
