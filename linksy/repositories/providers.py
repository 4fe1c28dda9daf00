from __future__ import annotations

import json
from typing import Any

from linksy.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryProvidersRepository:
    def __init__(self, providers: dict[str, dict[str, Any]]) -> None:
        self._providers = providers

    def upsert(self, *, provider: dict[str, Any]) -> dict[str, Any]:
        item = dict(provider)
        self._providers[str(item["provider_id"])] = item
        return dict(item)

    def get(self, *, tenant_id: str, provider_id: str) -> dict[str, Any] | None:
        row = self._providers.get(provider_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return None
        return dict(row)

    def get_any(self, *, provider_id: str) -> dict[str, Any] | None:
        row = self._providers.get(provider_id)
        return dict(row) if row is not None else None

    def get_by_slug(self, *, tenant_id: str, slug: str) -> dict[str, Any] | None:
        for row in self._providers.values():
            if row.get("tenant_id") == tenant_id and row.get("slug") == slug:
                return dict(row)
        return None

    def find_host_by_slug(self, *, slug: str) -> dict[str, Any] | None:
        for row in self._providers.values():
            if row.get("slug") == slug and row.get("is_host"):
                return dict(row)
        return None

    def list(self, *, tenant_id: str) -> list[dict[str, Any]]:
        return [dict(x) for x in self._providers.values() if x.get("tenant_id") == tenant_id]

    def delete(self, *, tenant_id: str, provider_id: str) -> bool:
        row = self._providers.get(provider_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return False
        del self._providers[provider_id]
        return True


class PostgresProvidersRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "providers") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def ddl(self) -> str:
        return f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
              provider_id TEXT PRIMARY KEY,
              tenant_id TEXT NOT NULL,
              slug TEXT NOT NULL,
              name TEXT NOT NULL,
              status TEXT NOT NULL,
              is_host BOOLEAN NOT NULL DEFAULT FALSE,
              payload JSONB NOT NULL,
              updated_at TEXT
            )
        """

    def upsert(self, *, tenant_id: str, provider: dict[str, Any]) -> dict[str, Any]:
        item = dict(provider)
        item["tenant_id"] = tenant_id
        sql = f"""
            INSERT INTO {self._table_name} (
                provider_id, tenant_id, slug, name, status, is_host, payload, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s)
            ON CONFLICT(provider_id) DO UPDATE SET
                tenant_id = EXCLUDED.tenant_id,
                slug = EXCLUDED.slug,
                name = EXCLUDED.name,
                status = EXCLUDED.status,
                is_host = EXCLUDED.is_host,
                payload = EXCLUDED.payload,
                updated_at = EXCLUDED.updated_at
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["provider_id"],
                        tenant_id,
                        item.get("slug"),
                        item.get("name"),
                        item.get("status"),
                        bool(item.get("is_host")),
                        json.dumps(item, ensure_ascii=True, sort_keys=True),
                        item.get("updated_at"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def get(self, *, tenant_id: str, provider_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            WHERE tenant_id = %s AND provider_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, provider_id))
                row = cur.fetchone()
            if row is None or not isinstance(row[0], dict):
                return None
            return dict(row[0])

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def list(self, *, tenant_id: str) -> list[dict[str, Any]]:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            WHERE tenant_id = %s
            ORDER BY name ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id,))
                rows = cur.fetchall() or []
            return [dict(row[0]) for row in rows if isinstance(row[0], dict)]

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def delete(self, *, tenant_id: str, provider_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE tenant_id = %s AND provider_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, provider_id))
                return bool(getattr(cur, "rowcount", 0))

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)
