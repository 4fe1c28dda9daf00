from __future__ import annotations

import json
from typing import Any

from linksy.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryCrisisKeywordsRepository:
    def __init__(self, keywords: dict[str, dict[str, Any]]) -> None:
        self._keywords = keywords

    def upsert(self, *, keyword: dict[str, Any]) -> dict[str, Any]:
        item = dict(keyword)
        self._keywords[str(item["keyword_id"])] = item
        return dict(item)

    def get(self, *, tenant_id: str, keyword_id: str) -> dict[str, Any] | None:
        row = self._keywords.get(keyword_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return None
        return dict(row)

    def get_by_keyword(self, *, tenant_id: str, keyword: str) -> dict[str, Any] | None:
        for row in self._keywords.values():
            if row.get("tenant_id") == tenant_id and row.get("keyword") == keyword:
                return dict(row)
        return None

    def list(self, *, tenant_id: str) -> list[dict[str, Any]]:
        return [dict(x) for x in self._keywords.values() if x.get("tenant_id") == tenant_id]

    def delete(self, *, tenant_id: str, keyword_id: str) -> bool:
        row = self._keywords.get(keyword_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return False
        del self._keywords[keyword_id]
        return True


class PostgresCrisisKeywordsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "crisis_keywords") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def ddl(self) -> str:
        return f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
              keyword_id TEXT PRIMARY KEY,
              tenant_id TEXT NOT NULL,
              keyword TEXT NOT NULL,
              crisis_type TEXT NOT NULL,
              severity TEXT NOT NULL,
              is_active BOOLEAN NOT NULL DEFAULT TRUE,
              payload JSONB NOT NULL,
              UNIQUE (tenant_id, keyword)
            )
        """

    def upsert(self, *, tenant_id: str, keyword: dict[str, Any]) -> dict[str, Any]:
        item = dict(keyword)
        item["tenant_id"] = tenant_id
        sql = f"""
            INSERT INTO {self._table_name} (
                keyword_id, tenant_id, keyword, crisis_type, severity, is_active, payload
            ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb)
            ON CONFLICT(keyword_id) DO UPDATE SET
                keyword = EXCLUDED.keyword,
                crisis_type = EXCLUDED.crisis_type,
                severity = EXCLUDED.severity,
                is_active = EXCLUDED.is_active,
                payload = EXCLUDED.payload
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["keyword_id"],
                        tenant_id,
                        item.get("keyword"),
                        item.get("crisis_type"),
                        item.get("severity"),
                        bool(item.get("is_active", True)),
                        json.dumps(item, ensure_ascii=True, sort_keys=True),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def list(self, *, tenant_id: str) -> list[dict[str, Any]]:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            WHERE tenant_id = %s
            ORDER BY crisis_type ASC, keyword ASC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id,))
                rows = cur.fetchall() or []
            return [dict(row[0]) for row in rows if isinstance(row[0], dict)]

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def delete(self, *, tenant_id: str, keyword_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE tenant_id = %s AND keyword_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, keyword_id))
                return bool(getattr(cur, "rowcount", 0))

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)
