from __future__ import annotations

import json
from typing import Any

from linksy.db.postgres import PostgresTxRunner, validate_identifier


class InMemoryTicketsRepository:
    def __init__(self, tickets: dict[str, dict[str, Any]]) -> None:
        self._tickets = tickets

    def upsert(self, *, ticket: dict[str, Any]) -> dict[str, Any]:
        item = dict(ticket)
        self._tickets[str(item["ticket_id"])] = item
        return dict(item)

    def get(self, *, tenant_id: str, ticket_id: str) -> dict[str, Any] | None:
        row = self._tickets.get(ticket_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return None
        return dict(row)

    def get_any(self, *, ticket_id: str) -> dict[str, Any] | None:
        row = self._tickets.get(ticket_id)
        return dict(row) if row is not None else None

    def list(self, *, tenant_id: str) -> list[dict[str, Any]]:
        rows = [dict(x) for x in self._tickets.values() if x.get("tenant_id") == tenant_id]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def count(self, *, tenant_id: str) -> int:
        return sum(1 for x in self._tickets.values() if x.get("tenant_id") == tenant_id)

    def delete(self, *, tenant_id: str, ticket_id: str) -> bool:
        row = self._tickets.get(ticket_id)
        if row is None or row.get("tenant_id") != tenant_id:
            return False
        del self._tickets[ticket_id]
        return True


class PostgresTicketsRepository:
    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "tickets") -> None:
        self._tx_runner = tx_runner
        self._table_name = validate_identifier(table_name)

    def ddl(self) -> str:
        return f"""
            CREATE TABLE IF NOT EXISTS {self._table_name} (
              ticket_id TEXT PRIMARY KEY,
              tenant_id TEXT NOT NULL,
              ticket_number TEXT NOT NULL,
              provider_id TEXT,
              status TEXT NOT NULL,
              sla_due_at TEXT,
              payload JSONB NOT NULL,
              created_at TEXT,
              updated_at TEXT
            )
        """

    def upsert(self, *, tenant_id: str, ticket: dict[str, Any]) -> dict[str, Any]:
        item = dict(ticket)
        item["tenant_id"] = tenant_id
        sql = f"""
            INSERT INTO {self._table_name} (
                ticket_id, tenant_id, ticket_number, provider_id, status, sla_due_at, payload, created_at, updated_at
            ) VALUES (%s, %s, %s, %s, %s, %s, %s::jsonb, %s, %s)
            ON CONFLICT(ticket_id) DO UPDATE SET
                tenant_id = EXCLUDED.tenant_id,
                ticket_number = EXCLUDED.ticket_number,
                provider_id = EXCLUDED.provider_id,
                status = EXCLUDED.status,
                sla_due_at = EXCLUDED.sla_due_at,
                payload = EXCLUDED.payload,
                created_at = EXCLUDED.created_at,
                updated_at = EXCLUDED.updated_at
        """

        def _op(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(
                    sql,
                    (
                        item["ticket_id"],
                        tenant_id,
                        item.get("ticket_number"),
                        item.get("provider_id"),
                        item.get("status"),
                        item.get("sla_due_at"),
                        json.dumps(item, ensure_ascii=True, sort_keys=True),
                        item.get("created_at"),
                        item.get("updated_at"),
                    ),
                )
            return item

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def get(self, *, tenant_id: str, ticket_id: str) -> dict[str, Any] | None:
        sql = f"""
            SELECT payload
            FROM {self._table_name}
            WHERE tenant_id = %s AND ticket_id = %s
            LIMIT 1
        """

        def _op(conn: Any) -> dict[str, Any] | None:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, ticket_id))
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
            ORDER BY created_at DESC
        """

        def _op(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id,))
                rows = cur.fetchall() or []
            return [dict(row[0]) for row in rows if isinstance(row[0], dict)]

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)

    def delete(self, *, tenant_id: str, ticket_id: str) -> bool:
        sql = f"DELETE FROM {self._table_name} WHERE tenant_id = %s AND ticket_id = %s"

        def _op(conn: Any) -> bool:
            with conn.cursor() as cur:
                cur.execute(sql, (tenant_id, ticket_id))
                return bool(getattr(cur, "rowcount", 0))

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_op)
