from __future__ import annotations

import json
from typing import Any

from linksy.db.postgres import PostgresTxRunner, validate_identifier

_FILTER_COLUMNS = ("action", "resource_type")


class InMemoryAuditLogsRepository:
    def __init__(self, audit_logs: list[dict[str, Any]]) -> None:
        self._audit_logs = audit_logs

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        item = dict(log)
        self._audit_logs.append(item)
        return item

    def list(
        self,
        *,
        tenant_id: str,
        action: str | None = None,
        resource_type: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        wanted = {"action": action, "resource_type": resource_type}
        out: list[dict[str, Any]] = []
        for row in reversed(self._audit_logs):
            if row.get("tenant_id") != tenant_id:
                continue
            if any(value and row.get(column) != value for column, value in wanted.items()):
                continue
            out.append(dict(row))
            if limit is not None and len(out) >= limit:
                break
        return out


class PostgresAuditLogsRepository:
    """Append-only audit trail; rows carry the tenant hash chain as columns.

    Existing entries are never overwritten, so replaying an append with an
    already stored ``audit_id`` leaves the original row and its hashes intact.
    """

    def __init__(self, *, tx_runner: PostgresTxRunner, table_name: str = "audit_logs") -> None:
        self._tx_runner = tx_runner
        self._table = validate_identifier(table_name)

    def ddl(self) -> str:
        return (
            f"CREATE TABLE IF NOT EXISTS {self._table} ("
            " audit_id TEXT PRIMARY KEY,"
            " tenant_id TEXT NOT NULL,"
            " action TEXT NOT NULL,"
            " actor_id TEXT,"
            " resource_type TEXT,"
            " resource_id TEXT,"
            " prev_hash TEXT NOT NULL DEFAULT '',"
            " audit_hash TEXT NOT NULL DEFAULT '',"
            " occurred_at TEXT NOT NULL,"
            " payload JSONB NOT NULL)"
        )

    def append(self, *, log: dict[str, Any]) -> dict[str, Any]:
        entry = dict(log)
        tenant_id = str(entry.get("tenant_id") or "tenant_default")
        row = (
            entry["audit_id"],
            tenant_id,
            entry.get("action"),
            entry.get("actor_id"),
            entry.get("resource_type"),
            entry.get("resource_id"),
            str(entry.get("prev_hash") or ""),
            str(entry.get("audit_hash") or ""),
            entry.get("occurred_at"),
            json.dumps(entry, ensure_ascii=True, sort_keys=True, default=str),
        )
        sql = (
            f"INSERT INTO {self._table} (audit_id, tenant_id, action, actor_id, resource_type, resource_id,"
            " prev_hash, audit_hash, occurred_at, payload)"
            " VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s::jsonb)"
            " ON CONFLICT (audit_id) DO NOTHING"
        )

        def _insert(conn: Any) -> dict[str, Any]:
            with conn.cursor() as cur:
                cur.execute(sql, row)
            return entry

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_insert)

    def list(
        self,
        *,
        tenant_id: str,
        action: str | None = None,
        resource_type: str | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        clauses = ["tenant_id = %s"]
        params: list[Any] = [tenant_id]
        for column, value in zip(_FILTER_COLUMNS, (action, resource_type)):
            if value:
                clauses.append(f"{column} = %s")
                params.append(value)
        sql = f"SELECT payload FROM {self._table} WHERE {' AND '.join(clauses)} ORDER BY occurred_at DESC"
        if limit is not None:
            sql += " LIMIT %s"
            params.append(int(limit))

        def _select(conn: Any) -> list[dict[str, Any]]:
            with conn.cursor() as cur:
                cur.execute(sql, tuple(params))
                fetched = cur.fetchall() or []
            return [r[0] for r in fetched if isinstance(r[0], dict)]

        return self._tx_runner.run_in_tx(tenant_id=tenant_id, fn=_select)
