from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from linksy.db.postgres import TENANT_SETTING, _import_psycopg, validate_identifier

TENANT_TABLES: tuple[str, ...] = ("providers", "tickets", "crisis_keywords", "audit_logs")


def policy_name(table: str) -> str:
    return f"{table}_tenant_isolation"


class PostgresRlsManager:
    """Install and inspect tenant isolation policies on the Linksy tables.

    Every listed table must carry a ``tenant_id`` column. The policy compares
    it with the ``app.current_tenant`` setting that
    :class:`linksy.db.postgres.PostgresTxRunner` writes per transaction, and
    FORCE keeps the table owner under the same rule.
    """

    DEFAULT_TABLES = TENANT_TABLES

    def __init__(self, dsn: str, *, tables: Sequence[str] | None = None) -> None:
        dsn = dsn.strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must not be empty")
        names = list(self.DEFAULT_TABLES if tables is None else tables)
        if not names:
            raise ValueError("tables must not be empty")
        self._dsn = dsn
        self._tables = [validate_identifier(x) for x in names]

    @property
    def tables(self) -> list[str]:
        return list(self._tables)

    def statements_for(self, table: str) -> list[str]:
        policy = policy_name(table)
        predicate = f"{table}.tenant_id = current_setting('{TENANT_SETTING}', true)"
        return [
            f"ALTER TABLE {table} ENABLE ROW LEVEL SECURITY",
            f"ALTER TABLE {table} FORCE ROW LEVEL SECURITY",
            f"DROP POLICY IF EXISTS {policy} ON {table}",
            f"CREATE POLICY {policy} ON {table} USING ({predicate}) WITH CHECK ({predicate})",
        ]

    def _connect(self) -> Any:
        return _import_psycopg().connect(self._dsn)

    def apply(self) -> list[str]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                for table in self._tables:
                    for statement in self.statements_for(table):
                        cur.execute(statement)
            conn.commit()
        return self.tables

    def status(self) -> dict[str, dict[str, bool]]:
        """Per-table flags for RLS enabled, forced and the isolation policy present."""
        sql = """
            SELECT c.relname, c.relrowsecurity, c.relforcerowsecurity,
                   EXISTS (
                     SELECT 1 FROM pg_policies p
                     WHERE p.tablename = c.relname AND p.policyname = c.relname || '_tenant_isolation'
                   )
            FROM pg_class c
            WHERE c.relkind = 'r' AND c.relname = ANY(%s)
        """
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(sql, (self._tables,))
                rows = cur.fetchall() or []
        found = {
            str(row[0]): {"enabled": bool(row[1]), "forced": bool(row[2]), "policy": bool(row[3])} for row in rows
        }
        missing = {"enabled": False, "forced": False, "policy": False}
        return {table: found.get(table, dict(missing)) for table in self._tables}
