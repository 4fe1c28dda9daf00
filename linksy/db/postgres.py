from __future__ import annotations

import re
from collections.abc import Callable, Sequence
from typing import Any

TENANT_SETTING = "app.current_tenant"

_IDENTIFIER_RE = re.compile(r"[A-Za-z_][A-Za-z0-9_]*")


def _import_psycopg() -> Any:
    try:
        import psycopg  # type: ignore
    except ImportError as exc:
        raise RuntimeError("psycopg is required for PostgreSQL backends; install psycopg[binary]") from exc
    return psycopg


def validate_identifier(name: str) -> str:
    """Table and policy names are interpolated into SQL, so only bare identifiers pass."""
    if not _IDENTIFIER_RE.fullmatch(name):
        raise ValueError(f"invalid SQL identifier: {name}")
    return name


class PostgresTxRunner:
    """Run callbacks inside one PostgreSQL transaction scoped to a tenant.

    The tenant id is written to the ``app.current_tenant`` setting for the
    duration of the transaction so row-level security policies installed by
    :class:`linksy.db.rls.PostgresRlsManager` filter every statement.
    """

    def __init__(self, dsn: str) -> None:
        dsn = dsn.strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must not be empty")
        self._dsn = dsn

    @property
    def dsn(self) -> str:
        return self._dsn

    def connect(self) -> Any:
        return _import_psycopg().connect(self._dsn)

    def run_in_tx(self, *, tenant_id: str, fn: Callable[[Any], Any]) -> Any:
        if not tenant_id.strip():
            raise ValueError("tenant_id must not be empty")
        with self.connect() as conn:
            with conn.cursor() as cur:
                cur.execute(f"SELECT set_config('{TENANT_SETTING}', %s, true)", (tenant_id,))
            result = fn(conn)
            conn.commit()
        return result

    def execute_ddl(self, statements: Sequence[str]) -> int:
        with self.connect() as conn:
            with conn.cursor() as cur:
                for statement in statements:
                    cur.execute(statement)
            conn.commit()
        return len(statements)
