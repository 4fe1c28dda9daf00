from __future__ import annotations

import hashlib
import json
import logging
import os
import uuid
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

from linksy.errors import ApiError, not_found
from linksy.geocoding import GoogleGeocoder
from linksy.object_storage import create_object_storage_from_env
from linksy.repositories import (
    InMemoryAuditLogsRepository,
    InMemoryCrisisKeywordsRepository,
    InMemoryProvidersRepository,
    InMemoryTicketsRepository,
)
from linksy.runtime_profile import env_flag, require_backend
from linksy.sla import parse_ts
from linksy.store_admin import StoreAdminMixin
from linksy.store_directory import StoreDirectoryMixin
from linksy.store_ops import StoreOpsMixin
from linksy.store_providers import StoreProvidersMixin
from linksy.store_tickets import StoreTicketsMixin
from linksy.webhooks import WebhookDispatcher

logger = logging.getLogger(__name__)


@dataclass
class IdempotencyRecord:
    fingerprint: str
    data: dict[str, Any]


class InMemoryStore(StoreProvidersMixin, StoreTicketsMixin, StoreDirectoryMixin, StoreOpsMixin, StoreAdminMixin):
    # dict-of-dicts keyed by entity id; order is the snapshot order
    COLLECTIONS: tuple[str, ...] = (
        "tenants",
        "providers",
        "locations",
        "contacts",
        "provider_notes",
        "provider_events",
        "provider_needs",
        "provider_applications",
        "need_categories",
        "needs",
        "tickets",
        "ticket_comments",
        "ticket_events",
        "crisis_keywords",
        "crisis_overrides",
        "custom_fields",
        "search_sessions",
        "interactions",
        "surveys",
        "call_logs",
        "support_tickets",
        "support_comments",
        "webhooks",
        "webhook_deliveries",
        "notifications",
        "files",
    )

    def __init__(self) -> None:
        self.sla_approaching_hours = self._env_float(
            "SLA_APPROACHING_HOURS", default=12.0, minimum=0.0, maximum=24.0 * 30
        )
        self.sla_compliance_window_days = self._env_int("SLA_COMPLIANCE_WINDOW_DAYS", default=30, minimum=1)
        self.ticket_duplicate_window_days = self._env_int("TICKET_DUPLICATE_WINDOW_DAYS", default=7, minimum=1)
        self.ticket_email_hourly_limit = self._env_int("TICKET_EMAIL_HOURLY_LIMIT", default=5, minimum=1)
        self.ticket_max_pending_per_client = self._env_int("TICKET_MAX_PENDING_PER_CLIENT", default=4, minimum=1)
        self.provider_stale_days = self._env_int("PROVIDER_STALE_DAYS", default=90, minimum=1)
        self.geocode_batch_delay_ms = self._env_int("GEOCODE_BATCH_DELAY_MS", default=25, minimum=0)
        self.object_storage = create_object_storage_from_env(os.environ)
        self.geocoder = GoogleGeocoder()
        self.webhook_dispatcher = WebhookDispatcher()
        self.idempotency_records: dict[tuple[str, str], IdempotencyRecord] = {}
        self.audit_logs: list[dict[str, Any]] = []
        for name in self.COLLECTIONS:
            setattr(self, name, {})
        self._bind_repositories()

    @staticmethod
    def _env_int(name: str, *, default: int, minimum: int = 0) -> int:
        raw = os.environ.get(name, "").strip()
        if not raw:
            return default
        try:
            value = int(raw)
        except ValueError:
            return default
        return max(minimum, value)

    @staticmethod
    def _env_float(name: str, *, default: float, minimum: float = 0.0, maximum: float = 1.0) -> float:
        raw = os.environ.get(name, "").strip()
        if not raw:
            return default
        try:
            value = float(raw)
        except ValueError:
            return default
        return max(minimum, min(maximum, value))

    def _bind_repositories(self) -> None:
        self.providers_repository = InMemoryProvidersRepository(self.providers)
        self.tickets_repository = InMemoryTicketsRepository(self.tickets)
        self.crisis_keywords_repository = InMemoryCrisisKeywordsRepository(self.crisis_keywords)
        self.audit_repository = InMemoryAuditLogsRepository(self.audit_logs)

    def reset(self) -> None:
        self.object_storage = create_object_storage_from_env(os.environ)
        reset_fn = getattr(self.object_storage, "reset", None)
        if callable(reset_fn):
            reset_fn()
        self.geocoder = GoogleGeocoder()
        self.webhook_dispatcher = WebhookDispatcher()
        self.idempotency_records.clear()
        self.audit_logs.clear()
        for name in self.COLLECTIONS:
            getattr(self, name).clear()

    @staticmethod
    def _fingerprint(payload: dict[str, Any]) -> str:
        return json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=True, default=str)

    @staticmethod
    def _assert_tenant_scope(entity_tenant_id: str, tenant_id: str) -> None:
        if entity_tenant_id != tenant_id:
            raise ApiError(
                code="TENANT_SCOPE_VIOLATION",
                message="tenant mismatch",
                error_class="security_sensitive",
                retryable=False,
                http_status=403,
            )

    @staticmethod
    def _utcnow_iso() -> str:
        return datetime.now(UTC).isoformat()

    @staticmethod
    def _utcnow() -> datetime:
        return datetime.now(UTC)

    @staticmethod
    def _new_id(prefix: str) -> str:
        return f"{prefix}_{uuid.uuid4().hex[:12]}"

    @staticmethod
    def _paginate(items: list[dict[str, Any]], *, limit: int, offset: int) -> dict[str, Any]:
        limit = max(1, min(100, int(limit)))
        offset = max(0, int(offset))
        page = items[offset : offset + limit]
        has_more = offset + len(page) < len(items)
        return {
            "items": page,
            "total": len(items),
            "has_more": has_more,
            "next_offset": offset + len(page) if has_more else None,
        }

    @staticmethod
    def _in_date_range(value: Any, date_from: str | None, date_to: str | None) -> bool:
        if not date_from and not date_to:
            return True
        ts = parse_ts(value)
        if ts is None:
            return False
        if date_from:
            start = parse_ts(date_from)
            if start is not None and ts < start:
                return False
        if date_to:
            end = parse_ts(date_to)
            if end is not None:
                # a bare date includes the whole day
                if len(date_to.strip()) == 10:
                    end = end + timedelta(days=1)
                    if ts >= end:
                        return False
                elif ts > end:
                    return False
        return True

    def _after_write(self) -> None:
        return None

    def _persist(self, collection: str, item: dict[str, Any], *, key: str) -> dict[str, Any]:
        saved = dict(item)
        getattr(self, collection)[str(saved[key])] = saved
        self._after_write()
        return dict(saved)

    def _remove(self, collection: str, item_id: str) -> bool:
        removed = getattr(self, collection).pop(item_id, None) is not None
        if removed:
            self._after_write()
        return removed

    def _require(
        self,
        collection: str,
        item_id: str,
        *,
        tenant_id: str,
        code: str,
        label: str,
    ) -> dict[str, Any]:
        row = getattr(self, collection).get(item_id)
        if row is None:
            raise not_found(code, f"{label} not found")
        self._assert_tenant_scope(str(row.get("tenant_id") or ""), tenant_id)
        return dict(row)

    def _persist_provider(self, *, provider: dict[str, Any]) -> dict[str, Any]:
        saved = self.providers_repository.upsert(provider=provider)
        self._after_write()
        return saved

    def _remove_provider(self, *, tenant_id: str, provider_id: str) -> bool:
        deleted = self.providers_repository.delete(tenant_id=tenant_id, provider_id=provider_id)
        if deleted:
            self._after_write()
        return deleted

    def _persist_ticket(self, *, ticket: dict[str, Any]) -> dict[str, Any]:
        saved = self.tickets_repository.upsert(ticket=ticket)
        self._after_write()
        return saved

    def _persist_crisis_keyword(self, *, keyword: dict[str, Any]) -> dict[str, Any]:
        saved = self.crisis_keywords_repository.upsert(keyword=keyword)
        self._after_write()
        return saved

    def _remove_crisis_keyword(self, *, tenant_id: str, keyword_id: str) -> bool:
        deleted = self.crisis_keywords_repository.delete(tenant_id=tenant_id, keyword_id=keyword_id)
        if deleted:
            self._after_write()
        return deleted

    def run_idempotent(
        self,
        *,
        endpoint: str,
        tenant_id: str,
        idempotency_key: str,
        payload: dict[str, Any],
        execute: callable,
    ) -> dict[str, Any]:
        key = (f"{tenant_id}:{endpoint}", idempotency_key)
        current_fingerprint = self._fingerprint(payload)
        if key in self.idempotency_records:
            record = self.idempotency_records[key]
            if record.fingerprint != current_fingerprint:
                raise ApiError(
                    code="IDEMPOTENCY_CONFLICT",
                    message="same key with different payload",
                    error_class="validation",
                    retryable=False,
                    http_status=409,
                )
            return record.data

        data = execute()
        self.idempotency_records[key] = IdempotencyRecord(
            fingerprint=current_fingerprint,
            data=data,
        )
        self._after_write()
        return data

    @staticmethod
    def _compute_audit_hash(*, log: dict[str, Any], prev_hash: str) -> str:
        material = {
            key: value
            for key, value in log.items()
            if key not in {"audit_hash", "prev_hash"}
        }
        material["prev_hash"] = prev_hash
        blob = json.dumps(material, sort_keys=True, ensure_ascii=True, separators=(",", ":"), default=str)
        return hashlib.sha256(blob.encode("utf-8")).hexdigest()

    def _append_audit_log(self, *, log: dict[str, Any]) -> dict[str, Any]:
        entry = dict(log)
        if not entry.get("audit_id"):
            entry["audit_id"] = f"audit_{uuid.uuid4().hex[:12]}"
        if not entry.get("occurred_at"):
            entry["occurred_at"] = self._utcnow_iso()
        tenant_id = str(entry.get("tenant_id") or "")
        prev_hash = ""
        for row in reversed(self.audit_logs):
            if str(row.get("tenant_id") or "") == tenant_id:
                prev_hash = str(row.get("audit_hash") or "")
                break
        entry["prev_hash"] = prev_hash
        entry["audit_hash"] = self._compute_audit_hash(log=entry, prev_hash=prev_hash)
        saved = self.audit_repository.append(log=entry)
        self._after_write()
        return saved

    def record_audit(
        self,
        *,
        tenant_id: str,
        actor_id: str | None,
        action: str,
        resource_type: str,
        resource_id: str | None,
        details: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        return self._append_audit_log(
            log={
                "tenant_id": tenant_id,
                "actor_id": actor_id,
                "action": action,
                "resource_type": resource_type,
                "resource_id": resource_id,
                "details": details or {},
            }
        )

    def verify_audit_integrity(self, *, tenant_id: str | None = None) -> dict[str, Any]:
        """Walk the hash chain of one tenant, or of every tenant in turn."""
        if tenant_id:
            return self._verify_chain([x for x in self.audit_logs if str(x.get("tenant_id") or "") == tenant_id])
        checked = 0
        tenant_ids = sorted({str(x.get("tenant_id") or "") for x in self.audit_logs})
        for tid in tenant_ids:
            result = self._verify_chain([x for x in self.audit_logs if str(x.get("tenant_id") or "") == tid])
            if not result["valid"]:
                result["checked_count"] += checked
                return result
            checked += result["checked_count"]
        return {"valid": True, "checked_count": checked, "tenants": len(tenant_ids)}

    def _verify_chain(self, rows: list[dict[str, Any]]) -> dict[str, Any]:
        prev_hash = ""
        for idx, row in enumerate(rows):
            stored_prev = str(row.get("prev_hash") or "")
            if stored_prev != prev_hash:
                return {
                    "valid": False,
                    "checked_count": idx + 1,
                    "reason": "prev_hash_mismatch",
                    "audit_id": row.get("audit_id"),
                }
            expected = self._compute_audit_hash(log=row, prev_hash=stored_prev)
            actual = str(row.get("audit_hash") or "")
            if actual != expected:
                return {
                    "valid": False,
                    "checked_count": idx + 1,
                    "reason": "audit_hash_mismatch",
                    "audit_id": row.get("audit_id"),
                }
            prev_hash = actual
        return {
            "valid": True,
            "checked_count": len(rows),
            "last_hash": prev_hash,
        }

    def list_audit_logs(
        self,
        *,
        tenant_id: str,
        action: str | None = None,
        resource_type: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows = self.audit_repository.list(tenant_id=tenant_id, action=action, resource_type=resource_type)
        return self._paginate(rows, limit=limit, offset=offset)


def create_store_from_env(environ: Mapping[str, str] | None = None) -> InMemoryStore:
    from linksy.store_backends import PostgresBackedStore, SqliteBackedStore

    env = os.environ if environ is None else environ
    backend = env.get("LINKSY_STORE_BACKEND", "memory").strip().lower()
    require_backend("LINKSY_STORE_BACKEND", actual=backend, required="postgres", environ=env)
    if backend == "sqlite":
        db_path = env.get("LINKSY_STORE_SQLITE_PATH", ".local/linksy-store.sqlite3")
        return SqliteBackedStore(db_path)
    if backend == "postgres":
        dsn = env.get("POSTGRES_DSN", "").strip()
        if not dsn:
            raise ValueError("POSTGRES_DSN must be set when LINKSY_STORE_BACKEND=postgres")
        table_name = env.get("LINKSY_STORE_POSTGRES_TABLE", "linksy_store_state")
        apply_rls = env_flag(env, "POSTGRES_APPLY_RLS")
        return PostgresBackedStore(dsn=dsn, table_name=table_name, apply_rls=apply_rls)
    return InMemoryStore()


store = create_store_from_env()
