from __future__ import annotations

import logging
import secrets
from collections import Counter
from datetime import timedelta
from typing import Any

from linksy.csv_export import export_filename, to_csv
from linksy.errors import conflict, forbidden, invalid, not_found
from linksy.file_validation import validate_upload
from linksy.geocoding import batch_geocode, needs_geocode
from linksy.security import AuthContext
from linksy.sla import parse_ts
from linksy.store_providers import slugify
from linksy.webhooks import TEST_EVENT_TYPE, WEBHOOK_EVENT_TYPES, is_valid_webhook_url

logger = logging.getLogger(__name__)

SUPPORT_STATUSES: tuple[str, ...] = ("open", "in_progress", "resolved", "closed")
SUPPORT_UPDATABLE_FIELDS: tuple[str, ...] = ("status", "priority", "assigned_to", "category")
REFERRAL_EXPORT_STATUSES: tuple[str, ...] = ("all", "open", "closed")


def _sanitize_webhook(webhook: dict[str, Any]) -> dict[str, Any]:
    row = {k: v for k, v in webhook.items() if k != "secret"}
    row["has_secret"] = bool(webhook.get("secret"))
    return row


def _validate_events(events: Any) -> list[str]:
    if not isinstance(events, list) or not events:
        raise invalid("events must be a non-empty list")
    unknown = [x for x in events if x not in WEBHOOK_EVENT_TYPES]
    if unknown:
        raise invalid("unsupported webhook events", details={"unknown": unknown, "supported": list(WEBHOOK_EVENT_TYPES)})
    return list(dict.fromkeys(events))


class StoreOpsMixin:
    # ------------------------------------------------------------------
    # Tenants
    # ------------------------------------------------------------------

    def list_tenants(self) -> list[dict[str, Any]]:
        return sorted((dict(x) for x in self.tenants.values()), key=lambda x: str(x.get("name") or "").lower())

    def get_tenant(self, *, tenant_id: str) -> dict[str, Any]:
        tenant = self.tenants.get(tenant_id)
        if tenant is None:
            raise not_found("TENANT_NOT_FOUND", "tenant not found")
        return dict(tenant)

    def _assert_tenant_slug_free(self, slug: str, *, exclude_id: str | None = None) -> None:
        for tenant in self.tenants.values():
            if tenant.get("slug") == slug and tenant.get("tenant_id") != exclude_id:
                raise conflict("TENANT_SLUG_CONFLICT", f"slug already in use: {slug}")

    def create_tenant(self, *, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise invalid("name is required")
        slug = slugify(payload.get("slug") or name)
        if not slug:
            raise invalid("slug must contain letters or digits")
        self._assert_tenant_slug_free(slug)
        now = self._utcnow_iso()
        tenant = {
            "tenant_id": self._new_id("ten"),
            "name": name,
            "slug": slug,
            "settings": dict(payload.get("settings") or {}),
            "branding": dict(payload.get("branding") or {}),
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        }
        saved = self._persist("tenants", tenant, key="tenant_id")
        self.record_audit(
            tenant_id=saved["tenant_id"],
            actor_id=actor_id,
            action="tenant.created",
            resource_type="tenant",
            resource_id=saved["tenant_id"],
            details={"slug": slug},
        )
        return saved

    def update_tenant(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        tenant = self.get_tenant(tenant_id=tenant_id)
        changes = {k: v for k, v in payload.items() if k in {"name", "slug", "settings", "branding"} and v is not None}
        if not changes:
            raise invalid("no updatable fields provided")
        if "slug" in changes:
            changes["slug"] = slugify(changes["slug"])
            self._assert_tenant_slug_free(changes["slug"], exclude_id=tenant_id)
        tenant.update(changes)
        tenant["updated_at"] = self._utcnow_iso()
        saved = self._persist("tenants", tenant, key="tenant_id")
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="tenant.updated",
            resource_type="tenant",
            resource_id=tenant_id,
            details={"fields": sorted(changes.keys())},
        )
        return saved

    def delete_tenant(self, *, tenant_id: str, actor_id: str | None) -> dict[str, Any]:
        self.get_tenant(tenant_id=tenant_id)
        self._remove("tenants", tenant_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="tenant.deleted",
            resource_type="tenant",
            resource_id=tenant_id,
        )
        return {"tenant_id": tenant_id, "deleted": True}

    # ------------------------------------------------------------------
    # Webhooks
    # ------------------------------------------------------------------

    def _require_webhook(self, *, tenant_id: str, webhook_id: str) -> dict[str, Any]:
        return self._require("webhooks", webhook_id, tenant_id=tenant_id, code="WEBHOOK_NOT_FOUND", label="webhook")

    def list_webhooks(self, *, tenant_id: str) -> dict[str, Any]:
        rows = [_sanitize_webhook(x) for x in self.webhooks.values() if x.get("tenant_id") == tenant_id]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return {"items": rows, "total": len(rows), "supported_events": list(WEBHOOK_EVENT_TYPES)}

    def get_webhook(self, *, tenant_id: str, webhook_id: str) -> dict[str, Any]:
        return _sanitize_webhook(self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id))

    def create_webhook(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        url = str(payload.get("url") or "").strip()
        if not is_valid_webhook_url(url):
            raise invalid("url must be an http(s) URL")
        events = _validate_events(payload.get("events"))
        now = self._utcnow_iso()
        webhook = {
            "webhook_id": self._new_id("wh"),
            "tenant_id": tenant_id,
            "url": url,
            "events": events,
            "secret": payload.get("secret") or secrets.token_hex(32),
            "description": payload.get("description"),
            "is_active": bool(payload.get("is_active", True)),
            "last_delivery_at": None,
            "last_error": None,
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        }
        saved = self._persist("webhooks", webhook, key="webhook_id")
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="webhook.created",
            resource_type="webhook",
            resource_id=saved["webhook_id"],
            details={"url": url, "events": events},
        )
        return _sanitize_webhook(saved)

    def update_webhook(
        self,
        *,
        tenant_id: str,
        webhook_id: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        webhook = self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id)
        if payload.get("url") is not None:
            url = str(payload["url"]).strip()
            if not is_valid_webhook_url(url):
                raise invalid("url must be an http(s) URL")
            webhook["url"] = url
        if payload.get("events") is not None:
            webhook["events"] = _validate_events(payload["events"])
        for key in ("description", "is_active"):
            if payload.get(key) is not None:
                webhook[key] = payload[key]
        webhook["updated_at"] = self._utcnow_iso()
        saved = self._persist("webhooks", webhook, key="webhook_id")
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="webhook.updated",
            resource_type="webhook",
            resource_id=webhook_id,
        )
        return _sanitize_webhook(saved)

    def delete_webhook(self, *, tenant_id: str, webhook_id: str, actor_id: str | None) -> dict[str, Any]:
        self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id)
        for key in [k for k, v in self.webhook_deliveries.items() if v.get("webhook_id") == webhook_id]:
            del self.webhook_deliveries[key]
        self._remove("webhooks", webhook_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="webhook.deleted",
            resource_type="webhook",
            resource_id=webhook_id,
        )
        return {"webhook_id": webhook_id, "deleted": True}

    def get_webhook_secret(self, *, tenant_id: str, webhook_id: str) -> dict[str, Any]:
        webhook = self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id)
        return {"webhook_id": webhook_id, "secret": webhook.get("secret")}

    def rotate_webhook_secret(self, *, tenant_id: str, webhook_id: str, actor_id: str | None) -> dict[str, Any]:
        webhook = self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id)
        webhook["secret"] = secrets.token_hex(32)
        webhook["updated_at"] = self._utcnow_iso()
        self._persist("webhooks", webhook, key="webhook_id")
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="webhook.secret_rotated",
            resource_type="webhook",
            resource_id=webhook_id,
        )
        return {"webhook_id": webhook_id, "secret": webhook["secret"]}

    def _record_delivery(self, webhook: dict[str, Any], delivery: dict[str, Any]) -> dict[str, Any]:
        saved = self._persist("webhook_deliveries", delivery, key="delivery_id")
        current = self.webhooks.get(webhook["webhook_id"])
        if current is not None:
            current = dict(current)
            current["last_delivery_at"] = delivery["created_at"]
            current["last_error"] = None if delivery["success"] else delivery.get("error_message")
            self._persist("webhooks", current, key="webhook_id")
        return saved

    def test_webhook(self, *, tenant_id: str, webhook_id: str) -> dict[str, Any]:
        webhook = self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id)
        delivery = self.webhook_dispatcher.deliver(
            webhook,
            TEST_EVENT_TYPE,
            {"message": "This is a test event from Linksy.", "webhook_id": webhook_id},
        )
        return self._record_delivery(webhook, delivery)

    def list_webhook_deliveries(
        self,
        *,
        tenant_id: str,
        webhook_id: str,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        self._require_webhook(tenant_id=tenant_id, webhook_id=webhook_id)
        rows = [dict(x) for x in self.webhook_deliveries.values() if x.get("webhook_id") == webhook_id]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return self._paginate(rows, limit=limit, offset=offset)

    def dispatch_webhook_event(self, *, tenant_id: str, event_type: str, data: dict[str, Any]) -> int:
        """Deliver ``event_type`` to every matching active webhook of the tenant.

        Delivery problems are recorded on the webhook and logged; they never
        propagate to the caller, so a broken endpoint cannot fail a ticket
        mutation. Returns the number of deliveries attempted.
        """
        attempted = 0
        targets = [
            dict(x)
            for x in self.webhooks.values()
            if x.get("tenant_id") == tenant_id and x.get("is_active") and event_type in (x.get("events") or [])
        ]
        for webhook in targets:
            attempted += 1
            try:
                delivery = self.webhook_dispatcher.deliver(webhook, event_type, data)
                self._record_delivery(webhook, delivery)
            except Exception:
                logger.exception("webhook %s dispatch of %s failed", webhook.get("webhook_id"), event_type)
        return attempted

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    def notify(
        self,
        *,
        tenant_id: str,
        user_id: str,
        type: str,
        title: str,
        message: str | None = None,
        link: str | None = None,
    ) -> dict[str, Any] | None:
        if not user_id:
            return None
        try:
            return self._persist(
                "notifications",
                {
                    "notification_id": self._new_id("ntf"),
                    "tenant_id": tenant_id,
                    "user_id": user_id,
                    "type": type,
                    "title": title,
                    "message": message,
                    "link": link,
                    "is_read": False,
                    "read_at": None,
                    "created_at": self._utcnow_iso(),
                },
                key="notification_id",
            )
        except Exception:
            logger.exception("notification for user %s could not be stored", user_id)
            return None

    def list_notifications(
        self,
        *,
        tenant_id: str,
        user_id: str,
        unread_only: bool = False,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        mine = [
            dict(x)
            for x in self.notifications.values()
            if x.get("tenant_id") == tenant_id and x.get("user_id") == user_id
        ]
        unread_count = sum(1 for x in mine if not x.get("is_read"))
        rows = [x for x in mine if not unread_only or not x.get("is_read")]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        page = self._paginate(rows, limit=limit, offset=offset)
        page["unread_count"] = unread_count
        return page

    def mark_notification(self, *, tenant_id: str, notification_id: str, user_id: str, is_read: bool) -> dict[str, Any]:
        notification = self._require(
            "notifications", notification_id, tenant_id=tenant_id, code="NOTIFICATION_NOT_FOUND", label="notification"
        )
        if notification.get("user_id") != user_id:
            raise not_found("NOTIFICATION_NOT_FOUND", "notification not found")
        notification["is_read"] = bool(is_read)
        notification["read_at"] = self._utcnow_iso() if is_read else None
        return self._persist("notifications", notification, key="notification_id")

    def mark_all_notifications_read(self, *, tenant_id: str, user_id: str) -> dict[str, Any]:
        now = self._utcnow_iso()
        updated = 0
        for notification in self.notifications.values():
            if notification.get("tenant_id") == tenant_id and notification.get("user_id") == user_id:
                if not notification.get("is_read"):
                    notification["is_read"] = True
                    notification["read_at"] = now
                    updated += 1
        if updated:
            self._after_write()
        return {"updated": updated}

    # ------------------------------------------------------------------
    # Support tickets
    # ------------------------------------------------------------------

    def _next_support_number(self, *, tenant_id: str) -> str:
        day = self._utcnow().strftime("%Y%m%d")
        prefix = f"SUP-{day}-"
        count = sum(
            1
            for x in self.support_tickets.values()
            if x.get("tenant_id") == tenant_id and str(x.get("ticket_number") or "").startswith(prefix)
        )
        return f"{prefix}{count + 1:04d}"

    def list_support_tickets(
        self,
        *,
        tenant_id: str,
        viewer: AuthContext,
        status: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows = [
            dict(x)
            for x in self.support_tickets.values()
            if x.get("tenant_id") == tenant_id
            and (viewer.is_site_admin or x.get("submitter_id") == viewer.subject)
            and (not status or status == "all" or x.get("status") == status)
        ]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return self._paginate(rows, limit=limit, offset=offset)

    def create_support_ticket(self, *, tenant_id: str, submitter: AuthContext, payload: dict[str, Any]) -> dict[str, Any]:
        subject = str(payload.get("subject") or "").strip()
        description = str(payload.get("description") or "").strip()
        if not subject or not description:
            raise invalid("subject and description are required")
        now = self._utcnow_iso()
        ticket = {
            "support_ticket_id": self._new_id("sup"),
            "tenant_id": tenant_id,
            "ticket_number": self._next_support_number(tenant_id=tenant_id),
            "subject": subject,
            "description": description,
            "category": payload.get("category") or "other",
            "priority": payload.get("priority") or "medium",
            "status": "open",
            "provider_id": payload.get("provider_id"),
            "submitter_id": submitter.subject,
            "submitter_name": submitter.name or None,
            "submitter_email": submitter.email or None,
            "assigned_to": None,
            "resolved_at": None,
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("support_tickets", ticket, key="support_ticket_id")

    def _require_support_ticket(self, *, tenant_id: str, support_ticket_id: str, viewer: AuthContext) -> dict[str, Any]:
        ticket = self._require(
            "support_tickets",
            support_ticket_id,
            tenant_id=tenant_id,
            code="SUPPORT_TICKET_NOT_FOUND",
            label="support ticket",
        )
        if not viewer.is_site_admin and ticket.get("submitter_id") != viewer.subject:
            raise forbidden("support ticket access denied")
        return ticket

    def get_support_ticket(self, *, tenant_id: str, support_ticket_id: str, viewer: AuthContext) -> dict[str, Any]:
        ticket = self._require_support_ticket(tenant_id=tenant_id, support_ticket_id=support_ticket_id, viewer=viewer)
        comments = [
            dict(x)
            for x in self.support_comments.values()
            if x.get("support_ticket_id") == support_ticket_id and (viewer.is_site_admin or not x.get("is_internal"))
        ]
        ticket["comments"] = sorted(comments, key=lambda x: str(x.get("created_at") or ""))
        return ticket

    def update_support_ticket(
        self,
        *,
        tenant_id: str,
        support_ticket_id: str,
        viewer: AuthContext,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        ticket = self._require_support_ticket(tenant_id=tenant_id, support_ticket_id=support_ticket_id, viewer=viewer)
        changes = {k: v for k, v in payload.items() if k in SUPPORT_UPDATABLE_FIELDS and v is not None}
        if not changes:
            raise invalid("no updatable fields provided")
        if "status" in changes and changes["status"] not in SUPPORT_STATUSES:
            raise invalid(f"invalid status: {changes['status']}")
        now = self._utcnow_iso()
        ticket.update(changes)
        if changes.get("status") == "resolved":
            ticket["resolved_at"] = now
        ticket["updated_at"] = now
        return self._persist("support_tickets", ticket, key="support_ticket_id")

    def add_support_comment(
        self,
        *,
        tenant_id: str,
        support_ticket_id: str,
        author: AuthContext,
        content: str,
        is_internal: bool = False,
    ) -> dict[str, Any]:
        ticket = self._require_support_ticket(tenant_id=tenant_id, support_ticket_id=support_ticket_id, viewer=author)
        text = str(content or "").strip()
        if not text:
            raise invalid("content is required")
        comment = {
            "comment_id": self._new_id("cmt"),
            "tenant_id": tenant_id,
            "support_ticket_id": support_ticket_id,
            "author_id": author.subject,
            "author_name": author.name or author.email or None,
            "content": text,
            "is_internal": bool(is_internal) and author.is_site_admin,
            "created_at": self._utcnow_iso(),
        }
        saved = self._persist("support_comments", comment, key="comment_id")
        if author.is_site_admin and not saved["is_internal"] and ticket.get("submitter_id") != author.subject:
            self.notify(
                tenant_id=tenant_id,
                user_id=ticket["submitter_id"],
                type="support_reply",
                title=f"New reply on {ticket['ticket_number']}",
                message=ticket["subject"],
                link=f"/dashboard/support/{support_ticket_id}",
            )
        return saved

    # ------------------------------------------------------------------
    # Stats and reports
    # ------------------------------------------------------------------

    def stats_overview(self, *, tenant_id: str) -> dict[str, Any]:
        now = self._utcnow()
        since = now - timedelta(days=30)

        def _recent(row: dict[str, Any]) -> bool:
            created = parse_ts(row.get("created_at"))
            return created is not None and created >= since

        providers = self.providers_repository.list(tenant_id=tenant_id)
        tickets = self.tickets_repository.list(tenant_id=tenant_id)
        sessions = [x for x in self.search_sessions.values() if x.get("tenant_id") == tenant_id]
        ratings = [
            int(x["rating"])
            for x in self.surveys.values()
            if x.get("tenant_id") == tenant_id and x.get("rating") is not None
        ]
        support = [x for x in self.support_tickets.values() if x.get("tenant_id") == tenant_id]
        by_status = Counter(str(t.get("status") or "pending") for t in tickets)
        return {
            "providers": {
                "total": len(providers),
                "active": sum(1 for p in providers if p.get("status") == "active"),
            },
            "tickets": {
                "total": len(tickets),
                "open": by_status.get("pending", 0),
                "closed": len(tickets) - by_status.get("pending", 0),
                "by_status": dict(by_status),
                "last_30_days": sum(1 for t in tickets if _recent(t)),
            },
            "search_sessions": {
                "total": len(sessions),
                "last_30_days": sum(1 for s in sessions if _recent(s)),
            },
            "surveys": {
                "completed": len(ratings),
                "average_rating": round(sum(ratings) / len(ratings), 2) if ratings else None,
            },
            "support_tickets": {
                "total": len(support),
                "open": sum(1 for x in support if x.get("status") in {"open", "in_progress"}),
                "closed": sum(1 for x in support if x.get("status") in {"resolved", "closed"}),
            },
            "needs": {
                "total": sum(1 for x in self.needs.values() if x.get("tenant_id") == tenant_id and x.get("is_active")),
            },
        }

    def stats_freshness(self, *, tenant_id: str, limit: int = 50) -> dict[str, Any]:
        now = self._utcnow()
        cutoff = now - timedelta(days=self.provider_stale_days)
        stale = []
        for provider in self.providers_repository.list(tenant_id=tenant_id):
            if provider.get("status") != "active":
                continue
            updated = parse_ts(provider.get("updated_at"))
            if updated is None or updated >= cutoff:
                continue
            stale.append(
                {
                    "provider_id": provider["provider_id"],
                    "name": provider.get("name"),
                    "updated_at": provider.get("updated_at"),
                    "days_stale": (now - updated).days,
                }
            )
        stale.sort(key=lambda x: str(x["updated_at"]))
        limit = max(1, min(100, int(limit)))
        return {
            "stale_days": self.provider_stale_days,
            "total_stale": len(stale),
            "items": stale[:limit],
        }

    def reassignment_report(
        self,
        *,
        tenant_id: str,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> dict[str, Any]:
        events = [
            x
            for x in self.ticket_events.values()
            if x.get("tenant_id") == tenant_id
            and x.get("event_type") in {"forwarded", "reassigned"}
            and self._in_date_range(x.get("created_at"), date_from, date_to)
        ]
        providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
        counts = [
            int(t.get("reassignment_count") or 0)
            for t in self.tickets_repository.list(tenant_id=tenant_id)
            if int(t.get("reassignment_count") or 0) > 0
        ]
        forwarding = Counter(
            (e.get("previous_state") or {}).get("provider_id")
            for e in events
            if e.get("event_type") == "forwarded" and (e.get("previous_state") or {}).get("provider_id")
        )
        receiving = Counter(
            (e.get("new_state") or {}).get("provider_id") for e in events if (e.get("new_state") or {}).get("provider_id")
        )
        reasons = Counter(str(e.get("reason") or "other") for e in events)
        return {
            "total_reassignments": len(events),
            "provider_initiated": sum(
                1 for e in events if e.get("actor_type") in {"provider_contact", "provider_admin"}
            ),
            "admin_initiated": sum(1 for e in events if e.get("actor_type") == "site_admin"),
            "avg_reassignments_per_ticket": round(sum(counts) / len(counts), 2) if counts else 0,
            "top_forwarding_providers": [
                {"provider_id": pid, "provider_name": providers[pid]["name"], "forward_count": n}
                for pid, n in forwarding.most_common(10)
                if pid in providers
            ],
            "top_receiving_providers": [
                {"provider_id": pid, "provider_name": providers[pid]["name"], "receive_count": n}
                for pid, n in receiving.most_common(10)
                if pid in providers
            ],
            "reason_breakdown": dict(reasons),
        }

    # ------------------------------------------------------------------
    # CSV exports
    # ------------------------------------------------------------------

    def export_referrals_csv(
        self,
        *,
        tenant_id: str,
        status: str = "all",
        include_legacy: bool = True,
        date_from: str | None = None,
        date_to: str | None = None,
    ) -> tuple[str, str]:
        if status not in REFERRAL_EXPORT_STATUSES:
            raise invalid("status must be all, open or closed")
        providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
        rows = []
        for ticket in self.tickets_repository.list(tenant_id=tenant_id):
            is_open = ticket.get("status") == "pending"
            if status == "open" and not is_open:
                continue
            if status == "closed" and is_open:
                continue
            if not include_legacy and ticket.get("legacy_id"):
                continue
            if not self._in_date_range(ticket.get("created_at"), date_from, date_to):
                continue
            rows.append(ticket)
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        columns = [
            ("Ticket Number", "ticket_number"),
            ("Status", "status"),
            ("Client Name", "client_name"),
            ("Client Email", "client_email"),
            ("Client Phone", "client_phone"),
            ("Provider", lambda r: (providers.get(r.get("provider_id")) or {}).get("name")),
            ("Need", lambda r: (self.needs.get(r.get("need_id") or "") or {}).get("name")),
            ("Description", "description_of_need"),
            ("Source", "source"),
            ("Created Date", "created_at"),
            ("Updated Date", "updated_at"),
        ]
        return export_filename("referrals"), to_csv(rows, columns)

    def export_providers_csv(self, *, tenant_id: str) -> tuple[str, str]:
        locations = self._locations_by_provider(tenant_id)
        rows = sorted(self.providers_repository.list(tenant_id=tenant_id), key=lambda x: str(x.get("name") or "").lower())

        def _needs(row: dict[str, Any]) -> str:
            names = [str((self.needs.get(nid) or {}).get("name") or "") for nid in self._need_ids_for(row["provider_id"])]
            return "; ".join(n for n in names if n)

        columns = [
            ("Name", "name"),
            ("Slug", "slug"),
            ("Sector", "sector"),
            ("Status", "status"),
            ("Referral Type", "referral_type"),
            ("Phone", "phone"),
            ("Email", "email"),
            ("Website", "website"),
            ("Locations", lambda r: len(locations.get(r["provider_id"], []))),
            ("Needs", _needs),
            ("Created Date", "created_at"),
        ]
        return export_filename("providers"), to_csv(rows, columns)

    def export_call_logs_csv(self, *, tenant_id: str) -> tuple[str, str]:
        providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
        rows = sorted(
            (dict(x) for x in self.call_logs.values() if x.get("tenant_id") == tenant_id),
            key=lambda x: str(x.get("created_at") or ""),
            reverse=True,
        )
        columns = [
            ("Created Date", "created_at"),
            ("Call Type", "call_type"),
            ("Caller Name", "caller_name"),
            ("Provider", lambda r: (providers.get(r.get("provider_id")) or {}).get("name")),
            ("Ticket Number", lambda r: (self.tickets.get(r.get("ticket_id") or "") or {}).get("ticket_number")),
            ("Duration (min)", "duration_minutes"),
            ("Notes", "notes"),
        ]
        return export_filename("call-logs"), to_csv(rows, columns)

    def export_surveys_csv(self, *, tenant_id: str) -> tuple[str, str]:
        providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
        rows = sorted(
            (dict(x) for x in self.surveys.values() if x.get("tenant_id") == tenant_id),
            key=lambda x: str(x.get("created_at") or ""),
            reverse=True,
        )
        columns = [
            ("Ticket Number", "ticket_number"),
            ("Provider", lambda r: (providers.get(r.get("provider_id")) or {}).get("name")),
            ("Rating", "rating"),
            ("Feedback", "feedback"),
            ("Completed Date", "completed_at"),
            ("Created Date", "created_at"),
        ]
        return export_filename("surveys"), to_csv(rows, columns)

    # ------------------------------------------------------------------
    # Geocoding
    # ------------------------------------------------------------------

    def geocode_status(self, *, tenant_id: str) -> dict[str, Any]:
        rows = [x for x in self.locations.values() if x.get("tenant_id") == tenant_id]
        geocoded = sum(1 for x in rows if x.get("latitude") is not None and x.get("longitude") is not None)
        return {"total": len(rows), "geocoded": geocoded, "ungeocoded": len(rows) - geocoded}

    def run_geocode_batch(self, *, tenant_id: str, actor_id: str | None) -> dict[str, Any]:
        if not self.geocoder.enabled:
            raise invalid("GOOGLE_MAPS_API_KEY is not configured", code="GEOCODING_DISABLED")
        pending = [dict(x) for x in self.locations.values() if x.get("tenant_id") == tenant_id and needs_geocode(x)]

        def _save(location: dict[str, Any]) -> None:
            location["updated_at"] = self._utcnow_iso()
            self._persist("locations", location, key="location_id")

        result = batch_geocode(
            pending,
            geocoder=self.geocoder,
            delay_ms=self.geocode_batch_delay_ms,
            on_success=_save,
        )
        logger.info(
            "geocode batch for tenant %s: %s processed, %s failed",
            tenant_id,
            result["processed"],
            result["failed"],
        )
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="geocode.batch",
            resource_type="location",
            resource_id=None,
            details=result,
        )
        return result

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def upload_file(
        self,
        *,
        tenant_id: str,
        uploader: AuthContext,
        filename: str,
        content: bytes,
        content_type: str | None,
        folder: str | None = None,
        is_shared: bool = False,
    ) -> dict[str, Any]:
        checked = validate_upload(content, filename, content_type)
        file_id = self._new_id("file")
        storage_uri = self.object_storage.put_object(
            tenant_id=tenant_id,
            object_type="files",
            object_id=file_id,
            filename=filename,
            content_bytes=content,
            content_type=str(checked["mime_type"]),
        )
        record = {
            "file_id": file_id,
            "tenant_id": tenant_id,
            "filename": filename,
            "folder": (folder or "").strip() or None,
            "is_shared": bool(is_shared),
            "file_type": checked["file_type"],
            "mime_type": checked["mime_type"],
            "size": checked["size"],
            "storage_uri": storage_uri,
            "uploaded_by": uploader.subject,
            "created_at": self._utcnow_iso(),
        }
        saved = self._persist("files", record, key="file_id")
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=uploader.subject,
            action="file.uploaded",
            resource_type="file",
            resource_id=file_id,
            details={"filename": filename, "size": checked["size"]},
        )
        return saved

    def list_files(self, *, tenant_id: str, viewer: AuthContext, folder: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.files.values()
            if x.get("tenant_id") == tenant_id
            and (x.get("uploaded_by") == viewer.subject or x.get("is_shared"))
            and (not folder or x.get("folder") == folder)
        ]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def get_file(self, *, tenant_id: str, file_id: str, viewer: AuthContext) -> dict[str, Any]:
        record = self._require("files", file_id, tenant_id=tenant_id, code="FILE_NOT_FOUND", label="file")
        if not record.get("is_shared") and record.get("uploaded_by") != viewer.subject and not viewer.is_tenant_admin:
            raise not_found("FILE_NOT_FOUND", "file not found")
        return record

    def download_file(self, *, tenant_id: str, file_id: str, viewer: AuthContext) -> tuple[dict[str, Any], bytes]:
        record = self.get_file(tenant_id=tenant_id, file_id=file_id, viewer=viewer)
        try:
            content = self.object_storage.get_object(storage_uri=record["storage_uri"])
        except FileNotFoundError:
            raise not_found("FILE_NOT_FOUND", "file content missing") from None
        return record, content

    def file_download_url(
        self, *, tenant_id: str, file_id: str, viewer: AuthContext, expires_in: int = 3600
    ) -> dict[str, Any]:
        record = self.get_file(tenant_id=tenant_id, file_id=file_id, viewer=viewer)
        url = self.object_storage.signed_url(storage_uri=record["storage_uri"], expires_in=expires_in)
        if url is None:
            return {"file_id": file_id, "url": f"/api/v1/files/{file_id}/download", "expires_in": None}
        return {"file_id": file_id, "url": url, "expires_in": expires_in}

    def delete_file(self, *, tenant_id: str, file_id: str, viewer: AuthContext) -> dict[str, Any]:
        record = self.get_file(tenant_id=tenant_id, file_id=file_id, viewer=viewer)
        if record.get("uploaded_by") != viewer.subject and not viewer.is_tenant_admin:
            raise forbidden("only the uploader or a tenant admin can delete this file")
        try:
            self.object_storage.delete_object(storage_uri=record["storage_uri"])
        except (OSError, ValueError) as exc:
            logger.warning("failed to delete blob for file %s: %s", file_id, exc)
        self._remove("files", file_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=viewer.subject,
            action="file.deleted",
            resource_type="file",
            resource_id=file_id,
        )
        return {"file_id": file_id, "deleted": True}
