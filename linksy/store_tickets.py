from __future__ import annotations

import logging
import random
from datetime import timedelta
from typing import Any

from linksy.errors import conflict, forbidden, invalid, not_found, rate_limited
from linksy.security import AuthContext
from linksy.sla import AGING_BUCKETS, aging_bucket, compute_sla_stats, default_sla_due_at, parse_ts

logger = logging.getLogger(__name__)

TICKET_STATUSES: tuple[str, ...] = (
    "pending",
    "customer_need_addressed",
    "wrong_organization_referred",
    "outside_of_scope",
    "client_not_eligible",
    "unable_to_assist",
    "client_unresponsive",
)
TICKET_UPDATABLE_FIELDS: tuple[str, ...] = (
    "status",
    "description_of_need",
    "client_name",
    "client_phone",
    "client_email",
    "follow_up_sent",
    "provider_id",
    "need_id",
    "client_user_id",
)
REASSIGNMENT_REASONS: tuple[str, ...] = ("unable_to_assist", "wrong_org", "capacity", "internal_assignment", "other")


def _same(a: Any, b: Any) -> bool:
    return bool(a) and bool(b) and str(a).strip().lower() == str(b).strip().lower()


def _ticket_state(ticket: dict[str, Any]) -> dict[str, Any]:
    return {
        "provider_id": ticket.get("provider_id"),
        "assigned_to": ticket.get("assigned_to"),
        "status": ticket.get("status"),
    }


class StoreTicketsMixin:
    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def _next_ticket_number(self, *, tenant_id: str) -> str:
        sequence = 2000 + self.tickets_repository.count(tenant_id=tenant_id) + 1
        return f"R-{sequence}-{random.randint(0, 99):02d}"

    def _check_ticket_limits(self, *, tenant_id: str, payload: dict[str, Any]) -> None:
        email = payload.get("client_email")
        phone = payload.get("client_phone")
        provider_id = payload.get("provider_id")
        need_id = payload.get("need_id")
        now = self._utcnow()
        tickets = self.tickets_repository.list(tenant_id=tenant_id)

        if email and provider_id and not payload.get("force"):
            dup_since = now - timedelta(days=self.ticket_duplicate_window_days)
            for ticket in tickets:
                created = parse_ts(ticket.get("created_at"))
                if (
                    ticket.get("status") == "pending"
                    and _same(ticket.get("client_email"), email)
                    and ticket.get("provider_id") == provider_id
                    and (not need_id or ticket.get("need_id") == need_id)
                    and created is not None
                    and created >= dup_since
                ):
                    raise conflict(
                        "TICKET_DUPLICATE",
                        f"A pending referral for this client and provider already exists "
                        f"(ticket #{ticket.get('ticket_number')}). Set force to create anyway.",
                        details={
                            "existing_ticket_id": ticket["ticket_id"],
                            "ticket_number": ticket.get("ticket_number"),
                            "created_at": ticket.get("created_at"),
                        },
                    )

        if email:
            hour_ago = now - timedelta(hours=1)
            recent = 0
            for ticket in tickets:
                created = parse_ts(ticket.get("created_at"))
                if _same(ticket.get("client_email"), email) and created is not None and created >= hour_ago:
                    recent += 1
            if recent >= self.ticket_email_hourly_limit:
                raise rate_limited(
                    "Too many referrals for this email address. Please wait before creating more.",
                    code="TICKET_RATE_LIMITED",
                )

        if email or phone:
            active = [
                t
                for t in tickets
                if t.get("status") == "pending"
                and (_same(t.get("client_email"), email) or _same(t.get("client_phone"), phone))
            ]
            if len(active) >= self.ticket_max_pending_per_client:
                providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
                raise rate_limited(
                    f"This client has reached the maximum of {self.ticket_max_pending_per_client} active referrals.",
                    code="TICKET_CLIENT_LIMIT",
                    details={
                        "existing_tickets": [
                            {
                                "id": t["ticket_id"],
                                "ticket_number": t.get("ticket_number"),
                                "provider_name": (providers.get(t.get("provider_id")) or {}).get("name"),
                                "created_at": t.get("created_at"),
                            }
                            for t in active
                        ]
                    },
                )

    def create_ticket(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        provider_id = payload.get("provider_id")
        provider = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id) if provider_id else None
        need_id = payload.get("need_id")
        if need_id and (self.needs.get(need_id) or {}).get("tenant_id") != tenant_id:
            raise invalid("unknown need_id")
        self._check_ticket_limits(tenant_id=tenant_id, payload=payload)

        now = self._utcnow_iso()
        assigned_to = payload.get("client_user_id")
        if not assigned_to:
            handler = self.default_handler(provider_id=provider_id)
            assigned_to = handler.get("user_id") if handler else None
        ticket = {
            "ticket_id": self._new_id("tkt"),
            "tenant_id": tenant_id,
            "ticket_number": self._next_ticket_number(tenant_id=tenant_id),
            "provider_id": provider_id,
            "need_id": need_id,
            "client_name": payload.get("client_name"),
            "client_email": payload.get("client_email"),
            "client_phone": payload.get("client_phone"),
            "client_user_id": payload.get("client_user_id"),
            "description_of_need": payload.get("description_of_need"),
            "status": "pending",
            "source": payload.get("source") or "admin",
            "host_provider_id": payload.get("host_provider_id"),
            "custom_data": payload.get("custom_data") or {},
            "assigned_to": assigned_to,
            "assigned_at": now if assigned_to else None,
            "sla_due_at": default_sla_due_at(now, sla_hours=(provider or {}).get("sla_hours")),
            "follow_up_sent": False,
            "reassignment_count": 0,
            "last_reassigned_at": None,
            "forwarded_from_provider_id": None,
            "legacy_id": payload.get("legacy_id"),
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        }
        saved = self._persist_ticket(ticket=ticket)
        self._record_ticket_event(
            ticket=saved,
            event_type="created",
            actor_id=actor_id,
            actor_type="system" if saved["source"] == "widget" else "site_admin",
            new_state=_ticket_state(saved),
        )
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="ticket.created",
            resource_type="ticket",
            resource_id=saved["ticket_id"],
            details={"ticket_number": saved["ticket_number"], "source": saved["source"]},
        )
        self.dispatch_webhook_event(tenant_id=tenant_id, event_type="ticket.created", data=saved)
        if assigned_to:
            self.notify(
                tenant_id=tenant_id,
                user_id=assigned_to,
                type="ticket_assigned",
                title=f"New referral {saved['ticket_number']}",
                message=f"A new referral for {(provider or {}).get('name') or 'your organization'} needs attention.",
                link=f"/dashboard/tickets/{saved['ticket_id']}",
            )
        return saved

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _ticket_visible(self, ticket: dict[str, Any], viewer: AuthContext) -> bool:
        if viewer.is_tenant_admin:
            return True
        if ticket.get("assigned_to") == viewer.subject:
            return True
        provider_ids = {
            c["provider_id"] for c in self.contacts_for_user(tenant_id=viewer.tenant_id, user_id=viewer.subject)
        }
        return ticket.get("provider_id") in provider_ids

    def get_ticket_for_tenant(self, *, tenant_id: str, ticket_id: str) -> dict[str, Any]:
        ticket = self.tickets_repository.get_any(ticket_id=ticket_id)
        if ticket is None:
            raise not_found("TICKET_NOT_FOUND", "ticket not found")
        self._assert_tenant_scope(str(ticket.get("tenant_id") or ""), tenant_id)
        return ticket

    def list_tickets(
        self,
        *,
        tenant_id: str,
        viewer: AuthContext,
        q: str | None = None,
        status: str | None = None,
        provider_id: str | None = None,
        need_id: str | None = None,
        date_from: str | None = None,
        date_to: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        needle = (q or "").strip().lower()
        rows = []
        for ticket in self.tickets_repository.list(tenant_id=tenant_id):
            if needle and needle not in str(ticket.get("client_name") or "").lower():
                continue
            if status and status != "all" and ticket.get("status") != status:
                continue
            if provider_id and ticket.get("provider_id") != provider_id:
                continue
            if need_id and ticket.get("need_id") != need_id:
                continue
            if not self._in_date_range(ticket.get("created_at"), date_from, date_to):
                continue
            if not self._ticket_visible(ticket, viewer):
                continue
            rows.append(ticket)
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return self._paginate(rows, limit=limit, offset=offset)

    @staticmethod
    def _comment_visible(comment: dict[str, Any], viewer: AuthContext) -> bool:
        if not comment.get("is_private"):
            return True
        return viewer.is_site_admin or comment.get("author_id") == viewer.subject

    def get_ticket_detail(self, *, tenant_id: str, ticket_id: str, viewer: AuthContext) -> dict[str, Any]:
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        if not self._ticket_visible(ticket, viewer):
            raise forbidden("ticket access denied")
        ticket["comments"] = self.list_ticket_comments(tenant_id=tenant_id, ticket_id=ticket_id, viewer=viewer)
        provider = self.providers_repository.get(tenant_id=tenant_id, provider_id=ticket.get("provider_id") or "")
        ticket["provider_name"] = provider.get("name") if provider else None
        need = self.needs.get(ticket.get("need_id") or "")
        ticket["need_name"] = need.get("name") if need else None
        return ticket

    # ------------------------------------------------------------------
    # Events and comments
    # ------------------------------------------------------------------

    def _record_ticket_event(
        self,
        *,
        ticket: dict[str, Any],
        event_type: str,
        actor_id: str | None,
        actor_type: str,
        previous_state: dict[str, Any] | None = None,
        new_state: dict[str, Any] | None = None,
        reason: str | None = None,
        notes: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        event = {
            "event_id": self._new_id("tev"),
            "tenant_id": ticket["tenant_id"],
            "ticket_id": ticket["ticket_id"],
            "event_type": event_type,
            "actor_id": actor_id,
            "actor_type": actor_type,
            "previous_state": previous_state,
            "new_state": new_state,
            "reason": reason,
            "notes": notes,
            "metadata": metadata or {},
            "created_at": self._utcnow_iso(),
        }
        return self._persist("ticket_events", event, key="event_id")

    def list_ticket_events(self, *, tenant_id: str, ticket_id: str) -> list[dict[str, Any]]:
        self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        rows = [dict(x) for x in self.ticket_events.values() if x.get("ticket_id") == ticket_id]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""))

    def list_ticket_comments(self, *, tenant_id: str, ticket_id: str, viewer: AuthContext) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.ticket_comments.values()
            if x.get("ticket_id") == ticket_id and x.get("tenant_id") == tenant_id and self._comment_visible(x, viewer)
        ]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""))

    def add_ticket_comment(
        self,
        *,
        tenant_id: str,
        ticket_id: str,
        author: AuthContext,
        content: str,
        is_private: bool = False,
    ) -> dict[str, Any]:
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        if not self._ticket_visible(ticket, author):
            raise forbidden("ticket access denied")
        text = str(content or "").strip()
        if not text:
            raise invalid("content is required")
        comment = {
            "comment_id": self._new_id("cmt"),
            "tenant_id": tenant_id,
            "ticket_id": ticket_id,
            "author_id": author.subject,
            "author_name": author.name or author.email or None,
            "content": text,
            "is_private": bool(is_private),
            "created_at": self._utcnow_iso(),
        }
        saved = self._persist("ticket_comments", comment, key="comment_id")
        self._record_ticket_event(
            ticket=ticket,
            event_type="comment_added",
            actor_id=author.subject,
            actor_type="site_admin" if author.is_site_admin else "provider_contact",
            metadata={"comment_id": saved["comment_id"], "is_private": saved["is_private"]},
        )
        return saved

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def update_ticket(
        self,
        *,
        tenant_id: str,
        ticket_id: str,
        actor_id: str | None,
        actor_type: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        changes = {k: v for k, v in payload.items() if k in TICKET_UPDATABLE_FIELDS}
        if not changes:
            raise invalid("no updatable fields provided")
        if "status" in changes and changes["status"] not in TICKET_STATUSES:
            raise invalid(f"invalid status: {changes['status']}")
        if changes.get("provider_id"):
            self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=changes["provider_id"])
        previous = _ticket_state(ticket)
        now = self._utcnow_iso()
        for key, value in changes.items():
            ticket[key] = value
        if changes.get("client_user_id"):
            ticket["assigned_to"] = changes["client_user_id"]
            ticket["assigned_at"] = now
        ticket["updated_at"] = now
        saved = self._persist_ticket(ticket=ticket)
        status_changed = "status" in changes and changes["status"] != previous["status"]
        self._record_ticket_event(
            ticket=saved,
            event_type="status_changed" if status_changed else "updated",
            actor_id=actor_id,
            actor_type=actor_type,
            previous_state=previous,
            new_state=_ticket_state(saved),
            metadata={"fields": sorted(changes.keys())},
        )
        if status_changed:
            self.dispatch_webhook_event(
                tenant_id=tenant_id,
                event_type="ticket.status_changed",
                data={**saved, "previous_status": previous["status"]},
            )
        return saved

    def assign_ticket(
        self,
        *,
        tenant_id: str,
        ticket_id: str,
        contact_id: str,
        actor_id: str | None,
        actor_type: str,
    ) -> dict[str, Any]:
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        contact = self.contacts.get(contact_id)
        if (
            contact is None
            or contact.get("tenant_id") != tenant_id
            or contact.get("provider_id") != ticket.get("provider_id")
        ):
            raise invalid("contact does not belong to the ticket's provider")
        if not contact.get("user_id"):
            raise invalid("contact has no user account")
        previous = _ticket_state(ticket)
        now = self._utcnow_iso()
        ticket["assigned_to"] = contact["user_id"]
        ticket["assigned_at"] = now
        ticket["updated_at"] = now
        saved = self._persist_ticket(ticket=ticket)
        self._record_ticket_event(
            ticket=saved,
            event_type="assigned",
            actor_id=actor_id,
            actor_type=actor_type,
            previous_state=previous,
            new_state=_ticket_state(saved),
            metadata={"contact_id": contact_id},
        )
        self.dispatch_webhook_event(tenant_id=tenant_id, event_type="ticket.assigned", data=saved)
        self.notify(
            tenant_id=tenant_id,
            user_id=contact["user_id"],
            type="ticket_assigned",
            title=f"Referral {saved['ticket_number']} assigned to you",
            message=f"You have been assigned referral {saved['ticket_number']}.",
            link=f"/dashboard/tickets/{ticket_id}",
        )
        return saved

    def forward_ticket(
        self,
        *,
        tenant_id: str,
        ticket_id: str,
        actor_id: str | None,
        actor_type: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        action = payload.get("action")
        new_status = payload.get("new_status")
        if new_status and new_status not in TICKET_STATUSES:
            raise invalid(f"invalid status: {new_status}")
        previous = _ticket_state(ticket)
        if action == "forward_to_admin":
            ticket["forwarded_from_provider_id"] = ticket.get("provider_id")
            ticket["provider_id"] = None
            ticket["assigned_to"] = None
            ticket["assigned_at"] = None
        elif action == "forward_to_provider":
            target_id = payload.get("target_provider_id")
            if not target_id:
                raise invalid("target_provider_id is required for forward_to_provider")
            self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=target_id)
            handler = self.default_handler(provider_id=target_id)
            ticket["provider_id"] = target_id
            ticket["assigned_to"] = handler.get("user_id") if handler else None
            ticket["assigned_at"] = self._utcnow_iso() if handler else None
            ticket["forwarded_from_provider_id"] = None
        else:
            raise invalid("action must be forward_to_admin or forward_to_provider")
        now = self._utcnow_iso()
        if new_status:
            ticket["status"] = new_status
        ticket["reassignment_count"] = int(ticket.get("reassignment_count") or 0) + 1
        ticket["last_reassigned_at"] = now
        ticket["updated_at"] = now
        saved = self._persist_ticket(ticket=ticket)
        self._record_ticket_event(
            ticket=saved,
            event_type="forwarded",
            actor_id=actor_id,
            actor_type=actor_type,
            previous_state=previous,
            new_state=_ticket_state(saved),
            reason=payload.get("reason"),
            notes=payload.get("notes"),
            metadata={"action": action},
        )
        self.dispatch_webhook_event(
            tenant_id=tenant_id,
            event_type="ticket.forwarded",
            data={**saved, "action": action, "previous_provider_id": previous["provider_id"]},
        )
        if saved.get("assigned_to"):
            self.notify(
                tenant_id=tenant_id,
                user_id=saved["assigned_to"],
                type="ticket_forwarded",
                title=f"Referral {saved['ticket_number']} forwarded to you",
                message=str(payload.get("reason") or "A referral was forwarded to your organization."),
                link=f"/dashboard/tickets/{ticket_id}",
            )
        return saved

    def reassign_ticket(
        self,
        *,
        tenant_id: str,
        ticket_id: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        target_id = payload.get("target_provider_id")
        if not target_id:
            raise invalid("target_provider_id is required")
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=target_id)
        contact_id = payload.get("target_contact_id")
        if contact_id:
            contact = self.contacts.get(contact_id)
            if contact is None or contact.get("provider_id") != target_id or contact.get("tenant_id") != tenant_id:
                raise invalid("target contact does not belong to the target provider")
        else:
            contact = self.default_handler(provider_id=target_id)
        reason = payload.get("reason") or "other"
        if reason not in REASSIGNMENT_REASONS:
            raise invalid(f"invalid reason: {reason}")
        if not payload.get("preserve_history", True):
            for event_id in [k for k, v in self.ticket_events.items() if v.get("ticket_id") == ticket_id]:
                del self.ticket_events[event_id]
        previous = _ticket_state(ticket)
        now = self._utcnow_iso()
        ticket["forwarded_from_provider_id"] = ticket.get("provider_id")
        ticket["provider_id"] = target_id
        ticket["assigned_to"] = contact.get("user_id") if contact else None
        ticket["assigned_at"] = now if contact else None
        ticket["reassignment_count"] = int(ticket.get("reassignment_count") or 0) + 1
        ticket["last_reassigned_at"] = now
        ticket["updated_at"] = now
        saved = self._persist_ticket(ticket=ticket)
        self._record_ticket_event(
            ticket=saved,
            event_type="reassigned",
            actor_id=actor_id,
            actor_type="site_admin",
            previous_state=previous,
            new_state=_ticket_state(saved),
            reason=reason,
            notes=payload.get("notes"),
            metadata={"target_contact_id": contact.get("contact_id") if contact else None},
        )
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="ticket.reassigned",
            resource_type="ticket",
            resource_id=ticket_id,
            details={"from": previous["provider_id"], "to": target_id, "reason": reason},
        )
        self.dispatch_webhook_event(
            tenant_id=tenant_id,
            event_type="ticket.reassigned",
            data={**saved, "previous_provider_id": previous["provider_id"], "reason": reason},
        )
        if saved.get("assigned_to"):
            self.notify(
                tenant_id=tenant_id,
                user_id=saved["assigned_to"],
                type="ticket_assigned",
                title=f"Referral {saved['ticket_number']} reassigned to you",
                message=f"Referral {saved['ticket_number']} was reassigned to your organization.",
                link=f"/dashboard/tickets/{ticket_id}",
            )
        return saved

    def bulk_update_tickets(
        self,
        *,
        tenant_id: str,
        ids: list[str],
        status: str,
        actor_id: str | None,
    ) -> dict[str, Any]:
        if not isinstance(ids, list) or not ids:
            raise invalid("ids must be a non-empty list")
        if status not in TICKET_STATUSES:
            raise invalid(f"invalid status: {status}")
        updated = 0
        now = self._utcnow_iso()
        for ticket_id in dict.fromkeys(ids):
            ticket = self.tickets_repository.get(tenant_id=tenant_id, ticket_id=str(ticket_id))
            if ticket is None:
                continue
            previous = _ticket_state(ticket)
            ticket["status"] = status
            ticket["updated_at"] = now
            saved = self._persist_ticket(ticket=ticket)
            if previous["status"] != status:
                self._record_ticket_event(
                    ticket=saved,
                    event_type="status_changed",
                    actor_id=actor_id,
                    actor_type="site_admin",
                    previous_state=previous,
                    new_state=_ticket_state(saved),
                    metadata={"bulk": True},
                )
            updated += 1
        return {"updated": updated}

    # ------------------------------------------------------------------
    # SLA and aging
    # ------------------------------------------------------------------

    def sla_stats(self, *, tenant_id: str, provider_id: str | None = None) -> dict[str, Any]:
        tickets = self.tickets_repository.list(tenant_id=tenant_id)
        if provider_id:
            tickets = [t for t in tickets if t.get("provider_id") == provider_id]
        providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
        return compute_sla_stats(
            tickets,
            providers_by_id=providers,
            now=self._utcnow(),
            approaching_hours=self.sla_approaching_hours,
            compliance_window_days=self.sla_compliance_window_days,
        )

    def ticket_aging(
        self,
        *,
        tenant_id: str,
        threshold_hours: int = 48,
        notify: bool = False,
        notify_user_ids: list[str] | None = None,
    ) -> dict[str, Any]:
        threshold = max(1, int(threshold_hours))
        now = self._utcnow()
        providers = {p["provider_id"]: p for p in self.providers_repository.list(tenant_id=tenant_id)}
        rows: list[dict[str, Any]] = []
        counts = {bucket: 0 for bucket in AGING_BUCKETS}
        for ticket in self.tickets_repository.list(tenant_id=tenant_id):
            if ticket.get("status") != "pending":
                continue
            created = parse_ts(ticket.get("created_at"))
            if created is None:
                continue
            age_hours = (now - created).total_seconds() / 3600.0
            if age_hours < threshold:
                continue
            bucket = aging_bucket(age_hours)
            if bucket is not None:
                counts[bucket] += 1
            rows.append(
                {
                    "ticket_id": ticket["ticket_id"],
                    "ticket_number": ticket.get("ticket_number"),
                    "client_name": ticket.get("client_name"),
                    "provider_id": ticket.get("provider_id"),
                    "provider_name": (providers.get(ticket.get("provider_id")) or {}).get("name"),
                    "assigned_to": ticket.get("assigned_to"),
                    "created_at": ticket.get("created_at"),
                    "age_hours": round(age_hours, 1),
                    "age_days": round(age_hours / 24.0, 1),
                    "bucket": bucket,
                }
            )
        rows.sort(key=lambda x: x["age_hours"], reverse=True)
        notified = 0
        if notify and rows:
            for user_id in dict.fromkeys(notify_user_ids or []):
                self.notify(
                    tenant_id=tenant_id,
                    user_id=user_id,
                    type="ticket_aging",
                    title=f"{len(rows)} referrals pending over {threshold} hours",
                    message="Some referrals have been pending longer than expected.",
                    link="/dashboard/tickets?status=pending",
                )
                notified += 1
        return {
            "threshold_hours": threshold,
            "tickets": rows,
            "buckets": counts,
            "total": len(rows),
            "notified": notified,
        }
