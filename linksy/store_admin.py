from __future__ import annotations

import logging
from collections import Counter
from datetime import timedelta
from typing import Any

from linksy.errors import invalid, not_found
from linksy.security import AuthContext
from linksy.sla import parse_ts
from linksy.store_providers import PROVIDER_UPDATABLE_FIELDS

logger = logging.getLogger(__name__)

INTERACTION_TYPES: tuple[str, ...] = ("profile_view", "phone_click", "website_click", "directions_click")
# clicks that count a provider as engaged for the search session
_ENGAGEMENT_TYPES = frozenset({"phone_click", "website_click"})
_PROVIDER_CHILD_COLLECTIONS: tuple[str, ...] = ("locations", "provider_notes", "provider_events")
_ACTIVITY_VERBS = frozenset(
    {
        "created",
        "updated",
        "deleted",
        "archived",
        "merged",
        "purged",
        "uploaded",
        "assigned",
        "forwarded",
        "reassigned",
        "reviewed",
        "commented",
    }
)


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a or not b:
        return len(a) or len(b)
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def name_similarity(a: str, b: str) -> float:
    longer, shorter = (a, b) if len(a) >= len(b) else (b, a)
    if not longer:
        return 1.0
    return (len(longer) - levenshtein(longer, shorter)) / len(longer)


def names_match(a: str, b: str, *, threshold: float) -> bool:
    if not a or not b:
        return False
    if a == b or a in b or b in a:
        return True
    return name_similarity(a, b) >= threshold


def _rate(part: int, whole: int) -> float:
    # one decimal place, halves round up
    return int(part * 1000 / whole + 0.5) / 10 if whole > 0 else 0


def format_activity(entry: dict[str, Any], *, actor_name: str | None = None) -> str:
    """Readable one-liner for an audit entry, e.g. ``Ada created provider``."""
    who = actor_name or entry.get("actor_id") or "Someone"
    action = str(entry.get("action") or "")
    resource_type = str(entry.get("resource_type") or "record").replace("_", " ")
    _, _, verb = action.rpartition(".")
    if verb in _ACTIVITY_VERBS:
        return f"{who} {verb} {resource_type}"
    return f"{who} performed {action} on {resource_type}"


class StoreAdminMixin:
    # ------------------------------------------------------------------
    # Duplicate detection and merging
    # ------------------------------------------------------------------

    def _provider_counts(self, tenant_id: str, provider_id: str) -> dict[str, int]:
        return {
            "locations": sum(1 for x in self.locations.values() if x.get("provider_id") == provider_id),
            "contacts": sum(1 for x in self.contacts.values() if x.get("provider_id") == provider_id),
            "notes": sum(1 for x in self.provider_notes.values() if x.get("provider_id") == provider_id),
            "tickets": sum(
                1 for x in self.tickets_repository.list(tenant_id=tenant_id) if x.get("provider_id") == provider_id
            ),
        }

    def find_duplicate_providers(
        self,
        *,
        tenant_id: str,
        threshold: float = 0.7,
        limit: int = 50,
    ) -> dict[str, Any]:
        providers = sorted(
            self.providers_repository.list(tenant_id=tenant_id),
            key=lambda x: str(x.get("created_at") or ""),
        )
        names = [str(p.get("name") or "").strip().lower() for p in providers]
        claimed: set[int] = set()
        groups: list[dict[str, Any]] = []
        for i, provider in enumerate(providers):
            if i in claimed or len(groups) >= limit:
                continue
            members = [
                j
                for j in range(i + 1, len(providers))
                if j not in claimed and names_match(names[i], names[j], threshold=threshold)
            ]
            if not members:
                continue
            claimed.update([i, *members])
            rows = []
            for idx in (i, *members):
                row = providers[idx]
                rows.append(
                    {
                        "provider_id": row["provider_id"],
                        "name": row.get("name"),
                        "status": row.get("status"),
                        "created_at": row.get("created_at"),
                        "similarity": round(name_similarity(names[i], names[idx]), 3),
                        "counts": self._provider_counts(tenant_id, row["provider_id"]),
                    }
                )
            groups.append({"name": provider.get("name"), "providers": rows})
        return {"duplicates": groups, "total": len(groups)}

    def merge_providers(
        self,
        *,
        tenant_id: str,
        primary_id: str,
        merge_id: str,
        field_choices: dict[str, str] | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        if not primary_id or not merge_id:
            raise invalid("primary_provider_id and merge_provider_id are required")
        if primary_id == merge_id:
            raise invalid("cannot merge a provider with itself")
        primary = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=primary_id)
        merged = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=merge_id)

        taken = sorted(
            field
            for field, chosen in (field_choices or {}).items()
            if chosen == merge_id and field in PROVIDER_UPDATABLE_FIELDS
        )
        for field in taken:
            primary[field] = merged.get(field)

        moved: Counter[str] = Counter()
        for collection in _PROVIDER_CHILD_COLLECTIONS:
            for row in list(getattr(self, collection).values()):
                if row.get("provider_id") == merge_id:
                    row["provider_id"] = primary_id
                    moved[collection] += 1

        primary_users = {
            x.get("user_id")
            for x in self.contacts.values()
            if x.get("provider_id") == primary_id and x.get("user_id")
        }
        for contact_id, contact in list(self.contacts.items()):
            if contact.get("provider_id") != merge_id:
                continue
            if contact.get("user_id") and contact["user_id"] in primary_users:
                del self.contacts[contact_id]
                moved["contacts_dropped"] += 1
                continue
            contact["provider_id"] = primary_id
            contact["is_default_referral_handler"] = False
            moved["contacts"] += 1

        for ticket in self.tickets_repository.list(tenant_id=tenant_id):
            if ticket.get("provider_id") == merge_id:
                ticket["provider_id"] = primary_id
                self._persist_ticket(ticket=ticket)
                moved["tickets"] += 1

        need_ids = self._need_ids_for(primary_id) + self._need_ids_for(merge_id)
        if need_ids:
            self._persist(
                "provider_needs",
                {
                    "provider_id": primary_id,
                    "tenant_id": tenant_id,
                    "need_ids": list(dict.fromkeys(need_ids)),
                    "updated_at": self._utcnow_iso(),
                },
                key="provider_id",
            )
        self.provider_needs.pop(merge_id, None)

        for interaction in self.interactions.values():
            if interaction.get("provider_id") == merge_id:
                interaction["provider_id"] = primary_id
                moved["interactions"] += 1
        for session in self.search_sessions.values():
            clicked = session.get("services_clicked") or []
            if merge_id in clicked:
                session["services_clicked"] = list(dict.fromkeys(primary_id if x == merge_id else x for x in clicked))

        for child in self.providers_repository.list(tenant_id=tenant_id):
            if child.get("parent_provider_id") == merge_id and child["provider_id"] != primary_id:
                child["parent_provider_id"] = primary_id
                self._persist_provider(provider=child)

        primary["updated_at"] = self._utcnow_iso()
        saved = self._persist_provider(provider=primary)
        self._remove_provider(tenant_id=tenant_id, provider_id=merge_id)
        summary = {"fields_taken": taken, "moved": dict(moved)}
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.merged",
            resource_type="provider",
            resource_id=primary_id,
            details={"merged_provider_id": merge_id, **summary},
        )
        logger.info("provider_merged tenant=%s primary=%s merged=%s", tenant_id, primary_id, merge_id)
        return {"provider": saved, "merged_provider_id": merge_id, **summary}

    def find_duplicate_contacts(self, *, tenant_id: str, provider_id: str) -> dict[str, Any]:
        if not provider_id:
            raise invalid("provider_id is required")
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        by_email: dict[str, list[dict[str, Any]]] = {}
        for contact in sorted(self.contacts.values(), key=lambda x: str(x.get("created_at") or "")):
            if contact.get("provider_id") != provider_id or contact.get("status") != "active":
                continue
            email = str(contact.get("email") or "").strip().lower()
            if email:
                by_email.setdefault(email, []).append(dict(contact))
        groups = [{"email": email, "contacts": rows} for email, rows in by_email.items() if len(rows) > 1]
        return {"duplicates": groups, "total": len(groups)}

    def merge_contacts(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        primary_contact_id: str,
        merge_contact_id: str,
        actor_id: str | None,
    ) -> dict[str, Any]:
        if primary_contact_id == merge_contact_id:
            raise invalid("cannot merge a contact with itself")
        primary = self._require_contact(tenant_id=tenant_id, provider_id=provider_id, contact_id=primary_contact_id)
        merged = self._require_contact(tenant_id=tenant_id, provider_id=provider_id, contact_id=merge_contact_id)
        if merged.get("is_default_referral_handler"):
            primary["is_default_referral_handler"] = True
        if merged.get("contact_type") == "provider_admin":
            primary["contact_type"] = "provider_admin"
        for field in ("phone", "job_title", "full_name", "user_id"):
            if not primary.get(field) and merged.get(field):
                primary[field] = merged[field]

        reassigned = {"tickets": 0, "notes": 0}
        old_user, new_user = merged.get("user_id"), primary.get("user_id")
        if old_user and new_user and old_user != new_user:
            for ticket in self.tickets_repository.list(tenant_id=tenant_id):
                if ticket.get("assigned_to") == old_user:
                    ticket["assigned_to"] = new_user
                    self._persist_ticket(ticket=ticket)
                    reassigned["tickets"] += 1
            for note in self.provider_notes.values():
                if note.get("tenant_id") == tenant_id and note.get("author_id") == old_user:
                    note["author_id"] = new_user
                    reassigned["notes"] += 1

        primary["updated_at"] = self._utcnow_iso()
        saved = self._persist("contacts", primary, key="contact_id")
        self._remove("contacts", merge_contact_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="contact.merged",
            resource_type="contact",
            resource_id=primary_contact_id,
            details={"merged_contact_id": merge_contact_id, "reassigned": reassigned},
        )
        return {"contact": saved, "merged_contact_id": merge_contact_id, "reassigned": reassigned}

    # ------------------------------------------------------------------
    # Bulk status and purge
    # ------------------------------------------------------------------

    def bulk_update_providers(
        self,
        *,
        tenant_id: str,
        ids: list[str],
        status: str,
        actor_id: str | None,
    ) -> dict[str, Any]:
        wanted = list(dict.fromkeys(str(x) for x in ids if x))
        if not wanted:
            raise invalid("ids must be a non-empty array")
        now = self._utcnow_iso()
        updated: list[str] = []
        for provider_id in wanted:
            provider = self.providers_repository.get(tenant_id=tenant_id, provider_id=provider_id)
            if provider is None:
                continue
            provider["status"] = status
            provider["updated_at"] = now
            self._persist_provider(provider=provider)
            updated.append(provider_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.bulk_updated",
            resource_type="provider",
            resource_id=None,
            details={"ids": updated, "status": status},
        )
        return {"updated": len(updated), "ids": updated}

    def purge_provider(self, *, tenant_id: str, provider_id: str, actor_id: str | None) -> dict[str, Any]:
        """Hard delete a provider together with its tickets and analytics rows.

        Unlike ``delete_provider`` nothing is kept: tickets with their comments and
        events, interactions, applications that created the provider, and every
        search session reference go with it. Children are unlinked, not removed.
        """
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        removed: Counter[str] = Counter()
        for interaction_id in [k for k, v in self.interactions.items() if v.get("provider_id") == provider_id]:
            del self.interactions[interaction_id]
            removed["interactions"] += 1
        for session in self.search_sessions.values():
            clicked = session.get("services_clicked") or []
            if provider_id in clicked:
                session["services_clicked"] = [x for x in clicked if x != provider_id]

        for ticket in self.tickets_repository.list(tenant_id=tenant_id):
            if ticket.get("provider_id") != provider_id:
                continue
            ticket_id = ticket["ticket_id"]
            for collection in ("ticket_comments", "ticket_events"):
                rows = getattr(self, collection)
                for item_id in [k for k, v in rows.items() if v.get("ticket_id") == ticket_id]:
                    del rows[item_id]
            self.tickets_repository.delete(tenant_id=tenant_id, ticket_id=ticket_id)
            removed["tickets"] += 1

        for application_id, application in list(self.provider_applications.items()):
            if application.get("created_provider_id") == provider_id:
                del self.provider_applications[application_id]
                removed["applications"] += 1
        for collection in (*_PROVIDER_CHILD_COLLECTIONS, "contacts"):
            removed[collection] = sum(1 for x in getattr(self, collection).values() if x.get("provider_id") == provider_id)

        self.delete_provider(tenant_id=tenant_id, provider_id=provider_id, actor_id=actor_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.purged",
            resource_type="provider",
            resource_id=provider_id,
            details={"removed": dict(removed)},
        )
        logger.warning("provider_purged tenant=%s provider=%s removed=%s", tenant_id, provider_id, dict(removed))
        return {"provider_id": provider_id, "purged": True, "removed": dict(removed)}

    # ------------------------------------------------------------------
    # Interactions and analytics
    # ------------------------------------------------------------------

    def record_interaction(self, *, host: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
        tenant_id = host["tenant_id"]
        provider_id = str(payload.get("provider_id") or "").strip()
        interaction_type = str(payload.get("interaction_type") or "").strip()
        if not provider_id or not interaction_type:
            raise invalid("provider_id and interaction_type are required")
        if interaction_type not in INTERACTION_TYPES:
            raise invalid("invalid interaction_type", details={"allowed": list(INTERACTION_TYPES)})
        if self.providers_repository.get(tenant_id=tenant_id, provider_id=provider_id) is None:
            raise not_found("PROVIDER_NOT_FOUND", "provider not found")
        interaction = {
            "interaction_id": self._new_id("int"),
            "tenant_id": tenant_id,
            "provider_id": provider_id,
            "interaction_type": interaction_type,
            "session_id": payload.get("session_id"),
            "need_id": payload.get("need_id"),
            "host_provider_id": host["provider_id"],
            "created_at": self._utcnow_iso(),
        }
        saved = self._persist("interactions", interaction, key="interaction_id")
        session = self.search_sessions.get(payload.get("session_id") or "")
        if (
            interaction_type in _ENGAGEMENT_TYPES
            and session is not None
            and session.get("host_provider_id") == host["provider_id"]
        ):
            clicked = list(session.get("services_clicked") or [])
            if provider_id not in clicked:
                self._persist("search_sessions", {**session, "services_clicked": [*clicked, provider_id]}, key="session_id")
        return saved

    def provider_analytics(self, *, tenant_id: str, provider_id: str) -> dict[str, Any]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        since = self._utcnow() - timedelta(days=30)
        all_time: Counter[str] = Counter()
        recent: Counter[str] = Counter()
        for row in self.interactions.values():
            if row.get("tenant_id") != tenant_id or row.get("provider_id") != provider_id:
                continue
            kind = str(row.get("interaction_type"))
            all_time[kind] += 1
            created = parse_ts(row.get("created_at"))
            if created is not None and created >= since:
                recent[kind] += 1

        def _summary(counts: Counter[str]) -> dict[str, int]:
            return {"total": sum(counts.values()), **{kind: counts.get(kind, 0) for kind in INTERACTION_TYPES}}

        return {"provider_id": provider_id, "all_time": _summary(all_time), "last_30_days": _summary(recent)}

    def search_analytics(self, *, tenant_id: str) -> dict[str, Any]:
        now = self._utcnow()
        since = now - timedelta(days=30)
        sessions = sorted(
            (x for x in self.search_sessions.values() if x.get("tenant_id") == tenant_id),
            key=lambda x: str(x.get("created_at") or ""),
            reverse=True,
        )
        interactions = [x for x in self.interactions.values() if x.get("tenant_id") == tenant_id]

        months: dict[str, int] = {}
        year, month = now.year, now.month
        for _ in range(12):
            months[f"{year}-{month:02d}"] = 0
            year, month = (year, month - 1) if month > 1 else (year - 1, 12)
        recent_count = 0
        for session in sessions:
            created = parse_ts(session.get("created_at"))
            if created is None:
                continue
            if created >= since:
                recent_count += 1
            key = f"{created.year}-{created.month:02d}"
            if key in months:
                months[key] += 1

        names = {p["provider_id"]: p.get("name") for p in self.providers_repository.list(tenant_id=tenant_id)}
        by_type = Counter(str(x.get("interaction_type")) for x in interactions)
        by_provider = Counter(str(x.get("provider_id")) for x in interactions if x.get("provider_id") in names)

        crisis_sessions = [x for x in sessions if x.get("crisis_detected")][:20]
        crisis_types = Counter(str(x["crisis_detected"]) for x in crisis_sessions)

        engaged = sum(1 for x in sessions if x.get("services_clicked"))
        converted = sum(1 for x in sessions if x.get("ticket_id"))
        zips = Counter(str(x.get("zip_code_searched") or "Unknown") for x in sessions)
        return {
            "total_sessions": len(sessions),
            "sessions_last_30_days": recent_count,
            "total_interactions": len(interactions),
            "total_crisis_detections": len(crisis_sessions),
            "monthly_search_trend": [{"month": k, "count": v} for k, v in sorted(months.items())],
            "interactions_by_type": [{"type": k, "count": v} for k, v in by_type.most_common()],
            "top_providers_by_interaction": [
                {"provider_id": k, "name": names[k], "count": v} for k, v in by_provider.most_common(15)
            ],
            "crisis_breakdown": [{"type": k, "count": v} for k, v in crisis_types.most_common()],
            "recent_crisis_sessions": [
                {"session_id": x["session_id"], "crisis_type": x["crisis_detected"], "created_at": x.get("created_at")}
                for x in crisis_sessions[:10]
            ],
            "funnel": {
                "total_sessions": len(sessions),
                "engaged_sessions": engaged,
                "converted_sessions": converted,
                "engagement_rate": _rate(engaged, len(sessions)),
                "conversion_rate": _rate(converted, len(sessions)),
                "engaged_conversion_rate": _rate(converted, engaged),
            },
            "top_zip_codes": [{"zip_code": k, "count": v} for k, v in zips.most_common(15)],
        }

    # ------------------------------------------------------------------
    # Activity feed
    # ------------------------------------------------------------------

    def activity_feed(
        self,
        *,
        tenant_id: str,
        viewer: AuthContext,
        scope: str = "company",
        action_type: str | None = None,
        limit: int = 20,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows = self.audit_repository.list(tenant_id=tenant_id, action=action_type)
        if scope == "personal":
            rows = [x for x in rows if x.get("actor_id") == viewer.subject]
        names = {
            x["user_id"]: x.get("full_name")
            for x in self.contacts.values()
            if x.get("tenant_id") == tenant_id and x.get("user_id") and x.get("full_name")
        }
        page = self._paginate(rows, limit=limit, offset=offset)
        page["items"] = [
            {
                "audit_id": x.get("audit_id"),
                "actor_id": x.get("actor_id"),
                "action": x.get("action"),
                "resource_type": x.get("resource_type"),
                "resource_id": x.get("resource_id"),
                "details": x.get("details") or {},
                "occurred_at": x.get("occurred_at"),
                "description": format_activity(x, actor_name=names.get(x.get("actor_id"))),
            }
            for x in page["items"]
        ]
        return page
