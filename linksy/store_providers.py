from __future__ import annotations

import logging
import re
from typing import Any

from linksy.errors import conflict, forbidden, invalid, not_found
from linksy.file_validation import validate_upload
from linksy.geocoding import address_for_location, apply_geocode, needs_geocode
from linksy.search import DEFAULT_RINGS, within_radius
from linksy.security import AuthContext

logger = logging.getLogger(__name__)

PROVIDER_UPDATABLE_FIELDS: tuple[str, ...] = (
    "name",
    "description",
    "sector",
    "status",
    "referral_type",
    "referral_instructions",
    "phone",
    "email",
    "website",
    "hours",
    "sla_hours",
    "is_host",
    "host_settings",
)
ADDRESS_FIELDS: tuple[str, ...] = ("address_line1", "address_line2", "city", "state", "postal_code")


def slugify(text: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", str(text or "").lower()).strip("-")


def normalize_host_settings(raw: dict[str, Any] | None, *, current: dict[str, Any] | None = None) -> dict[str, Any]:
    merged: dict[str, Any] = {
        "widget_title": None,
        "welcome_message": None,
        "primary_color": None,
        "allowed_domains": [],
        "ticket_rate_limit_per_hour": 20,
        "search_radius_miles": list(DEFAULT_RINGS),
    }
    merged.update(current or {})
    merged.update({k: v for k, v in (raw or {}).items() if v is not None})
    rings = sorted({int(x) for x in merged.get("search_radius_miles") or [] if int(x) > 0})
    merged["search_radius_miles"] = rings or list(DEFAULT_RINGS)
    merged["ticket_rate_limit_per_hour"] = max(1, int(merged.get("ticket_rate_limit_per_hour") or 20))
    return merged


class StoreProvidersMixin:
    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    def _unique_provider_slug(self, *, tenant_id: str, base: str, exclude_id: str | None = None) -> str:
        root = base or "provider"
        candidate = root
        suffix = 2
        while True:
            existing = self.providers_repository.get_by_slug(tenant_id=tenant_id, slug=candidate)
            if existing is None or existing.get("provider_id") == exclude_id:
                return candidate
            candidate = f"{root}-{suffix}"
            suffix += 1

    def create_provider(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise invalid("name is required")
        if not payload.get("sector"):
            raise invalid("sector is required")
        now = self._utcnow_iso()
        is_host = bool(payload.get("is_host", False))
        provider = {
            "provider_id": self._new_id("prv"),
            "tenant_id": tenant_id,
            "name": name,
            "slug": self._unique_provider_slug(tenant_id=tenant_id, base=slugify(payload.get("slug") or name)),
            "description": payload.get("description"),
            "sector": payload["sector"],
            "status": payload.get("status") or "active",
            "referral_type": payload.get("referral_type") or "standard",
            "referral_instructions": payload.get("referral_instructions"),
            "phone": payload.get("phone"),
            "email": payload.get("email"),
            "website": payload.get("website"),
            "hours": payload.get("hours"),
            "sla_hours": int(payload.get("sla_hours") or 48),
            "is_host": is_host,
            "host_settings": normalize_host_settings(payload.get("host_settings")) if is_host else None,
            "usage": {"search_count": 0, "ticket_count": 0, "last_used_at": None},
            "parent_provider_id": None,
            "parent_linked_by": None,
            "parent_linked_at": None,
            "legacy_id": payload.get("legacy_id"),
            "created_at": now,
            "updated_at": now,
        }
        saved = self._persist_provider(provider=provider)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.created",
            resource_type="provider",
            resource_id=saved["provider_id"],
            details={"name": name},
        )
        return saved

    def get_provider_for_tenant(self, *, tenant_id: str, provider_id: str) -> dict[str, Any]:
        provider = self.providers_repository.get_any(provider_id=provider_id)
        if provider is None:
            raise not_found("PROVIDER_NOT_FOUND", "provider not found")
        self._assert_tenant_scope(str(provider.get("tenant_id") or ""), tenant_id)
        return provider

    def _locations_by_provider(self, tenant_id: str) -> dict[str, list[dict[str, Any]]]:
        grouped: dict[str, list[dict[str, Any]]] = {}
        for loc in self.locations.values():
            if loc.get("tenant_id") == tenant_id:
                grouped.setdefault(str(loc["provider_id"]), []).append(dict(loc))
        return grouped

    def _need_ids_for(self, provider_id: str) -> list[str]:
        row = self.provider_needs.get(provider_id) or {}
        return list(row.get("need_ids") or [])

    def list_providers(
        self,
        *,
        tenant_id: str,
        q: str | None = None,
        sector: str | None = None,
        status: str | None = "active",
        referral_type: str | None = None,
        is_host: bool | None = None,
        lat: float | None = None,
        lng: float | None = None,
        radius_miles: float | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows = self.providers_repository.list(tenant_id=tenant_id)
        needle = (q or "").strip().lower()
        if needle:
            rows = [
                x
                for x in rows
                if needle in str(x.get("name") or "").lower() or needle in str(x.get("description") or "").lower()
            ]
        if sector:
            rows = [x for x in rows if x.get("sector") == sector]
        if status and status != "all":
            rows = [x for x in rows if x.get("status") == status]
        if referral_type:
            rows = [x for x in rows if x.get("referral_type") == referral_type]
        if is_host is not None:
            rows = [x for x in rows if bool(x.get("is_host")) == is_host]

        locations = self._locations_by_provider(tenant_id)
        if lat is not None and lng is not None and radius_miles is not None:
            origin = {"lat": float(lat), "lng": float(lng)}
            nearby: list[dict[str, Any]] = []
            for row in rows:
                dist = within_radius(origin, locations.get(row["provider_id"], []), float(radius_miles))
                if dist is not None:
                    row["distance_miles"] = dist
                    nearby.append(row)
            rows = sorted(nearby, key=lambda x: (x["distance_miles"], str(x.get("name") or "")))
        else:
            rows.sort(key=lambda x: str(x.get("name") or "").lower())

        for row in rows:
            row["location_count"] = len(locations.get(row["provider_id"], []))
            row["need_count"] = len(self._need_ids_for(row["provider_id"]))
        return self._paginate(rows, limit=limit, offset=offset)

    def get_provider_detail(self, *, tenant_id: str, provider_id: str) -> dict[str, Any]:
        provider = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        provider["locations"] = self.list_locations(tenant_id=tenant_id, provider_id=provider_id)
        provider["contacts"] = self.list_contacts(tenant_id=tenant_id, provider_id=provider_id)
        provider["needs"] = self.list_provider_needs(tenant_id=tenant_id, provider_id=provider_id)
        provider["children"] = self.list_provider_children(tenant_id=tenant_id, provider_id=provider_id)
        parent_id = provider.get("parent_provider_id")
        parent = self.providers_repository.get(tenant_id=tenant_id, provider_id=parent_id) if parent_id else None
        provider["parent"] = (
            {"provider_id": parent["provider_id"], "name": parent["name"], "slug": parent["slug"]} if parent else None
        )
        return provider

    def update_provider(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        provider = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        changes = {k: v for k, v in payload.items() if k in PROVIDER_UPDATABLE_FIELDS}
        if not changes:
            raise invalid("no updatable fields provided")
        for key, value in changes.items():
            if key == "host_settings":
                continue
            if key == "name":
                value = str(value or "").strip() or provider["name"]
            provider[key] = value
        if provider.get("is_host"):
            provider["host_settings"] = normalize_host_settings(
                changes.get("host_settings"),
                current=provider.get("host_settings"),
            )
        provider["updated_at"] = self._utcnow_iso()
        saved = self._persist_provider(provider=provider)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.updated",
            resource_type="provider",
            resource_id=provider_id,
            details={"fields": sorted(changes.keys())},
        )
        return saved

    def delete_provider(self, *, tenant_id: str, provider_id: str, actor_id: str | None) -> dict[str, Any]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        for collection in ("locations", "contacts", "provider_notes", "provider_events"):
            rows = getattr(self, collection)
            for item_id in [k for k, v in rows.items() if v.get("provider_id") == provider_id]:
                del rows[item_id]
        self.provider_needs.pop(provider_id, None)
        for child in self.list_provider_children(tenant_id=tenant_id, provider_id=provider_id):
            child.pop("ticket_count", None)
            child.update({"parent_provider_id": None, "parent_linked_by": None, "parent_linked_at": None})
            self._persist_provider(provider=child)
        self._remove_provider(tenant_id=tenant_id, provider_id=provider_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.deleted",
            resource_type="provider",
            resource_id=provider_id,
        )
        return {"provider_id": provider_id, "deleted": True}

    # ------------------------------------------------------------------
    # Hierarchy
    # ------------------------------------------------------------------

    def list_provider_children(self, *, tenant_id: str, provider_id: str) -> list[dict[str, Any]]:
        children = [
            x for x in self.providers_repository.list(tenant_id=tenant_id) if x.get("parent_provider_id") == provider_id
        ]
        for child in children:
            child["ticket_count"] = sum(
                1 for t in self.tickets.values() if t.get("provider_id") == child["provider_id"]
            )
        return sorted(children, key=lambda x: str(x.get("name") or "").lower())

    def set_provider_parent(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        parent_provider_id: str | None,
        actor_id: str | None,
    ) -> dict[str, Any]:
        provider = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        if parent_provider_id is None:
            provider.update({"parent_provider_id": None, "parent_linked_by": None, "parent_linked_at": None})
        else:
            if parent_provider_id == provider_id:
                raise invalid("a provider cannot be its own parent")
            parent = self.providers_repository.get(tenant_id=tenant_id, provider_id=parent_provider_id)
            if parent is None:
                raise not_found("PROVIDER_NOT_FOUND", "parent provider not found")
            if parent.get("parent_provider_id"):
                raise invalid(
                    "parent provider is already a child; only one level is supported",
                    code="HIERARCHY_DEPTH_EXCEEDED",
                )
            if self.list_provider_children(tenant_id=tenant_id, provider_id=provider_id):
                raise invalid("provider has children and cannot become a child", code="HIERARCHY_HAS_CHILDREN")
            provider.update(
                {
                    "parent_provider_id": parent_provider_id,
                    "parent_linked_by": actor_id,
                    "parent_linked_at": self._utcnow_iso(),
                }
            )
        provider["updated_at"] = self._utcnow_iso()
        saved = self._persist_provider(provider=provider)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="provider.parent_set",
            resource_type="provider",
            resource_id=provider_id,
            details={"parent_provider_id": parent_provider_id},
        )
        return saved

    def get_parent_stats(self, *, tenant_id: str, provider_id: str) -> dict[str, Any]:
        parent = self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        children = self.list_provider_children(tenant_id=tenant_id, provider_id=provider_id)
        member_ids = {provider_id, *(c["provider_id"] for c in children)}
        by_status: dict[str, int] = {}
        per_provider: dict[str, int] = {pid: 0 for pid in member_ids}
        for ticket in self.tickets_repository.list(tenant_id=tenant_id):
            pid = ticket.get("provider_id")
            if pid not in member_ids:
                continue
            status = str(ticket.get("status") or "pending")
            by_status[status] = by_status.get(status, 0) + 1
            per_provider[pid] += 1
        return {
            "provider_id": provider_id,
            "name": parent["name"],
            "children_count": len(children),
            "total_tickets": sum(per_provider.values()),
            "parent_tickets": per_provider[provider_id],
            "tickets_by_status": by_status,
            "children": [
                {"provider_id": c["provider_id"], "name": c["name"], "total_tickets": per_provider[c["provider_id"]]}
                for c in children
            ],
        }

    # ------------------------------------------------------------------
    # Locations
    # ------------------------------------------------------------------

    def list_locations(self, *, tenant_id: str, provider_id: str) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.locations.values()
            if x.get("tenant_id") == tenant_id and x.get("provider_id") == provider_id
        ]
        return sorted(rows, key=lambda x: (not x.get("is_primary"), str(x.get("created_at") or "")))

    def _maybe_geocode(self, location: dict[str, Any]) -> None:
        if not self.geocoder.enabled or not needs_geocode(location):
            return
        result = self.geocoder.geocode(address_for_location(location))
        if result is None:
            logger.warning("location %s could not be geocoded", location.get("location_id"))
            return
        apply_geocode(location, result)

    def _clear_other_primaries(self, *, provider_id: str, keep_id: str) -> None:
        for loc in self.locations.values():
            if loc.get("provider_id") == provider_id and loc.get("location_id") != keep_id and loc.get("is_primary"):
                loc["is_primary"] = False

    def create_location(self, *, tenant_id: str, provider_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        existing = self.list_locations(tenant_id=tenant_id, provider_id=provider_id)
        now = self._utcnow_iso()
        location = {
            "location_id": self._new_id("loc"),
            "tenant_id": tenant_id,
            "provider_id": provider_id,
            "name": payload.get("name"),
            "address_line1": payload.get("address_line1"),
            "address_line2": payload.get("address_line2"),
            "city": payload.get("city"),
            "state": payload.get("state"),
            "postal_code": payload.get("postal_code"),
            "phone": payload.get("phone"),
            "is_primary": bool(payload.get("is_primary")) or not existing,
            "latitude": payload.get("latitude"),
            "longitude": payload.get("longitude"),
            "geocoded_at": None,
            "geocode_source": None,
            "created_at": now,
            "updated_at": now,
        }
        if location["latitude"] is not None and location["longitude"] is not None:
            location["geocoded_at"] = now
            location["geocode_source"] = "manual"
        else:
            self._maybe_geocode(location)
        if location["is_primary"]:
            self._clear_other_primaries(provider_id=provider_id, keep_id=location["location_id"])
        return self._persist("locations", location, key="location_id")

    def update_location(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        location_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        location = self._require("locations", location_id, tenant_id=tenant_id, code="LOCATION_NOT_FOUND", label="location")
        if location.get("provider_id") != provider_id:
            raise not_found("LOCATION_NOT_FOUND", "location not found")
        address_changed = any(
            key in payload and payload[key] != location.get(key) for key in ADDRESS_FIELDS
        )
        for key, value in payload.items():
            if key in location and key not in {"location_id", "tenant_id", "provider_id", "created_at"}:
                location[key] = value
        coords_given = payload.get("latitude") is not None and payload.get("longitude") is not None
        if coords_given:
            location["geocoded_at"] = self._utcnow_iso()
            location["geocode_source"] = "manual"
        elif address_changed:
            location.update({"latitude": None, "longitude": None, "geocoded_at": None, "geocode_source": None})
            self._maybe_geocode(location)
        if payload.get("is_primary"):
            self._clear_other_primaries(provider_id=provider_id, keep_id=location_id)
        location["updated_at"] = self._utcnow_iso()
        return self._persist("locations", location, key="location_id")

    def delete_location(self, *, tenant_id: str, provider_id: str, location_id: str) -> dict[str, Any]:
        location = self._require("locations", location_id, tenant_id=tenant_id, code="LOCATION_NOT_FOUND", label="location")
        if location.get("provider_id") != provider_id:
            raise not_found("LOCATION_NOT_FOUND", "location not found")
        self._remove("locations", location_id)
        return {"location_id": location_id, "deleted": True}

    # ------------------------------------------------------------------
    # Contacts
    # ------------------------------------------------------------------

    def list_contacts(
        self,
        *,
        tenant_id: str,
        provider_id: str | None = None,
        include_archived: bool = False,
    ) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.contacts.values()
            if x.get("tenant_id") == tenant_id
            and (provider_id is None or x.get("provider_id") == provider_id)
            and (include_archived or x.get("status") != "archived")
        ]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""))

    def contacts_for_user(self, *, tenant_id: str, user_id: str) -> list[dict[str, Any]]:
        return [
            dict(x)
            for x in self.contacts.values()
            if x.get("tenant_id") == tenant_id and x.get("user_id") == user_id and x.get("status") == "active"
        ]

    def default_handler(self, *, provider_id: str | None) -> dict[str, Any] | None:
        if not provider_id:
            return None
        for contact in self.contacts.values():
            if (
                contact.get("provider_id") == provider_id
                and contact.get("is_default_referral_handler")
                and contact.get("status") == "active"
            ):
                return dict(contact)
        return None

    def _clear_default_handlers(self, *, provider_id: str, keep_id: str) -> None:
        for contact in self.contacts.values():
            if contact.get("provider_id") == provider_id and contact.get("contact_id") != keep_id:
                contact["is_default_referral_handler"] = False

    def create_contact(self, *, tenant_id: str, provider_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        user_id = payload.get("user_id")
        if user_id and any(
            x.get("user_id") == user_id for x in self.list_contacts(tenant_id=tenant_id, provider_id=provider_id)
        ):
            raise conflict("CONTACT_DUPLICATE", "user is already a contact of this provider")
        now = self._utcnow_iso()
        contact = {
            "contact_id": self._new_id("cnt"),
            "tenant_id": tenant_id,
            "provider_id": provider_id,
            "user_id": user_id,
            "email": payload.get("email"),
            "full_name": payload.get("full_name"),
            "job_title": payload.get("job_title"),
            "phone": payload.get("phone"),
            "contact_type": payload.get("contact_type") or "provider_employee",
            "status": payload.get("status") or "active",
            "is_default_referral_handler": bool(payload.get("is_default_referral_handler")),
            "created_at": now,
            "updated_at": now,
        }
        if contact["is_default_referral_handler"]:
            self._clear_default_handlers(provider_id=provider_id, keep_id=contact["contact_id"])
        return self._persist("contacts", contact, key="contact_id")

    def _require_contact(self, *, tenant_id: str, provider_id: str, contact_id: str) -> dict[str, Any]:
        contact = self._require("contacts", contact_id, tenant_id=tenant_id, code="CONTACT_NOT_FOUND", label="contact")
        if contact.get("provider_id") != provider_id:
            raise not_found("CONTACT_NOT_FOUND", "contact not found")
        return contact

    def update_contact(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        contact_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        contact = self._require_contact(tenant_id=tenant_id, provider_id=provider_id, contact_id=contact_id)
        for key in ("user_id", "email", "full_name", "job_title", "phone", "contact_type", "status"):
            if key in payload:
                contact[key] = payload[key]
        if contact.get("status") != "active":
            contact["is_default_referral_handler"] = False
        contact["updated_at"] = self._utcnow_iso()
        return self._persist("contacts", contact, key="contact_id")

    def archive_contact(self, *, tenant_id: str, provider_id: str, contact_id: str) -> dict[str, Any]:
        contact = self._require_contact(tenant_id=tenant_id, provider_id=provider_id, contact_id=contact_id)
        contact["status"] = "archived"
        contact["is_default_referral_handler"] = False
        contact["updated_at"] = self._utcnow_iso()
        self._persist("contacts", contact, key="contact_id")
        return {"contact_id": contact_id, "deleted": True}

    def set_default_handler(self, *, tenant_id: str, provider_id: str, contact_id: str) -> dict[str, Any]:
        contact = self._require_contact(tenant_id=tenant_id, provider_id=provider_id, contact_id=contact_id)
        if contact.get("status") != "active":
            raise invalid("only active contacts can handle referrals")
        self._clear_default_handlers(provider_id=provider_id, keep_id=contact_id)
        contact["is_default_referral_handler"] = True
        contact["updated_at"] = self._utcnow_iso()
        return self._persist("contacts", contact, key="contact_id")

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    @staticmethod
    def _note_visible(note: dict[str, Any], viewer: AuthContext) -> bool:
        if not note.get("is_private"):
            return True
        return viewer.is_site_admin or note.get("author_id") == viewer.subject

    def list_notes(self, *, tenant_id: str, provider_id: str, viewer: AuthContext) -> list[dict[str, Any]]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        rows = [
            dict(x)
            for x in self.provider_notes.values()
            if x.get("provider_id") == provider_id and self._note_visible(x, viewer)
        ]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        rows.sort(key=lambda x: not x.get("is_pinned"))
        return rows

    def create_note(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        author: AuthContext,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        content = str(payload.get("content") or "").strip()
        if not content:
            raise invalid("content is required")
        now = self._utcnow_iso()
        note = {
            "note_id": self._new_id("note"),
            "tenant_id": tenant_id,
            "provider_id": provider_id,
            "author_id": author.subject,
            "author_name": author.name or author.email or None,
            "note_type": payload.get("note_type") or "general",
            "content": content,
            "is_private": bool(payload.get("is_private")),
            "is_pinned": bool(payload.get("is_pinned")),
            "attachments": [],
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("provider_notes", note, key="note_id")

    def _require_own_note(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        note_id: str,
        viewer: AuthContext,
    ) -> dict[str, Any]:
        note = self._require("provider_notes", note_id, tenant_id=tenant_id, code="NOTE_NOT_FOUND", label="note")
        if note.get("provider_id") != provider_id or not self._note_visible(note, viewer):
            raise not_found("NOTE_NOT_FOUND", "note not found")
        if not viewer.is_site_admin and note.get("author_id") != viewer.subject:
            raise forbidden("only the author can modify this note")
        return note

    def update_note(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        note_id: str,
        viewer: AuthContext,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        note = self._require_own_note(tenant_id=tenant_id, provider_id=provider_id, note_id=note_id, viewer=viewer)
        for key in ("content", "note_type", "is_private", "is_pinned"):
            if payload.get(key) is not None:
                note[key] = payload[key]
        note["updated_at"] = self._utcnow_iso()
        return self._persist("provider_notes", note, key="note_id")

    def delete_note(self, *, tenant_id: str, provider_id: str, note_id: str, viewer: AuthContext) -> dict[str, Any]:
        note = self._require_own_note(tenant_id=tenant_id, provider_id=provider_id, note_id=note_id, viewer=viewer)
        for attachment in note.get("attachments") or []:
            try:
                self.object_storage.delete_object(storage_uri=attachment["storage_uri"])
            except (OSError, ValueError) as exc:
                logger.warning("failed to delete attachment %s: %s", attachment.get("file_id"), exc)
        self._remove("provider_notes", note_id)
        return {"note_id": note_id, "deleted": True}

    def add_note_attachment(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        note_id: str,
        viewer: AuthContext,
        filename: str,
        content: bytes,
        content_type: str | None,
    ) -> dict[str, Any]:
        note = self._require_own_note(tenant_id=tenant_id, provider_id=provider_id, note_id=note_id, viewer=viewer)
        checked = validate_upload(content, filename, content_type)
        file_id = self._new_id("file")
        storage_uri = self.object_storage.put_object(
            tenant_id=tenant_id,
            object_type="provider_notes",
            object_id=f"{note_id}/{file_id}",
            filename=filename,
            content_bytes=content,
            content_type=str(checked["mime_type"]),
        )
        attachment = {
            "file_id": file_id,
            "filename": filename,
            "storage_uri": storage_uri,
            "size": len(content),
            "mime_type": checked["mime_type"],
        }
        note.setdefault("attachments", []).append(attachment)
        note["updated_at"] = self._utcnow_iso()
        self._persist("provider_notes", note, key="note_id")
        return attachment

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    def list_provider_events(self, *, tenant_id: str, provider_id: str) -> list[dict[str, Any]]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        rows = [dict(x) for x in self.provider_events.values() if x.get("provider_id") == provider_id]
        return sorted(rows, key=lambda x: str(x.get("event_date") or ""))

    def create_provider_event(
        self,
        *,
        tenant_id: str,
        provider_id: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        title = str(payload.get("title") or "").strip()
        event_date = str(payload.get("event_date") or "").strip()
        if not title or not event_date:
            raise invalid("title and event_date are required")
        now = self._utcnow_iso()
        event = {
            "event_id": self._new_id("evt"),
            "tenant_id": tenant_id,
            "provider_id": provider_id,
            "title": title,
            "event_date": event_date,
            "description": payload.get("description"),
            "location": payload.get("location"),
            "is_public": bool(payload.get("is_public", True)),
            "status": "pending",
            "created_by": actor_id,
            "approved_by": None,
            "approved_at": None,
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("provider_events", event, key="event_id")

    def list_events_admin(self, *, tenant_id: str, status: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.provider_events.values()
            if x.get("tenant_id") == tenant_id and (not status or x.get("status") == status)
        ]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def review_provider_event(
        self,
        *,
        tenant_id: str,
        event_id: str,
        approve: bool,
        reviewer_id: str | None,
        notes: str | None = None,
    ) -> dict[str, Any]:
        event = self._require("provider_events", event_id, tenant_id=tenant_id, code="EVENT_NOT_FOUND", label="event")
        now = self._utcnow_iso()
        event["status"] = "approved" if approve else "rejected"
        event["approved_by"] = reviewer_id
        event["approved_at"] = now
        event["review_notes"] = notes
        event["updated_at"] = now
        return self._persist("provider_events", event, key="event_id")

    # ------------------------------------------------------------------
    # Provider needs
    # ------------------------------------------------------------------

    def list_provider_needs(self, *, tenant_id: str, provider_id: str) -> list[dict[str, Any]]:
        items = []
        for need_id in self._need_ids_for(provider_id):
            need = self.needs.get(need_id)
            if need is not None and need.get("tenant_id") == tenant_id:
                items.append(dict(need))
        return items

    def set_provider_needs(self, *, tenant_id: str, provider_id: str, need_ids: list[str]) -> list[dict[str, Any]]:
        self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=provider_id)
        ordered = list(dict.fromkeys(str(x) for x in need_ids))
        unknown = [x for x in ordered if (self.needs.get(x) or {}).get("tenant_id") != tenant_id]
        if unknown:
            raise invalid("unknown need ids", details={"unknown": unknown})
        self._persist(
            "provider_needs",
            {
                "provider_id": provider_id,
                "tenant_id": tenant_id,
                "need_ids": ordered,
                "updated_at": self._utcnow_iso(),
            },
            key="provider_id",
        )
        return self.list_provider_needs(tenant_id=tenant_id, provider_id=provider_id)

    # ------------------------------------------------------------------
    # Provider applications
    # ------------------------------------------------------------------

    def create_provider_application(self, *, tenant_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        org_name = str(payload.get("org_name") or "").strip()
        contact_email = str(payload.get("contact_email") or "").strip()
        if not org_name or not contact_email:
            raise invalid("org_name and contact_email are required")
        now = self._utcnow_iso()
        application = {
            **{k: v for k, v in payload.items() if k not in {"org_name", "contact_email"}},
            "application_id": self._new_id("app"),
            "tenant_id": tenant_id,
            "org_name": org_name,
            "contact_email": contact_email,
            "status": "pending",
            "reviewed_by": None,
            "reviewed_at": None,
            "review_notes": None,
            "created_provider_id": None,
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("provider_applications", application, key="application_id")

    def list_provider_applications(self, *, tenant_id: str, status: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.provider_applications.values()
            if x.get("tenant_id") == tenant_id and (not status or status == "all" or x.get("status") == status)
        ]
        return sorted(rows, key=lambda x: str(x.get("created_at") or ""), reverse=True)

    def get_provider_application(self, *, tenant_id: str, application_id: str) -> dict[str, Any]:
        return self._require(
            "provider_applications",
            application_id,
            tenant_id=tenant_id,
            code="APPLICATION_NOT_FOUND",
            label="application",
        )

    def review_provider_application(
        self,
        *,
        tenant_id: str,
        application_id: str,
        action: str,
        notes: str | None,
        reviewer_id: str | None,
    ) -> dict[str, Any]:
        application = self.get_provider_application(tenant_id=tenant_id, application_id=application_id)
        if application.get("status") != "pending":
            raise invalid("application has already been reviewed", code="APPLICATION_ALREADY_REVIEWED")
        now = self._utcnow_iso()
        if action == "approve":
            provider = self.create_provider(
                tenant_id=tenant_id,
                actor_id=reviewer_id,
                payload={
                    "name": application["org_name"],
                    "sector": application.get("sector") or "nonprofit",
                    "description": application.get("description"),
                    "phone": application.get("phone") or application.get("contact_phone"),
                    "email": application["contact_email"],
                    "website": application.get("website"),
                },
            )
            if any(application.get(key) for key in ADDRESS_FIELDS):
                self.create_location(
                    tenant_id=tenant_id,
                    provider_id=provider["provider_id"],
                    payload={**{key: application.get(key) for key in ADDRESS_FIELDS}, "is_primary": True},
                )
            application["status"] = "approved"
            application["created_provider_id"] = provider["provider_id"]
        elif action == "reject":
            application["status"] = "rejected"
        else:
            raise invalid("action must be approve or reject")
        application["reviewed_by"] = reviewer_id
        application["reviewed_at"] = now
        application["review_notes"] = notes
        application["updated_at"] = now
        return self._persist("provider_applications", application, key="application_id")
