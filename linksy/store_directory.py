from __future__ import annotations

import logging
import secrets
from typing import Any

from linksy.crisis import detect_crisis, normalize_keyword, sort_keywords
from linksy.custom_fields import validate_field_definition, validate_intake
from linksy.errors import conflict, invalid, not_found
from linksy.search import NO_NEEDS_MESSAGE, compose_message, match_needs, rank_by_distance, select_ring
from linksy.store_providers import normalize_host_settings, slugify

logger = logging.getLogger(__name__)

PUBLIC_PROVIDER_FIELDS: tuple[str, ...] = (
    "provider_id",
    "name",
    "slug",
    "description",
    "sector",
    "referral_type",
    "referral_instructions",
    "phone",
    "email",
    "website",
    "hours",
)


def _public_provider(provider: dict[str, Any]) -> dict[str, Any]:
    row = {key: provider.get(key) for key in PUBLIC_PROVIDER_FIELDS}
    for key in ("distance", "primary_location", "distance_miles", "location_count", "need_count"):
        if key in provider:
            row[key] = provider[key]
    return row


def _parse_rating(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float) and value.is_integer():
        return int(value)
    if isinstance(value, str) and value.strip().isdigit():
        return int(value.strip())
    return None


class StoreDirectoryMixin:
    # ------------------------------------------------------------------
    # Taxonomy
    # ------------------------------------------------------------------

    def list_need_categories(self, *, tenant_id: str, active_only: bool = False) -> list[dict[str, Any]]:
        needs_by_category: dict[str, list[dict[str, Any]]] = {}
        for need in self.list_needs(tenant_id=tenant_id):
            if active_only and not need.get("is_active", True):
                continue
            needs_by_category.setdefault(str(need.get("category_id")), []).append(need)
        rows = []
        for category in self.need_categories.values():
            if category.get("tenant_id") != tenant_id:
                continue
            if active_only and not category.get("is_active", True):
                continue
            row = dict(category)
            row["needs"] = needs_by_category.get(category["category_id"], [])
            rows.append(row)
        return sorted(rows, key=lambda x: (int(x.get("sort_order") or 0), str(x.get("name") or "").lower()))

    def create_need_category(self, *, tenant_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise invalid("name is required")
        now = self._utcnow_iso()
        category = {
            "category_id": self._new_id("ncat"),
            "tenant_id": tenant_id,
            "name": name,
            "slug": slugify(payload.get("slug") or name),
            "description": payload.get("description"),
            "sort_order": int(payload.get("sort_order") or 0),
            "is_active": bool(payload.get("is_active", True)),
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("need_categories", category, key="category_id")

    def update_need_category(self, *, tenant_id: str, category_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        category = self._require(
            "need_categories", category_id, tenant_id=tenant_id, code="NEED_CATEGORY_NOT_FOUND", label="need category"
        )
        for key in ("name", "description", "sort_order", "is_active"):
            if payload.get(key) is not None:
                category[key] = payload[key]
        if payload.get("slug"):
            category["slug"] = slugify(payload["slug"])
        category["updated_at"] = self._utcnow_iso()
        return self._persist("need_categories", category, key="category_id")

    def delete_need_category(self, *, tenant_id: str, category_id: str) -> dict[str, Any]:
        self._require(
            "need_categories", category_id, tenant_id=tenant_id, code="NEED_CATEGORY_NOT_FOUND", label="need category"
        )
        if any(x.get("category_id") == category_id for x in self.needs.values()):
            raise conflict("NEED_CATEGORY_NOT_EMPTY", "category still has needs; delete or move them first")
        self._remove("need_categories", category_id)
        return {"category_id": category_id, "deleted": True}

    def list_needs(self, *, tenant_id: str, category_id: str | None = None) -> list[dict[str, Any]]:
        rows = [
            dict(x)
            for x in self.needs.values()
            if x.get("tenant_id") == tenant_id and (not category_id or x.get("category_id") == category_id)
        ]
        return sorted(rows, key=lambda x: str(x.get("name") or "").lower())

    def create_need(self, *, tenant_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        name = str(payload.get("name") or "").strip()
        if not name:
            raise invalid("name is required")
        category_id = payload.get("category_id")
        if (self.need_categories.get(category_id or "") or {}).get("tenant_id") != tenant_id:
            raise invalid("unknown category_id")
        now = self._utcnow_iso()
        need = {
            "need_id": self._new_id("need"),
            "tenant_id": tenant_id,
            "category_id": category_id,
            "name": name,
            "synonyms": [str(x).strip().lower() for x in payload.get("synonyms") or [] if str(x).strip()],
            "is_active": bool(payload.get("is_active", True)),
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("needs", need, key="need_id")

    def update_need(self, *, tenant_id: str, need_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        need = self._require("needs", need_id, tenant_id=tenant_id, code="NEED_NOT_FOUND", label="need")
        if payload.get("category_id"):
            if (self.need_categories.get(payload["category_id"]) or {}).get("tenant_id") != tenant_id:
                raise invalid("unknown category_id")
            need["category_id"] = payload["category_id"]
        if payload.get("name") is not None:
            need["name"] = str(payload["name"]).strip() or need["name"]
        if payload.get("synonyms") is not None:
            need["synonyms"] = [str(x).strip().lower() for x in payload["synonyms"] if str(x).strip()]
        if payload.get("is_active") is not None:
            need["is_active"] = bool(payload["is_active"])
        need["updated_at"] = self._utcnow_iso()
        return self._persist("needs", need, key="need_id")

    def delete_need(self, *, tenant_id: str, need_id: str) -> dict[str, Any]:
        self._require("needs", need_id, tenant_id=tenant_id, code="NEED_NOT_FOUND", label="need")
        for row in self.provider_needs.values():
            if need_id in (row.get("need_ids") or []):
                row["need_ids"] = [x for x in row["need_ids"] if x != need_id]
        self._remove("needs", need_id)
        return {"need_id": need_id, "deleted": True}

    # ------------------------------------------------------------------
    # Crisis keywords
    # ------------------------------------------------------------------

    def list_crisis_keywords(self, *, tenant_id: str, crisis_type: str | None = None) -> list[dict[str, Any]]:
        rows = self.crisis_keywords_repository.list(tenant_id=tenant_id)
        if crisis_type:
            rows = [x for x in rows if x.get("crisis_type") == crisis_type]
        return sort_keywords(rows)

    def _require_crisis_keyword(self, *, tenant_id: str, keyword_id: str) -> dict[str, Any]:
        return self._require(
            "crisis_keywords", keyword_id, tenant_id=tenant_id, code="CRISIS_KEYWORD_NOT_FOUND", label="crisis keyword"
        )

    def create_crisis_keyword(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        keyword = normalize_keyword(payload.get("keyword") or "")
        if not keyword or not payload.get("crisis_type") or not payload.get("severity"):
            raise invalid("keyword, crisis_type and severity are required")
        if self.crisis_keywords_repository.get_by_keyword(tenant_id=tenant_id, keyword=keyword) is not None:
            raise conflict("CRISIS_KEYWORD_DUPLICATE", f"keyword already exists: {keyword}")
        now = self._utcnow_iso()
        row = {
            "keyword_id": self._new_id("kw"),
            "tenant_id": tenant_id,
            "keyword": keyword,
            "crisis_type": payload["crisis_type"],
            "severity": payload["severity"],
            "response_template": payload.get("response_template"),
            "emergency_resources": list(payload.get("emergency_resources") or []),
            "is_active": bool(payload.get("is_active", True)),
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        }
        saved = self._persist_crisis_keyword(keyword=row)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="crisis_keyword.created",
            resource_type="crisis_keyword",
            resource_id=saved["keyword_id"],
            details={"keyword": keyword, "severity": saved["severity"]},
        )
        return saved

    def update_crisis_keyword(
        self,
        *,
        tenant_id: str,
        keyword_id: str,
        actor_id: str | None,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        row = self._require_crisis_keyword(tenant_id=tenant_id, keyword_id=keyword_id)
        if payload.get("keyword") is not None:
            keyword = normalize_keyword(payload["keyword"])
            if not keyword:
                raise invalid("keyword must not be empty")
            existing = self.crisis_keywords_repository.get_by_keyword(tenant_id=tenant_id, keyword=keyword)
            if existing is not None and existing["keyword_id"] != keyword_id:
                raise conflict("CRISIS_KEYWORD_DUPLICATE", f"keyword already exists: {keyword}")
            row["keyword"] = keyword
        for key in ("crisis_type", "severity", "response_template", "emergency_resources", "is_active"):
            if payload.get(key) is not None:
                row[key] = payload[key]
        row["updated_at"] = self._utcnow_iso()
        saved = self._persist_crisis_keyword(keyword=row)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="crisis_keyword.updated",
            resource_type="crisis_keyword",
            resource_id=keyword_id,
        )
        return saved

    def delete_crisis_keyword(self, *, tenant_id: str, keyword_id: str, actor_id: str | None) -> dict[str, Any]:
        self._require_crisis_keyword(tenant_id=tenant_id, keyword_id=keyword_id)
        for key in [k for k, v in self.crisis_overrides.items() if v.get("keyword_id") == keyword_id]:
            del self.crisis_overrides[key]
        self._remove_crisis_keyword(tenant_id=tenant_id, keyword_id=keyword_id)
        self.record_audit(
            tenant_id=tenant_id,
            actor_id=actor_id,
            action="crisis_keyword.deleted",
            resource_type="crisis_keyword",
            resource_id=keyword_id,
        )
        return {"keyword_id": keyword_id, "deleted": True}

    def test_crisis_message(self, *, tenant_id: str, message: str) -> dict[str, Any]:
        if not str(message or "").strip():
            raise invalid("message is required")
        result = detect_crisis(message, self.crisis_keywords_repository.list(tenant_id=tenant_id))
        return {"detected": result is not None, "result": result}

    def _host_overrides(self, host_id: str) -> list[dict[str, Any]]:
        return [dict(x) for x in self.crisis_overrides.values() if x.get("host_provider_id") == host_id]

    def list_crisis_overrides(self, *, tenant_id: str, host_id: str) -> list[dict[str, Any]]:
        self._require_host(tenant_id=tenant_id, host_id=host_id)
        return sorted(self._host_overrides(host_id), key=lambda x: str(x.get("created_at") or ""))

    def set_crisis_override(
        self,
        *,
        tenant_id: str,
        host_id: str,
        keyword_id: str,
        action: str,
    ) -> dict[str, Any]:
        self._require_host(tenant_id=tenant_id, host_id=host_id)
        self._require_crisis_keyword(tenant_id=tenant_id, keyword_id=keyword_id)
        if action not in {"include", "exclude"}:
            raise invalid("action must be include or exclude")
        key = f"{host_id}:{keyword_id}"
        now = self._utcnow_iso()
        current = self.crisis_overrides.get(key) or {"created_at": now}
        override = {
            **current,
            "override_key": key,
            "tenant_id": tenant_id,
            "host_provider_id": host_id,
            "keyword_id": keyword_id,
            "action": action,
            "updated_at": now,
        }
        return self._persist("crisis_overrides", override, key="override_key")

    def delete_crisis_override(self, *, tenant_id: str, host_id: str, keyword_id: str) -> dict[str, Any]:
        self._require_host(tenant_id=tenant_id, host_id=host_id)
        key = f"{host_id}:{keyword_id}"
        if not self._remove("crisis_overrides", key):
            raise not_found("CRISIS_OVERRIDE_NOT_FOUND", "override not found")
        return {"keyword_id": keyword_id, "deleted": True}

    def host_crisis_check(self, *, slug: str, message: str) -> dict[str, Any]:
        host = self.get_host_by_slug(slug=slug)
        if not str(message or "").strip():
            raise invalid("message is required")
        result = detect_crisis(
            message,
            self.crisis_keywords_repository.list(tenant_id=host["tenant_id"]),
            self._host_overrides(host["provider_id"]),
        )
        return {"detected": result is not None, "result": result}

    # ------------------------------------------------------------------
    # Hosts and custom fields
    # ------------------------------------------------------------------

    def get_host_by_slug(self, *, slug: str) -> dict[str, Any]:
        host = self.providers_repository.find_host_by_slug(slug=slug)
        if host is None or host.get("status") != "active":
            raise not_found("HOST_NOT_FOUND", "host not found")
        return host

    def _require_host(self, *, tenant_id: str, host_id: str) -> dict[str, Any]:
        provider = self.providers_repository.get_any(provider_id=host_id)
        if provider is None or not provider.get("is_host"):
            raise not_found("HOST_NOT_FOUND", "host not found")
        self._assert_tenant_scope(str(provider.get("tenant_id") or ""), tenant_id)
        return provider

    def _bump_host_usage(self, host: dict[str, Any], counter: str) -> None:
        current = self.providers_repository.get_any(provider_id=host["provider_id"]) or host
        usage = dict(current.get("usage") or {})
        usage[counter] = int(usage.get(counter) or 0) + 1
        usage["last_used_at"] = self._utcnow_iso()
        current["usage"] = usage
        self._persist_provider(provider=current)

    def public_host_config(self, *, slug: str) -> dict[str, Any]:
        host = self.get_host_by_slug(slug=slug)
        return {
            "host_id": host["provider_id"],
            "name": host["name"],
            "slug": host["slug"],
            "settings": normalize_host_settings(host.get("host_settings")),
            "custom_fields": self.list_custom_fields(tenant_id=host["tenant_id"], host_id=host["provider_id"]),
        }

    def list_custom_fields(self, *, tenant_id: str, host_id: str) -> list[dict[str, Any]]:
        self._require_host(tenant_id=tenant_id, host_id=host_id)
        rows = [dict(x) for x in self.custom_fields.values() if x.get("host_provider_id") == host_id]
        return sorted(rows, key=lambda x: (int(x.get("sort_order") or 0), str(x.get("field_key") or "")))

    def create_custom_field(self, *, tenant_id: str, host_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        self._require_host(tenant_id=tenant_id, host_id=host_id)
        validate_field_definition(payload)
        if any(
            x.get("host_provider_id") == host_id and x.get("field_key") == payload["field_key"]
            for x in self.custom_fields.values()
        ):
            raise conflict("CUSTOM_FIELD_DUPLICATE", f"field_key already exists: {payload['field_key']}")
        now = self._utcnow_iso()
        field = {
            "field_id": self._new_id("cf"),
            "tenant_id": tenant_id,
            "host_provider_id": host_id,
            "field_key": payload["field_key"],
            "label": str(payload["label"]).strip(),
            "field_type": payload["field_type"],
            "options": list(payload.get("options") or []),
            "is_required": bool(payload.get("is_required")),
            "sort_order": int(payload.get("sort_order") or 0),
            "placeholder": payload.get("placeholder"),
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("custom_fields", field, key="field_id")

    def _require_custom_field(self, *, tenant_id: str, host_id: str, field_id: str) -> dict[str, Any]:
        field = self._require(
            "custom_fields", field_id, tenant_id=tenant_id, code="CUSTOM_FIELD_NOT_FOUND", label="custom field"
        )
        if field.get("host_provider_id") != host_id:
            raise not_found("CUSTOM_FIELD_NOT_FOUND", "custom field not found")
        return field

    def update_custom_field(
        self,
        *,
        tenant_id: str,
        host_id: str,
        field_id: str,
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        field = self._require_custom_field(tenant_id=tenant_id, host_id=host_id, field_id=field_id)
        for key in ("label", "field_type", "options", "is_required", "sort_order", "placeholder"):
            if payload.get(key) is not None:
                field[key] = payload[key]
        validate_field_definition(field)
        field["updated_at"] = self._utcnow_iso()
        return self._persist("custom_fields", field, key="field_id")

    def delete_custom_field(self, *, tenant_id: str, host_id: str, field_id: str) -> dict[str, Any]:
        self._require_custom_field(tenant_id=tenant_id, host_id=host_id, field_id=field_id)
        self._remove("custom_fields", field_id)
        return {"field_id": field_id, "deleted": True}

    # ------------------------------------------------------------------
    # Widget
    # ------------------------------------------------------------------

    def _resolve_origin(self, payload: dict[str, Any]) -> dict[str, float] | None:
        location = payload.get("location")
        if location and location.get("lat") is not None and location.get("lng") is not None:
            return {"lat": float(location["lat"]), "lng": float(location["lng"])}
        zip_code = str(payload.get("zip_code") or "").strip()
        if zip_code and self.geocoder.enabled:
            result = self.geocoder.geocode(zip_code)
            if result is not None:
                return {"lat": result.latitude, "lng": result.longitude}
        return None

    def _track_search_session(
        self,
        *,
        host: dict[str, Any],
        payload: dict[str, Any],
        origin: dict[str, float] | None,
        radius: int | None,
        crisis: dict[str, Any] | None,
    ) -> str:
        now = self._utcnow_iso()
        session_id = payload.get("session_id")
        session = self.search_sessions.get(session_id or "")
        if session is not None and session.get("host_provider_id") == host["provider_id"]:
            session = dict(session)
            session["message_count"] = int(session.get("message_count") or 0) + 1
            if crisis and not session.get("crisis_detected"):
                session["crisis_detected"] = crisis["crisis_type"]
            session["updated_at"] = now
        else:
            session = {
                "session_id": self._new_id("ses"),
                "tenant_id": host["tenant_id"],
                "host_provider_id": host["provider_id"],
                "initial_query": payload.get("query"),
                "message_count": 1,
                "zip_code_searched": payload.get("zip_code"),
                "user_location": origin,
                "search_radius_miles": radius,
                "crisis_detected": crisis["crisis_type"] if crisis else None,
                "services_clicked": [],
                "ticket_id": None,
                "created_at": now,
                "updated_at": now,
            }
        self._persist("search_sessions", session, key="session_id")
        return session["session_id"]

    def widget_search(self, *, slug: str, payload: dict[str, Any]) -> dict[str, Any]:
        host = self.get_host_by_slug(slug=slug)
        tenant_id = host["tenant_id"]
        query = str(payload.get("query") or "").strip()
        if not query:
            raise invalid("query is required")
        settings = normalize_host_settings(host.get("host_settings"))
        origin = self._resolve_origin(payload)

        crisis = detect_crisis(
            query,
            self.crisis_keywords_repository.list(tenant_id=tenant_id),
            self._host_overrides(host["provider_id"]),
        )
        categories = {
            k: v for k, v in self.need_categories.items() if v.get("tenant_id") == tenant_id
        }
        matched = match_needs(query, self.list_needs(tenant_id=tenant_id), categories_by_id=categories)

        providers: list[dict[str, Any]] = []
        radius: int | None = None
        if matched:
            matched_ids = {n["need_id"] for n in matched}
            candidates = [
                p
                for p in self.providers_repository.list(tenant_id=tenant_id)
                if p.get("status") == "active" and matched_ids.intersection(self._need_ids_for(p["provider_id"]))
            ]
            locations = self._locations_by_provider(tenant_id)
            if origin is not None and candidates:
                ids, radius = select_ring(origin, candidates, locations, rings=settings["search_radius_miles"])
                if ids is not None:
                    keep = set(ids)
                    candidates = [c for c in candidates if c["provider_id"] in keep]
            providers = [_public_provider(p) for p in rank_by_distance(candidates, locations, origin)]
            message = compose_message(query, matched, providers, has_location=origin is not None, radius_miles=radius)
        else:
            message = NO_NEEDS_MESSAGE

        session_id = self._track_search_session(
            host=host, payload=payload, origin=origin, radius=radius, crisis=crisis
        )
        self._bump_host_usage(host, "search_count")
        return {
            "query": query,
            "needs": [
                {"need_id": n["need_id"], "name": n.get("name"), "category_id": n.get("category_id"), "score": n["score"]}
                for n in matched
            ],
            "providers": providers,
            "message": message,
            "search_radius_miles": radius,
            "session_id": session_id,
            "crisis": crisis,
        }

    def create_public_ticket(self, *, host: dict[str, Any], payload: dict[str, Any]) -> dict[str, Any]:
        tenant_id = host["tenant_id"]
        provider_id = str(payload.get("provider_id") or "").strip()
        if not provider_id:
            raise invalid("provider_id is required")
        if not payload.get("client_phone") and not payload.get("client_email"):
            raise invalid("client_phone or client_email is required")
        provider = self.providers_repository.get(tenant_id=tenant_id, provider_id=provider_id)
        if provider is None or provider.get("status") != "active":
            raise not_found("PROVIDER_NOT_FOUND", "provider not found")
        fields = self.list_custom_fields(tenant_id=tenant_id, host_id=host["provider_id"])
        custom_data = validate_intake(fields, payload.get("custom_data"))
        ticket = self.create_ticket(
            tenant_id=tenant_id,
            actor_id=None,
            payload={
                "provider_id": provider_id,
                "need_id": payload.get("need_id"),
                "client_name": payload.get("client_name"),
                "client_email": payload.get("client_email"),
                "client_phone": payload.get("client_phone"),
                "description_of_need": payload.get("description_of_need"),
                "custom_data": custom_data,
                "source": "widget",
                "host_provider_id": host["provider_id"],
            },
        )
        session = self.search_sessions.get(payload.get("session_id") or "")
        if session is not None and session.get("host_provider_id") == host["provider_id"]:
            self._persist("search_sessions", {**session, "ticket_id": ticket["ticket_id"]}, key="session_id")
        self._bump_host_usage(host, "ticket_count")
        return {
            "ticket_id": ticket["ticket_id"],
            "ticket_number": ticket["ticket_number"],
            "status": ticket["status"],
            "provider_id": provider_id,
            "provider_name": provider.get("name"),
        }

    def host_directory(self, *, slug: str, **filters: Any) -> dict[str, Any]:
        host = self.get_host_by_slug(slug=slug)
        filters.pop("status", None)
        page = self.list_providers(tenant_id=host["tenant_id"], status="active", **filters)
        page["items"] = [_public_provider(p) for p in page["items"]]
        return page

    # ------------------------------------------------------------------
    # Surveys
    # ------------------------------------------------------------------

    def list_surveys(
        self,
        *,
        tenant_id: str,
        ticket_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows = [
            dict(x)
            for x in self.surveys.values()
            if x.get("tenant_id") == tenant_id and (not ticket_id or x.get("ticket_id") == ticket_id)
        ]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return self._paginate(rows, limit=limit, offset=offset)

    def create_survey(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        ticket_id = str(payload.get("ticket_id") or "")
        if not ticket_id:
            raise invalid("ticket_id is required")
        ticket = self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=ticket_id)
        survey = {
            "survey_id": self._new_id("svy"),
            "tenant_id": tenant_id,
            "ticket_id": ticket_id,
            "ticket_number": ticket.get("ticket_number"),
            "provider_id": ticket.get("provider_id"),
            "client_email": payload.get("client_email") or ticket.get("client_email"),
            "token": secrets.token_urlsafe(24),
            "rating": None,
            "feedback": None,
            "completed_at": None,
            "created_by": actor_id,
            "created_at": self._utcnow_iso(),
        }
        return self._persist("surveys", survey, key="survey_id")

    def _survey_by_token(self, token: str) -> dict[str, Any]:
        for survey in self.surveys.values():
            if token and secrets.compare_digest(str(survey.get("token") or ""), token):
                return dict(survey)
        raise not_found("SURVEY_NOT_FOUND", "survey not found")

    def get_public_survey(self, *, token: str) -> dict[str, Any]:
        survey = self._survey_by_token(token)
        provider = self.providers_repository.get_any(provider_id=survey.get("provider_id") or "")
        return {
            "survey_id": survey["survey_id"],
            "token": survey["token"],
            "ticket_number": survey.get("ticket_number"),
            "provider_name": provider.get("name") if provider else None,
            "rating": survey.get("rating"),
            "feedback": survey.get("feedback"),
            "completed_at": survey.get("completed_at"),
            "created_at": survey.get("created_at"),
        }

    def submit_survey(self, *, token: str, rating: Any, feedback: str | None = None) -> dict[str, Any]:
        value = _parse_rating(rating)
        if value is None or not 1 <= value <= 5:
            raise invalid("rating must be an integer between 1 and 5", code="SURVEY_RATING_INVALID")
        survey = self._survey_by_token(token)
        if survey.get("completed_at"):
            raise invalid("survey already completed", code="SURVEY_ALREADY_COMPLETED")
        survey["rating"] = value
        survey["feedback"] = (feedback or "").strip() or None
        survey["completed_at"] = self._utcnow_iso()
        self._persist("surveys", survey, key="survey_id")
        return self.get_public_survey(token=token)

    # ------------------------------------------------------------------
    # Call logs
    # ------------------------------------------------------------------

    def list_call_logs(
        self,
        *,
        tenant_id: str,
        ticket_id: str | None = None,
        provider_id: str | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> dict[str, Any]:
        rows = [
            dict(x)
            for x in self.call_logs.values()
            if x.get("tenant_id") == tenant_id
            and (not ticket_id or x.get("ticket_id") == ticket_id)
            and (not provider_id or x.get("provider_id") == provider_id)
        ]
        rows.sort(key=lambda x: str(x.get("created_at") or ""), reverse=True)
        return self._paginate(rows, limit=limit, offset=offset)

    def create_call_log(self, *, tenant_id: str, actor_id: str | None, payload: dict[str, Any]) -> dict[str, Any]:
        if payload.get("ticket_id"):
            self.get_ticket_for_tenant(tenant_id=tenant_id, ticket_id=payload["ticket_id"])
        if payload.get("provider_id"):
            self.get_provider_for_tenant(tenant_id=tenant_id, provider_id=payload["provider_id"])
        now = self._utcnow_iso()
        call_log = {
            "call_log_id": self._new_id("cl"),
            "tenant_id": tenant_id,
            "ticket_id": payload.get("ticket_id") or None,
            "provider_id": payload.get("provider_id") or None,
            "caller_name": payload.get("caller_name") or None,
            "call_type": payload.get("call_type") or "outbound",
            "duration_minutes": payload.get("duration_minutes") or None,
            "notes": payload.get("notes") or None,
            "created_by": actor_id,
            "created_at": now,
            "updated_at": now,
        }
        return self._persist("call_logs", call_log, key="call_log_id")

    def get_call_log(self, *, tenant_id: str, call_log_id: str) -> dict[str, Any]:
        return self._require("call_logs", call_log_id, tenant_id=tenant_id, code="CALL_LOG_NOT_FOUND", label="call log")

    def update_call_log(self, *, tenant_id: str, call_log_id: str, payload: dict[str, Any]) -> dict[str, Any]:
        call_log = self.get_call_log(tenant_id=tenant_id, call_log_id=call_log_id)
        changes = {
            k: v
            for k, v in payload.items()
            if k in {"caller_name", "call_type", "duration_minutes", "notes"} and v is not None
        }
        if not changes:
            raise invalid("no updatable fields provided")
        call_log.update(changes)
        call_log["updated_at"] = self._utcnow_iso()
        return self._persist("call_logs", call_log, key="call_log_id")

    def delete_call_log(self, *, tenant_id: str, call_log_id: str) -> dict[str, Any]:
        self.get_call_log(tenant_id=tenant_id, call_log_id=call_log_id)
        self._remove("call_logs", call_log_id)
        return {"call_log_id": call_log_id, "deleted": True}
