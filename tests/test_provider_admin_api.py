from conftest import MEMBER, SITE_ADMIN, TENANT_ADMIN
from linksy.store import store
from linksy.store_admin import format_activity, levenshtein, name_similarity, names_match


def _add_contact(client, provider_id, user_id, **fields):
    resp = client.post(
        f"/api/v1/providers/{provider_id}/contacts",
        json={"user_id": user_id, "email": f"{user_id}@example.org", **fields},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _add_note(client, provider_id, author_id, content="called them"):
    resp = client.post(
        f"/api/v1/providers/{provider_id}/notes",
        json={"content": content},
        headers={"x-user-role": "tenant_admin", "x-user-id": author_id},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _create_ticket(client, provider_id, email="jane@example.org"):
    resp = client.post(
        "/api/v1/tickets",
        json={"provider_id": provider_id, "client_name": "Jane Doe", "client_email": email},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_name_similarity_helpers():
    assert levenshtein("kitten", "sitting") == 3
    assert levenshtein("", "abc") == 3
    assert name_similarity("food bank", "food bank") == 1.0
    assert names_match("food bank", "downtown food bank", threshold=0.99)
    assert names_match("hope center", "hope centre", threshold=0.7)
    assert not names_match("hope center", "legal aid", threshold=0.7)
    assert not names_match("", "legal aid", threshold=0.0)


def test_duplicate_providers_grouped_with_counts(client, make_provider):
    first = make_provider("Hope Center")
    second = make_provider("Hope Centre")
    make_provider("Legal Aid Society")
    _add_contact(client, second["provider_id"], "u_staff")

    resp = client.get("/api/v1/admin/providers/duplicates", headers=dict(SITE_ADMIN))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total"] == 1
    group = data["duplicates"][0]["providers"]
    assert [x["provider_id"] for x in group] == [first["provider_id"], second["provider_id"]]
    assert group[0]["similarity"] == 1.0
    assert group[1]["counts"]["contacts"] == 1

    strict = client.get("/api/v1/admin/providers/duplicates?threshold=0.95", headers=dict(SITE_ADMIN))
    assert strict.json()["data"]["total"] == 0


def test_duplicate_and_merge_routes_need_site_admin(client):
    resp = client.get("/api/v1/admin/providers/duplicates", headers=dict(TENANT_ADMIN))
    assert resp.status_code == 403
    resp = client.post("/api/v1/admin/providers/merge", json={}, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 403


def test_merge_rejects_missing_or_identical_ids(client, make_provider):
    provider = make_provider()
    resp = client.post(
        "/api/v1/admin/providers/merge",
        json={"primary_provider_id": provider["provider_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 400
    resp = client.post(
        "/api/v1/admin/providers/merge",
        json={"primary_provider_id": provider["provider_id"], "merge_provider_id": provider["provider_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "cannot merge a provider with itself"


def test_merge_moves_children_and_removes_duplicate(client, make_provider):
    primary = make_provider("Hope Center", phone="555-0100")
    merged = make_provider("Hope Centre", phone="555-0199", website="https://hope.example.org")
    pid, mid = primary["provider_id"], merged["provider_id"]
    _add_contact(client, pid, "u_shared")
    _add_contact(client, mid, "u_shared")
    _add_contact(client, mid, "u_only_merged")
    _add_note(client, mid, "tenant_admin_1")
    client.post(f"/api/v1/providers/{mid}/locations", json={"address_line1": "2 Oak St"}, headers=dict(TENANT_ADMIN))
    ticket = _create_ticket(client, mid)

    resp = client.post(
        "/api/v1/admin/providers/merge",
        json={
            "primary_provider_id": pid,
            "merge_provider_id": mid,
            "field_choices": {"website": mid, "phone": pid, "tenant_id": mid},
        },
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["fields_taken"] == ["website"]
    assert data["provider"]["website"] == "https://hope.example.org"
    assert data["provider"]["phone"] == "555-0100"
    assert data["moved"]["contacts"] == 1
    assert data["moved"]["contacts_dropped"] == 1
    assert data["moved"]["tickets"] == 1

    assert client.get(f"/api/v1/providers/{mid}", headers=dict(TENANT_ADMIN)).status_code == 404
    contacts = client.get(f"/api/v1/providers/{pid}/contacts", headers=dict(TENANT_ADMIN)).json()["data"]["items"]
    assert sorted(x["user_id"] for x in contacts) == ["u_only_merged", "u_shared"]
    assert store.tickets[ticket["ticket_id"]]["provider_id"] == pid
    assert all(x["provider_id"] == pid for x in store.locations.values())
    assert [x["action"] for x in store.audit_logs][-1] == "provider.merged"


def test_bulk_status_update_skips_unknown_ids(client, make_provider):
    a = make_provider("A")
    b = make_provider("B")
    resp = client.patch(
        "/api/v1/admin/providers/bulk",
        json={"ids": [a["provider_id"], b["provider_id"], "prv_missing"], "status": "inactive"},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["updated"] == 2
    statuses = {p["provider_id"]: p["status"] for p in store.providers.values()}
    assert statuses == {a["provider_id"]: "inactive", b["provider_id"]: "inactive"}

    empty = client.patch("/api/v1/admin/providers/bulk", json={"ids": [], "status": "active"}, headers=dict(TENANT_ADMIN))
    assert empty.status_code == 400
    member = client.patch(
        "/api/v1/admin/providers/bulk",
        json={"ids": [a["provider_id"]], "status": "active"},
        headers=dict(MEMBER),
    )
    assert member.status_code == 403


def test_purge_removes_tickets_and_interactions(client, make_provider):
    host = make_provider("Helpline", is_host=True)
    doomed = make_provider("Closed Shelter")
    keep = make_provider("Open Shelter")
    did = doomed["provider_id"]
    ticket = _create_ticket(client, did)
    kept_ticket = _create_ticket(client, keep["provider_id"], email="other@example.org")
    client.post(
        f"/api/v1/public/hosts/{host['slug']}/interactions",
        json={"provider_id": did, "interaction_type": "phone_click"},
    )

    resp = client.delete(f"/api/v1/admin/providers/{did}/purge", headers=dict(SITE_ADMIN))
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["purged"] is True
    assert data["removed"]["tickets"] == 1
    assert data["removed"]["interactions"] == 1
    assert ticket["ticket_id"] not in store.tickets
    assert kept_ticket["ticket_id"] in store.tickets
    assert not any(x.get("ticket_id") == ticket["ticket_id"] for x in store.ticket_events.values())
    assert client.get(f"/api/v1/providers/{did}", headers=dict(TENANT_ADMIN)).status_code == 404

    again = client.delete(f"/api/v1/admin/providers/{did}/purge", headers=dict(SITE_ADMIN))
    assert again.status_code == 404
    denied = client.delete(f"/api/v1/admin/providers/{keep['provider_id']}/purge", headers=dict(TENANT_ADMIN))
    assert denied.status_code == 403


def test_duplicate_contacts_grouped_by_email(client, make_provider):
    pid = make_provider()["provider_id"]
    _add_contact(client, pid, "u_a", email="Pat@Example.org")
    _add_contact(client, pid, "u_b", email="pat@example.org ")
    _add_contact(client, pid, "u_c", email="pat@example.org", status="archived")
    _add_contact(client, pid, "u_d")

    resp = client.get(f"/api/v1/admin/contacts/duplicates?provider_id={pid}", headers=dict(SITE_ADMIN))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total"] == 1
    assert data["duplicates"][0]["email"] == "pat@example.org"
    assert sorted(x["user_id"] for x in data["duplicates"][0]["contacts"]) == ["u_a", "u_b"]

    missing = client.get("/api/v1/admin/contacts/duplicates", headers=dict(SITE_ADMIN))
    assert missing.status_code == 400


def test_merge_contacts_transfers_handler_and_reassigns_work(client, make_provider):
    pid = make_provider()["provider_id"]
    keep = _add_contact(client, pid, "u_new", full_name="Pat Lee")
    old = _add_contact(client, pid, "u_old", is_default_referral_handler=True, phone="555-0123")
    ticket = _create_ticket(client, pid)
    assert ticket["assigned_to"] == "u_old"
    note = _add_note(client, pid, "u_old")

    resp = client.post(
        "/api/v1/admin/contacts/merge",
        json={"provider_id": pid, "primary_contact_id": keep["contact_id"], "merge_contact_id": old["contact_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 200, resp.text
    data = resp.json()["data"]
    assert data["contact"]["is_default_referral_handler"] is True
    assert data["contact"]["phone"] == "555-0123"
    assert data["reassigned"] == {"tickets": 1, "notes": 1}
    assert old["contact_id"] not in store.contacts
    assert store.tickets[ticket["ticket_id"]]["assigned_to"] == "u_new"
    assert store.provider_notes[note["note_id"]]["author_id"] == "u_new"


def test_merge_contacts_requires_shared_provider(client, make_provider):
    a = make_provider("A")["provider_id"]
    b = make_provider("B")["provider_id"]
    first = _add_contact(client, a, "u_1")
    second = _add_contact(client, b, "u_2")
    resp = client.post(
        "/api/v1/admin/contacts/merge",
        json={"provider_id": a, "primary_contact_id": first["contact_id"], "merge_contact_id": second["contact_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "CONTACT_NOT_FOUND"


def test_interactions_feed_provider_analytics(client, make_provider):
    host = make_provider("Helpline", is_host=True)
    provider = make_provider("Pantry")
    pid = provider["provider_id"]
    url = f"/api/v1/public/hosts/{host['slug']}/interactions"
    for kind in ("profile_view", "phone_click", "phone_click"):
        resp = client.post(url, json={"provider_id": pid, "interaction_type": kind})
        assert resp.status_code == 201
    old = next(x for x in store.interactions.values() if x["interaction_type"] == "profile_view")
    old["created_at"] = "2020-01-01T00:00:00+00:00"

    bad = client.post(url, json={"provider_id": pid, "interaction_type": "hover"})
    assert bad.status_code == 400
    missing = client.post(url, json={"provider_id": "prv_missing", "interaction_type": "phone_click"})
    assert missing.status_code == 404

    resp = client.get(f"/api/v1/providers/{pid}/analytics", headers=dict(TENANT_ADMIN))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["all_time"] == {
        "total": 3,
        "profile_view": 1,
        "phone_click": 2,
        "website_click": 0,
        "directions_click": 0,
    }
    assert data["last_30_days"]["total"] == 2
    assert data["last_30_days"]["profile_view"] == 0

    outsider = client.get(f"/api/v1/providers/{pid}/analytics", headers=dict(MEMBER))
    assert outsider.status_code == 403


def test_search_analytics_funnel_and_zip_codes(client, make_provider):
    host = make_provider("Helpline", is_host=True)
    pantry = make_provider("Pantry")
    search_url = f"/api/v1/public/hosts/{host['slug']}/search"
    first = client.post(search_url, json={"query": "food", "zip_code": "37203"}).json()["data"]["session_id"]
    client.post(search_url, json={"query": "rent help", "zip_code": "37203"})
    client.post(search_url, json={"query": "shelter"})
    client.post(
        f"/api/v1/public/hosts/{host['slug']}/interactions",
        json={"provider_id": pantry["provider_id"], "interaction_type": "website_click", "session_id": first},
    )
    session = store.search_sessions[first]
    assert session["services_clicked"] == [pantry["provider_id"]]
    store.search_sessions[first] = {**session, "ticket_id": "tkt_1"}

    resp = client.get("/api/v1/stats/search-analytics", headers=dict(TENANT_ADMIN))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["total_sessions"] == 3
    assert data["sessions_last_30_days"] == 3
    assert data["total_interactions"] == 1
    assert len(data["monthly_search_trend"]) == 12
    assert data["monthly_search_trend"][-1]["count"] == 3
    assert data["interactions_by_type"] == [{"type": "website_click", "count": 1}]
    assert data["top_providers_by_interaction"][0]["name"] == "Pantry"
    assert data["funnel"] == {
        "total_sessions": 3,
        "engaged_sessions": 1,
        "converted_sessions": 1,
        "engagement_rate": 33.3,
        "conversion_rate": 33.3,
        "engaged_conversion_rate": 100.0,
    }
    assert data["top_zip_codes"] == [{"zip_code": "37203", "count": 2}, {"zip_code": "Unknown", "count": 1}]

    assert client.get("/api/v1/stats/search-analytics", headers=dict(MEMBER)).status_code == 403


def test_activity_feed_scopes_and_descriptions(client, make_provider):
    make_provider("Pantry")
    make_provider("Shelter", headers={"x-user-role": "tenant_admin", "x-user-id": "admin_2"})
    client.patch(
        "/api/v1/admin/providers/bulk",
        json={"ids": list(store.providers), "status": "paused"},
        headers=dict(TENANT_ADMIN),
    )

    company = client.get("/api/v1/activity", headers=dict(TENANT_ADMIN)).json()["data"]
    assert company["total"] == 3
    assert company["items"][0]["action"] == "provider.bulk_updated"
    assert company["items"][0]["description"] == "tenant_admin_1 performed provider.bulk_updated on provider"
    assert company["items"][-1]["description"] == "tenant_admin_1 created provider"

    personal = client.get(
        "/api/v1/activity?scope=personal",
        headers={"x-user-role": "tenant_admin", "x-user-id": "admin_2"},
    ).json()["data"]
    assert personal["total"] == 1
    created = client.get("/api/v1/activity?action_type=provider.created&limit=1", headers=dict(TENANT_ADMIN))
    page = created.json()["data"]
    assert page["total"] == 2
    assert page["has_more"] is True
    assert page["next_offset"] == 1


def test_format_activity_uses_actor_name():
    entry = {"actor_id": "u_1", "action": "contact.merged", "resource_type": "contact"}
    assert format_activity(entry, actor_name="Pat Lee") == "Pat Lee merged contact"
    assert format_activity({"action": "ticket.closed_out", "resource_type": "ticket"}) == (
        "Someone performed ticket.closed_out on ticket"
    )
