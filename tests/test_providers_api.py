from conftest import MEMBER, SITE_ADMIN, TENANT_ADMIN


def _add_contact(client, provider_id, **fields):
    body = {"email": "staff@example.org", "full_name": "Staff Member", **fields}
    resp = client.post(f"/api/v1/providers/{provider_id}/contacts", json=body, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_create_provider_assigns_unique_slug(client, make_provider):
    first = make_provider("Food Bank")
    second = make_provider("Food Bank")
    assert first["slug"] == "food-bank"
    assert second["slug"] == "food-bank-2"
    assert first["status"] == "active"
    assert first["sla_hours"] == 48


def test_member_cannot_create_provider(client):
    resp = client.post("/api/v1/providers", json={"name": "X", "sector": "nonprofit"}, headers=dict(MEMBER))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "AUTH_FORBIDDEN"


def test_create_provider_rejects_unknown_sector(client):
    resp = client.post("/api/v1/providers", json={"name": "X", "sector": "pirates"}, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "REQ_VALIDATION_FAILED"


def test_list_providers_filters(client, make_provider):
    make_provider("Downtown Pantry", description="hot meals")
    make_provider("City Hall", sector="government")
    make_provider("Closed Shelter", status="inactive")

    resp = client.get("/api/v1/providers", headers=dict(MEMBER))
    assert resp.status_code == 200
    names = [x["name"] for x in resp.json()["data"]["items"]]
    assert names == ["City Hall", "Downtown Pantry"]

    resp = client.get("/api/v1/providers", params={"q": "meals"}, headers=dict(MEMBER))
    assert [x["name"] for x in resp.json()["data"]["items"]] == ["Downtown Pantry"]

    resp = client.get("/api/v1/providers", params={"sector": "government"}, headers=dict(MEMBER))
    assert [x["name"] for x in resp.json()["data"]["items"]] == ["City Hall"]

    resp = client.get("/api/v1/providers", params={"status": "all"}, headers=dict(MEMBER))
    assert resp.json()["data"]["total"] == 3


def test_radius_filter_uses_location_coordinates(client, make_provider):
    near = make_provider("Near Pantry")
    far = make_provider("Far Pantry")
    for provider, lat in ((near, 36.17), (far, 38.5)):
        resp = client.post(
            f"/api/v1/providers/{provider['provider_id']}/locations",
            json={"address_line1": "1 Main St", "latitude": lat, "longitude": -86.78},
            headers=dict(TENANT_ADMIN),
        )
        assert resp.status_code == 201
    resp = client.get(
        "/api/v1/providers",
        params={"lat": 36.1627, "lng": -86.7816, "radius_miles": 25},
        headers=dict(MEMBER),
    )
    items = resp.json()["data"]["items"]
    assert [x["name"] for x in items] == ["Near Pantry"]
    assert items[0]["distance_miles"] < 1
    assert items[0]["location_count"] == 1


def test_first_location_is_primary_and_primary_moves(client, make_provider):
    provider = make_provider()
    base = f"/api/v1/providers/{provider['provider_id']}/locations"
    first = client.post(base, json={"name": "Main"}, headers=dict(TENANT_ADMIN)).json()["data"]
    assert first["is_primary"] is True
    second = client.post(base, json={"name": "Annex", "is_primary": True}, headers=dict(TENANT_ADMIN)).json()["data"]
    assert second["is_primary"] is True

    items = client.get(base, headers=dict(MEMBER)).json()["data"]["items"]
    assert [x["name"] for x in items] == ["Annex", "Main"]
    assert [x["is_primary"] for x in items] == [True, False]

    resp = client.delete(f"{base}/{first['location_id']}", headers=dict(TENANT_ADMIN))
    assert resp.json()["data"] == {"location_id": first["location_id"], "deleted": True}


def test_manual_coordinates_mark_location_geocoded(client, make_provider):
    provider = make_provider()
    loc = client.post(
        f"/api/v1/providers/{provider['provider_id']}/locations",
        json={"address_line1": "1 Main St", "latitude": 36.1, "longitude": -86.7},
        headers=dict(TENANT_ADMIN),
    ).json()["data"]
    assert loc["geocode_source"] == "manual"
    assert loc["geocoded_at"]

    resp = client.patch(
        f"/api/v1/providers/{provider['provider_id']}/locations/{loc['location_id']}",
        json={"address_line1": "2 Elm St"},
        headers=dict(TENANT_ADMIN),
    )
    updated = resp.json()["data"]
    assert updated["latitude"] is None
    assert updated["geocoded_at"] is None


def test_provider_admin_contact_can_update_but_employee_cannot(client, make_provider):
    provider = make_provider()
    _add_contact(client, provider["provider_id"], user_id="boss_1", contact_type="provider_admin")
    _add_contact(client, provider["provider_id"], user_id="member_1", contact_type="provider_employee")

    resp = client.patch(
        f"/api/v1/providers/{provider['provider_id']}",
        json={"phone": "615-555-0100"},
        headers={"x-user-role": "user", "x-user-id": "boss_1"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["phone"] == "615-555-0100"

    resp = client.patch(
        f"/api/v1/providers/{provider['provider_id']}",
        json={"phone": "615-555-0199"},
        headers=dict(MEMBER),
    )
    assert resp.status_code == 403


def test_duplicate_contact_user_is_rejected(client, make_provider):
    provider = make_provider()
    _add_contact(client, provider["provider_id"], user_id="u1")
    resp = client.post(
        f"/api/v1/providers/{provider['provider_id']}/contacts",
        json={"user_id": "u1"},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "CONTACT_DUPLICATE"


def test_single_default_handler_per_provider(client, make_provider):
    provider = make_provider()
    pid = provider["provider_id"]
    a = _add_contact(client, pid, user_id="a", is_default_referral_handler=True)
    b = _add_contact(client, pid, user_id="b")
    resp = client.post(f"/api/v1/providers/{pid}/contacts/{b['contact_id']}/set-default-handler", headers=dict(TENANT_ADMIN))
    assert resp.status_code == 200
    contacts = client.get(f"/api/v1/providers/{pid}/contacts", headers=dict(TENANT_ADMIN)).json()["data"]["items"]
    flags = {x["contact_id"]: x["is_default_referral_handler"] for x in contacts}
    assert flags == {a["contact_id"]: False, b["contact_id"]: True}

    client.delete(f"/api/v1/providers/{pid}/contacts/{b['contact_id']}", headers=dict(TENANT_ADMIN))
    active = client.get(f"/api/v1/providers/{pid}/contacts", headers=dict(TENANT_ADMIN)).json()["data"]["items"]
    assert [x["contact_id"] for x in active] == [a["contact_id"]]
    everyone = client.get(
        f"/api/v1/providers/{pid}/contacts",
        params={"include_archived": True},
        headers=dict(TENANT_ADMIN),
    ).json()["data"]["items"]
    assert len(everyone) == 2


def test_private_notes_visible_to_author_and_site_admin(client, make_provider):
    provider = make_provider()
    pid = provider["provider_id"]
    _add_contact(client, pid, user_id="member_1")
    resp = client.post(
        f"/api/v1/providers/{pid}/notes",
        json={"content": "call back Tuesday", "is_private": True},
        headers=dict(MEMBER),
    )
    assert resp.status_code == 201
    note = resp.json()["data"]
    client.post(f"/api/v1/providers/{pid}/notes", json={"content": "pinned", "is_pinned": True}, headers=dict(MEMBER))

    mine = client.get(f"/api/v1/providers/{pid}/notes", headers=dict(MEMBER)).json()["data"]["items"]
    assert [x["content"] for x in mine] == ["pinned", "call back Tuesday"]

    others = client.get(f"/api/v1/providers/{pid}/notes", headers=dict(TENANT_ADMIN)).json()["data"]["items"]
    assert [x["content"] for x in others] == ["pinned"]

    admin = client.get(f"/api/v1/providers/{pid}/notes", headers=dict(SITE_ADMIN)).json()["data"]["items"]
    assert len(admin) == 2

    resp = client.patch(
        f"/api/v1/providers/{pid}/notes/{note['note_id']}",
        json={"content": "edited"},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 404


def test_note_attachment_upload_validates_content(client, make_provider):
    provider = make_provider()
    pid = provider["provider_id"]
    note = client.post(f"/api/v1/providers/{pid}/notes", json={"content": "flyer"}, headers=dict(TENANT_ADMIN)).json()[
        "data"
    ]
    url = f"/api/v1/providers/{pid}/notes/{note['note_id']}/attachments"
    resp = client.post(
        url,
        files={"file": ("flyer.pdf", b"%PDF-1.4\n...", "application/pdf")},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 201, resp.text
    assert resp.json()["data"]["mime_type"] == "application/pdf"

    resp = client.post(
        url,
        files={"file": ("flyer.pdf", b"\x89PNG\r\n\x1a\n0000", "application/pdf")},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "FILE_TYPE_MISMATCH"


def test_parent_child_hierarchy_is_one_level(client, make_provider):
    parent = make_provider("Parent Org")
    child = make_provider("Child Org")
    grandchild = make_provider("Grandchild Org")

    resp = client.post(
        f"/api/v1/providers/{child['provider_id']}/set-parent",
        json={"parent_provider_id": parent["provider_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["parent_linked_by"] == "site_admin_1"

    resp = client.post(
        f"/api/v1/providers/{grandchild['provider_id']}/set-parent",
        json={"parent_provider_id": child["provider_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "HIERARCHY_DEPTH_EXCEEDED"

    resp = client.post(
        f"/api/v1/providers/{parent['provider_id']}/set-parent",
        json={"parent_provider_id": grandchild["provider_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert resp.json()["error"]["code"] == "HIERARCHY_HAS_CHILDREN"

    children = client.get(f"/api/v1/providers/{parent['provider_id']}/children", headers=dict(MEMBER))
    assert [x["name"] for x in children.json()["data"]["items"]] == ["Child Org"]

    stats = client.get(f"/api/v1/providers/{parent['provider_id']}/parent-stats", headers=dict(TENANT_ADMIN))
    assert stats.json()["data"]["children_count"] == 1

    detail = client.get(f"/api/v1/providers/{child['provider_id']}", headers=dict(MEMBER)).json()["data"]
    assert detail["parent"]["name"] == "Parent Org"


def test_set_parent_requires_site_admin(client, make_provider):
    a = make_provider("A")
    b = make_provider("B")
    resp = client.post(
        f"/api/v1/providers/{a['provider_id']}/set-parent",
        json={"parent_provider_id": b["provider_id"]},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 403


def test_delete_provider_unlinks_children(client, make_provider):
    parent = make_provider("Parent Org")
    child = make_provider("Child Org")
    client.post(
        f"/api/v1/providers/{child['provider_id']}/set-parent",
        json={"parent_provider_id": parent["provider_id"]},
        headers=dict(SITE_ADMIN),
    )
    assert client.delete(f"/api/v1/providers/{parent['provider_id']}", headers=dict(TENANT_ADMIN)).status_code == 403
    resp = client.delete(f"/api/v1/providers/{parent['provider_id']}", headers=dict(SITE_ADMIN))
    assert resp.json()["data"] == {"provider_id": parent["provider_id"], "deleted": True}
    detail = client.get(f"/api/v1/providers/{child['provider_id']}", headers=dict(MEMBER)).json()["data"]
    assert detail["parent_provider_id"] is None
    missing = client.get(f"/api/v1/providers/{parent['provider_id']}", headers=dict(MEMBER))
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "PROVIDER_NOT_FOUND"


def test_provider_events_need_approval(client, make_provider):
    provider = make_provider()
    pid = provider["provider_id"]
    resp = client.post(
        f"/api/v1/providers/{pid}/events",
        json={"title": "Food drive", "event_date": "2030-05-01"},
        headers=dict(TENANT_ADMIN),
    )
    assert resp.status_code == 201
    event = resp.json()["data"]
    assert event["status"] == "pending"

    pending = client.get("/api/v1/admin/events", params={"status": "pending"}, headers=dict(SITE_ADMIN))
    assert [x["event_id"] for x in pending.json()["data"]["items"]] == [event["event_id"]]

    resp = client.post(f"/api/v1/admin/events/{event['event_id']}/approve", headers=dict(SITE_ADMIN))
    assert resp.json()["data"]["status"] == "approved"
    assert resp.json()["data"]["approved_by"] == "site_admin_1"


def test_provider_needs_replace_set(client, make_provider):
    provider = make_provider()
    category = client.post("/api/v1/need-categories", json={"name": "Food"}, headers=dict(SITE_ADMIN)).json()["data"]
    need = client.post(
        "/api/v1/needs",
        json={"category_id": category["category_id"], "name": "Food Pantry"},
        headers=dict(SITE_ADMIN),
    ).json()["data"]
    url = f"/api/v1/providers/{provider['provider_id']}/needs"
    resp = client.put(url, json={"need_ids": [need["need_id"], need["need_id"]]}, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 200
    assert [x["need_id"] for x in resp.json()["data"]["items"]] == [need["need_id"]]

    resp = client.put(url, json={"need_ids": ["need_missing"]}, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 400
    assert resp.json()["error"]["details"] == {"unknown": ["need_missing"]}


def test_application_approval_creates_provider(client):
    resp = client.post(
        "/api/v1/public/provider-applications",
        json={
            "org_name": "Hope Shelter",
            "contact_email": "director@hope.org",
            "sector": "faith_based",
            "address_line1": "10 Church St",
            "city": "Nashville",
        },
    )
    assert resp.status_code == 201
    application = resp.json()["data"]
    assert application["status"] == "pending"

    resp = client.patch(
        f"/api/v1/admin/provider-applications/{application['application_id']}",
        json={"action": "approve", "notes": "verified"},
        headers=dict(SITE_ADMIN),
    )
    assert resp.status_code == 200
    reviewed = resp.json()["data"]
    assert reviewed["status"] == "approved"
    provider_id = reviewed["created_provider_id"]

    detail = client.get(f"/api/v1/providers/{provider_id}", headers=dict(MEMBER)).json()["data"]
    assert detail["name"] == "Hope Shelter"
    assert detail["sector"] == "faith_based"
    assert detail["locations"][0]["city"] == "Nashville"

    again = client.patch(
        f"/api/v1/admin/provider-applications/{application['application_id']}",
        json={"action": "reject"},
        headers=dict(SITE_ADMIN),
    )
    assert again.json()["error"]["code"] == "APPLICATION_ALREADY_REVIEWED"


def test_providers_are_tenant_scoped(client, make_provider):
    provider = make_provider()
    resp = client.get(
        f"/api/v1/providers/{provider['provider_id']}",
        headers={**MEMBER, "x-tenant-id": "tenant_other"},
    )
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "TENANT_SCOPE_VIOLATION"
    listing = client.get("/api/v1/providers", headers={**MEMBER, "x-tenant-id": "tenant_other"})
    assert listing.json()["data"]["total"] == 0
