import re

from conftest import MEMBER, SITE_ADMIN, TENANT_ADMIN


def _ticket(client, make_provider, **fields):
    provider = make_provider()
    body = {"provider_id": provider["provider_id"], "client_name": "Jane Doe", "client_email": "jane@example.org", **fields}
    resp = client.post("/api/v1/tickets", json=body, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def _survey(client, ticket_id):
    resp = client.post("/api/v1/surveys", json={"ticket_id": ticket_id}, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 201, resp.text
    return resp.json()["data"]


def test_survey_issued_for_ticket(client, make_provider):
    ticket = _ticket(client, make_provider)
    survey = _survey(client, ticket["ticket_id"])
    assert survey["ticket_number"] == ticket["ticket_number"]
    assert survey["client_email"] == "jane@example.org"
    assert survey["completed_at"] is None
    assert len(survey["token"]) >= 24

    resp = client.get("/api/v1/surveys", params={"ticket_id": ticket["ticket_id"]}, headers=dict(MEMBER))
    assert resp.json()["data"]["total"] == 1


def test_survey_for_unknown_ticket_is_not_found(client):
    resp = client.post("/api/v1/surveys", json={"ticket_id": "tkt_missing"}, headers=dict(TENANT_ADMIN))
    assert resp.status_code == 404


def test_public_survey_flow(client, make_provider):
    ticket = _ticket(client, make_provider)
    survey = _survey(client, ticket["ticket_id"])
    url = f"/api/v1/public/surveys/{survey['token']}"

    resp = client.get(url)
    assert resp.status_code == 200
    assert resp.json()["data"]["provider_name"] == "Food Bank"
    assert resp.json()["data"]["rating"] is None

    resp = client.patch(url, json={"rating": "4", "feedback": "  Very kind staff "})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["rating"] == 4
    assert data["feedback"] == "Very kind staff"
    assert data["completed_at"]

    resp = client.patch(url, json={"rating": 5})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "SURVEY_ALREADY_COMPLETED"


def test_survey_rating_must_be_one_to_five(client, make_provider):
    ticket = _ticket(client, make_provider)
    survey = _survey(client, ticket["ticket_id"])
    url = f"/api/v1/public/surveys/{survey['token']}"
    for rating in (0, 6, "great", True, None, 3.5):
        resp = client.patch(url, json={"rating": rating})
        assert resp.status_code == 400, rating
        assert resp.json()["error"]["code"] == "SURVEY_RATING_INVALID"


def test_unknown_survey_token(client):
    resp = client.get("/api/v1/public/surveys/not-a-token")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "SURVEY_NOT_FOUND"


def test_call_log_lifecycle(client, make_provider):
    ticket = _ticket(client, make_provider)
    resp = client.post(
        "/api/v1/call-logs",
        json={"ticket_id": ticket["ticket_id"], "caller_name": "Jane", "call_type": "inbound", "duration_minutes": 12},
        headers=dict(MEMBER),
    )
    assert resp.status_code == 201, resp.text
    call_log = resp.json()["data"]
    assert call_log["created_by"] == "member_1"
    url = f"/api/v1/call-logs/{call_log['call_log_id']}"

    resp = client.patch(url, json={"notes": "left voicemail"}, headers=dict(MEMBER))
    assert resp.json()["data"]["notes"] == "left voicemail"
    assert resp.json()["data"]["duration_minutes"] == 12

    resp = client.patch(url, json={}, headers=dict(MEMBER))
    assert resp.status_code == 400

    resp = client.get("/api/v1/call-logs", params={"ticket_id": ticket["ticket_id"]}, headers=dict(MEMBER))
    assert resp.json()["data"]["total"] == 1

    assert client.delete(url, headers=dict(MEMBER)).json()["data"]["deleted"] is True
    resp = client.get(url, headers=dict(MEMBER))
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "CALL_LOG_NOT_FOUND"


def test_call_log_rejects_unknown_references(client):
    resp = client.post("/api/v1/call-logs", json={"ticket_id": "tkt_missing"}, headers=dict(MEMBER))
    assert resp.status_code == 404
    resp = client.post("/api/v1/call-logs", json={"call_type": "carrier_pigeon"}, headers=dict(MEMBER))
    assert resp.status_code == 400


def test_support_ticket_numbering_and_visibility(client):
    resp = client.post(
        "/api/v1/support-tickets",
        json={"subject": "Cannot upload", "description": "The PDF upload spins forever", "category": "technical"},
        headers=dict(MEMBER),
    )
    assert resp.status_code == 201, resp.text
    ticket = resp.json()["data"]
    assert re.fullmatch(r"SUP-\d{8}-0001", ticket["ticket_number"])
    assert ticket["submitter_email"] == "member_1@example.org"
    assert ticket["status"] == "open"

    other = {"x-user-role": "user", "x-user-id": "member_2"}
    assert client.get("/api/v1/support-tickets", headers=other).json()["data"]["total"] == 0
    resp = client.get(f"/api/v1/support-tickets/{ticket['support_ticket_id']}", headers=other)
    assert resp.status_code == 403

    assert client.get("/api/v1/support-tickets", headers=dict(SITE_ADMIN)).json()["data"]["total"] == 1


def test_support_ticket_requires_subject_and_description(client):
    resp = client.post("/api/v1/support-tickets", json={"subject": "Help"}, headers=dict(MEMBER))
    assert resp.status_code == 400
    assert resp.json()["error"]["message"] == "subject and description are required"


def test_support_replies_notify_submitter(client):
    ticket = client.post(
        "/api/v1/support-tickets",
        json={"subject": "Billing", "description": "Wrong invoice"},
        headers=dict(MEMBER),
    ).json()["data"]
    base = f"/api/v1/support-tickets/{ticket['support_ticket_id']}"

    client.post(f"{base}/comments", json={"content": "Escalating to finance", "is_internal": True}, headers=dict(SITE_ADMIN))
    client.post(f"{base}/comments", json={"content": "We are looking into it"}, headers=dict(SITE_ADMIN))
    client.post(f"{base}/comments", json={"content": "Thanks", "is_internal": True}, headers=dict(MEMBER))

    detail = client.get(base, headers=dict(MEMBER)).json()["data"]
    assert [c["content"] for c in detail["comments"]] == ["We are looking into it", "Thanks"]
    assert detail["comments"][1]["is_internal"] is False

    detail = client.get(base, headers=dict(SITE_ADMIN)).json()["data"]
    assert len(detail["comments"]) == 3

    inbox = client.get("/api/v1/notifications", headers=dict(MEMBER)).json()["data"]
    assert inbox["total"] == 1
    assert inbox["items"][0]["type"] == "support_reply"
    assert inbox["items"][0]["title"] == f"New reply on {ticket['ticket_number']}"


def test_only_site_admin_updates_support_ticket(client):
    ticket = client.post(
        "/api/v1/support-tickets",
        json={"subject": "Bug", "description": "Broken"},
        headers=dict(MEMBER),
    ).json()["data"]
    url = f"/api/v1/support-tickets/{ticket['support_ticket_id']}"

    assert client.patch(url, json={"status": "resolved"}, headers=dict(MEMBER)).status_code == 403
    resp = client.patch(url, json={"status": "resolved", "assigned_to": "site_admin_1"}, headers=dict(SITE_ADMIN))
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["status"] == "resolved"
    assert data["resolved_at"]

    resp = client.get("/api/v1/support-tickets", params={"status": "open"}, headers=dict(SITE_ADMIN))
    assert resp.json()["data"]["total"] == 0
