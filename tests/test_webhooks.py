import json

import requests

from linksy import webhooks
from linksy.webhooks import (
    WebhookDispatcher,
    is_valid_webhook_url,
    sign_payload,
    signature_header,
    verify_signature,
)


class _FakeResponse:
    def __init__(self, status_code=200, text="ok"):
        self.status_code = status_code
        self.text = text


def test_signature_round_trip_and_tamper_detection():
    header = signature_header("s3cret", 1700000000, '{"a":1}')
    assert header.startswith("t=1700000000,v1=")
    assert verify_signature("s3cret", header, '{"a":1}') is True
    assert verify_signature("s3cret", header, '{"a":2}') is False
    assert verify_signature("other", header, '{"a":1}') is False
    assert verify_signature("s3cret", "garbage", '{"a":1}') is False
    assert len(sign_payload("s3cret", 1, "x")) == 64


def test_webhook_url_validation():
    assert is_valid_webhook_url("https://hooks.example.org/in")
    assert is_valid_webhook_url("http://localhost:9000/in")
    assert not is_valid_webhook_url("ftp://example.org")
    assert not is_valid_webhook_url("https://")


def test_dispatcher_posts_signed_body(monkeypatch):
    captured = {}

    def fake_post(url, data=None, headers=None, timeout=None):
        captured.update(url=url, data=data, headers=headers, timeout=timeout)
        return _FakeResponse(200, "accepted")

    monkeypatch.setattr(webhooks.requests, "post", fake_post)
    hook = {"webhook_id": "wh_1", "tenant_id": "t1", "url": "https://hooks.example.org/in", "secret": "abc"}
    result = WebhookDispatcher(timeout_s=2).deliver(hook, "ticket.created", {"ticket_id": "tkt_1"})

    assert result["success"] is True
    assert result["status_code"] == 200
    assert result["payload"]["event"] == "ticket.created"
    assert result["payload"]["data"] == {"ticket_id": "tkt_1"}
    body = captured["data"].decode("utf-8")
    assert json.loads(body)["data"]["ticket_id"] == "tkt_1"
    headers = captured["headers"]
    assert headers["X-Linksy-Event"] == "ticket.created"
    assert verify_signature("abc", headers["X-Linksy-Signature"], body)
    assert captured["timeout"] == 2


def test_dispatcher_records_http_and_network_failures(monkeypatch):
    hook = {"webhook_id": "wh_1", "url": "https://hooks.example.org/in", "secret": "abc"}
    monkeypatch.setattr(webhooks.requests, "post", lambda *a, **k: _FakeResponse(500, "x" * 5000))
    failed = WebhookDispatcher().deliver(hook, "webhook.test", {})
    assert failed["success"] is False
    assert failed["error_message"] == "HTTP 500"
    assert len(failed["response_body"]) == 2000

    def boom(*args, **kwargs):
        raise requests.Timeout("timed out")

    monkeypatch.setattr(webhooks.requests, "post", boom)
    down = WebhookDispatcher().deliver(hook, "webhook.test", {})
    assert down["success"] is False
    assert down["status_code"] is None
    assert down["error_message"] == "timed out"
