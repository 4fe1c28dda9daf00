from __future__ import annotations

import hashlib
import hmac
import json
import logging
import os
import time
import uuid
from datetime import UTC, datetime
from typing import Any

import requests

logger = logging.getLogger(__name__)

WEBHOOK_EVENT_TYPES: tuple[str, ...] = (
    "ticket.created",
    "ticket.status_changed",
    "ticket.reassigned",
    "ticket.forwarded",
    "ticket.assigned",
)
TEST_EVENT_TYPE = "webhook.test"
USER_AGENT = "Linksy-Webhooks/1.0"
MAX_RESPONSE_BODY = 2000


def sign_payload(secret: str, timestamp: int | str, body: str) -> str:
    message = f"{timestamp}.{body}".encode("utf-8")
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def signature_header(secret: str, timestamp: int | str, body: str) -> str:
    return f"t={timestamp},v1={sign_payload(secret, timestamp, body)}"


def verify_signature(secret: str, header: str, body: str) -> bool:
    parts = dict(x.split("=", 1) for x in header.split(",") if "=" in x)
    ts = parts.get("t")
    sig = parts.get("v1")
    if not ts or not sig:
        return False
    return hmac.compare_digest(sign_payload(secret, ts, body), sig)


def is_valid_webhook_url(url: str) -> bool:
    raw = str(url or "").strip().lower()
    return (raw.startswith("https://") or raw.startswith("http://")) and len(raw.split("://", 1)[1]) > 0


class WebhookDispatcher:
    """Posts signed event payloads to tenant webhook endpoints."""

    def __init__(self, *, timeout_s: float | None = None) -> None:
        if timeout_s is None:
            raw = os.environ.get("WEBHOOK_TIMEOUT_SECONDS", "").strip()
            try:
                timeout_s = float(raw) if raw else 10.0
            except ValueError:
                timeout_s = 10.0
        self._timeout_s = max(0.1, timeout_s)

    @staticmethod
    def build_body(event_type: str, data: dict[str, Any]) -> str:
        envelope = {
            "id": f"evt_{uuid.uuid4().hex[:16]}",
            "event": event_type,
            "created_at": datetime.now(UTC).isoformat(),
            "data": data,
        }
        return json.dumps(envelope, separators=(",", ":"), ensure_ascii=False, default=str)

    def deliver(self, webhook: dict[str, Any], event_type: str, data: dict[str, Any]) -> dict[str, Any]:
        body = self.build_body(event_type, data)
        timestamp = int(time.time())
        headers = {
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "X-Linksy-Event": event_type,
            "X-Linksy-Timestamp": str(timestamp),
            "X-Linksy-Signature": signature_header(str(webhook.get("secret") or ""), timestamp, body),
        }
        started = time.monotonic()
        status_code: int | None = None
        response_body: str | None = None
        error_message: str | None = None
        try:
            resp = requests.post(
                str(webhook["url"]),
                data=body.encode("utf-8"),
                headers=headers,
                timeout=self._timeout_s,
            )
            status_code = resp.status_code
            response_body = (resp.text or "")[:MAX_RESPONSE_BODY]
            if not 200 <= status_code < 300:
                error_message = f"HTTP {status_code}"
        except requests.RequestException as exc:
            error_message = str(exc) or exc.__class__.__name__
            logger.warning("webhook delivery to %s failed: %s", webhook.get("url"), error_message)
        duration_ms = int((time.monotonic() - started) * 1000)
        success = status_code is not None and 200 <= status_code < 300
        return {
            "delivery_id": f"whd_{uuid.uuid4().hex[:12]}",
            "webhook_id": webhook.get("webhook_id"),
            "tenant_id": webhook.get("tenant_id"),
            "event_type": event_type,
            "payload": json.loads(body),
            "status_code": status_code,
            "success": success,
            "duration_ms": duration_ms,
            "response_body": response_body,
            "error_message": error_message,
            "created_at": datetime.now(UTC).isoformat(),
        }
