"""SLA bucketing for pending referral tickets.

Pending tickets with a due timestamp are sorted into ``overdue``,
``approaching`` and ``on_track`` lists. Closed tickets inside the compliance
window feed the compliance rate: a ticket met its SLA when its last update
happened at or before the due timestamp.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import UTC, datetime, timedelta
from typing import Any

DEFAULT_SLA_HOURS = 48
DEFAULT_APPROACHING_HOURS = 12
DEFAULT_COMPLIANCE_WINDOW_DAYS = 30

AGING_BUCKETS: tuple[str, ...] = ("2-3 days", "3-7 days", "1-2 weeks", "2+ weeks")


def parse_ts(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        raw = str(value).strip()
        if raw.endswith("Z"):
            raw = raw[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(raw)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def hours_until(due_at: Any, now: datetime) -> float | None:
    due = parse_ts(due_at)
    if due is None:
        return None
    return round((due - now).total_seconds() / 3600.0, 1)


def bucket_for(hours_remaining: float, *, approaching_hours: float = DEFAULT_APPROACHING_HOURS) -> str:
    if hours_remaining < 0:
        return "overdue"
    if hours_remaining < approaching_hours:
        return "approaching"
    return "on_track"


def default_sla_due_at(created_at: Any, *, sla_hours: int | None = None) -> str | None:
    created = parse_ts(created_at)
    if created is None:
        return None
    hours = DEFAULT_SLA_HOURS if sla_hours is None else max(1, int(sla_hours))
    return (created + timedelta(hours=hours)).isoformat()


def aging_bucket(age_hours: float) -> str | None:
    if age_hours < 48:
        return None
    if age_hours < 72:
        return "2-3 days"
    if age_hours < 168:
        return "3-7 days"
    if age_hours < 336:
        return "1-2 weeks"
    return "2+ weeks"


def compute_sla_stats(
    tickets: Iterable[Mapping[str, Any]],
    *,
    providers_by_id: Mapping[str, Mapping[str, Any]],
    now: datetime,
    approaching_hours: float = DEFAULT_APPROACHING_HOURS,
    compliance_window_days: int = DEFAULT_COMPLIANCE_WINDOW_DAYS,
) -> dict[str, Any]:
    buckets: dict[str, list[dict[str, Any]]] = {"overdue": [], "approaching": [], "on_track": []}
    window_start = now - timedelta(days=compliance_window_days)
    met = 0
    resolved = 0

    for ticket in tickets:
        status = ticket.get("status")
        if status == "pending":
            remaining = hours_until(ticket.get("sla_due_at"), now)
            if remaining is None:
                continue
            provider = providers_by_id.get(str(ticket.get("provider_id") or "")) or {}
            row = {
                "id": ticket.get("ticket_id"),
                "ticket_number": ticket.get("ticket_number"),
                "client_name": ticket.get("client_name"),
                "sla_due_at": ticket.get("sla_due_at"),
                "created_at": ticket.get("created_at"),
                "provider_name": provider.get("name"),
                "hours_remaining": remaining,
            }
            buckets[bucket_for(remaining, approaching_hours=approaching_hours)].append(row)
            continue

        created = parse_ts(ticket.get("created_at"))
        due = parse_ts(ticket.get("sla_due_at"))
        updated = parse_ts(ticket.get("updated_at"))
        if created is None or due is None or updated is None or created < window_start:
            continue
        resolved += 1
        if updated <= due:
            met += 1

    for rows in buckets.values():
        rows.sort(key=lambda x: x["hours_remaining"])

    compliance_rate = int(met * 100 / resolved + 0.5) if resolved > 0 else 100
    total_pending = sum(len(rows) for rows in buckets.values())
    return {
        "overdue": buckets["overdue"],
        "approaching": buckets["approaching"],
        "on_track": buckets["on_track"],
        "summary": {
            "total_pending": total_pending,
            "overdue_count": len(buckets["overdue"]),
            "approaching_count": len(buckets["approaching"]),
            "on_track_count": len(buckets["on_track"]),
            "compliance_rate": compliance_rate,
            "met_sla": met,
            "total_resolved": resolved,
        },
    }
