from datetime import UTC, datetime, timedelta

from linksy.sla import (
    aging_bucket,
    bucket_for,
    compute_sla_stats,
    default_sla_due_at,
    hours_until,
    parse_ts,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=UTC)


def _iso(dt: datetime) -> str:
    return dt.isoformat()


def test_parse_ts_accepts_zulu_and_naive_values():
    assert parse_ts("2025-03-10T12:00:00Z") == NOW
    assert parse_ts("2025-03-10T12:00:00") == NOW
    assert parse_ts("") is None
    assert parse_ts("not-a-date") is None


def test_hours_until_rounds_to_one_decimal():
    assert hours_until(_iso(NOW + timedelta(minutes=90)), NOW) == 1.5
    assert hours_until(_iso(NOW - timedelta(hours=2)), NOW) == -2.0
    assert hours_until(None, NOW) is None


def test_bucket_boundaries():
    assert bucket_for(-0.1) == "overdue"
    assert bucket_for(0) == "approaching"
    assert bucket_for(11.9) == "approaching"
    assert bucket_for(12) == "on_track"
    assert bucket_for(5, approaching_hours=4) == "on_track"


def test_default_sla_due_at_adds_48_hours():
    due = default_sla_due_at(_iso(NOW))
    assert parse_ts(due) == NOW + timedelta(hours=48)
    assert parse_ts(default_sla_due_at(_iso(NOW), sla_hours=24)) == NOW + timedelta(hours=24)
    assert default_sla_due_at(None) is None


def test_aging_buckets():
    assert aging_bucket(24) is None
    assert aging_bucket(47.9) is None
    assert aging_bucket(48) == "2-3 days"
    assert aging_bucket(50) == "2-3 days"
    assert aging_bucket(100) == "3-7 days"
    assert aging_bucket(200) == "1-2 weeks"
    assert aging_bucket(400) == "2+ weeks"


def test_compute_sla_stats_buckets_pending_and_sorts_by_remaining():
    tickets = [
        {"ticket_id": "t1", "status": "pending", "provider_id": "p1", "sla_due_at": _iso(NOW - timedelta(hours=3))},
        {"ticket_id": "t2", "status": "pending", "provider_id": "p1", "sla_due_at": _iso(NOW + timedelta(hours=6))},
        {"ticket_id": "t3", "status": "pending", "provider_id": "p1", "sla_due_at": _iso(NOW + timedelta(hours=2))},
        {"ticket_id": "t4", "status": "pending", "provider_id": "p1", "sla_due_at": _iso(NOW + timedelta(hours=30))},
        {"ticket_id": "t5", "status": "pending", "provider_id": "p1", "sla_due_at": None},
    ]
    stats = compute_sla_stats(tickets, providers_by_id={"p1": {"name": "Pantry"}}, now=NOW)
    assert [x["id"] for x in stats["overdue"]] == ["t1"]
    assert [x["id"] for x in stats["approaching"]] == ["t3", "t2"]
    assert [x["id"] for x in stats["on_track"]] == ["t4"]
    assert stats["overdue"][0]["provider_name"] == "Pantry"
    assert stats["summary"]["total_pending"] == 4
    assert stats["summary"]["compliance_rate"] == 100
    assert stats["summary"]["total_resolved"] == 0


def test_compliance_rate_rounds_half_up():
    tickets = []
    created = NOW - timedelta(days=2)
    due = created + timedelta(hours=48)
    for idx in range(8):
        updated = due - timedelta(hours=1) if idx < 5 else due + timedelta(hours=1)
        tickets.append(
            {
                "ticket_id": f"c{idx}",
                "status": "customer_need_addressed",
                "created_at": _iso(created),
                "sla_due_at": _iso(due),
                "updated_at": _iso(updated),
            }
        )
    stats = compute_sla_stats(tickets, providers_by_id={}, now=NOW)
    assert stats["summary"]["met_sla"] == 5
    assert stats["summary"]["total_resolved"] == 8
    assert stats["summary"]["compliance_rate"] == 63


def test_closed_tickets_outside_window_are_ignored():
    old = NOW - timedelta(days=40)
    tickets = [
        {
            "ticket_id": "old",
            "status": "unable_to_assist",
            "created_at": _iso(old),
            "sla_due_at": _iso(old + timedelta(hours=48)),
            "updated_at": _iso(old + timedelta(hours=200)),
        }
    ]
    stats = compute_sla_stats(tickets, providers_by_id={}, now=NOW)
    assert stats["summary"]["total_resolved"] == 0
    assert stats["summary"]["compliance_rate"] == 100
