from __future__ import annotations

import re
from collections.abc import Iterable, Mapping
from typing import Any

CRISIS_TYPES: tuple[str, ...] = ("suicide", "domestic_violence", "trafficking", "child_abuse")
SEVERITIES: tuple[str, ...] = ("low", "medium", "high", "critical")
SEVERITY_RANK: dict[str, int] = {name: idx for idx, name in enumerate(SEVERITIES)}


def normalize_keyword(keyword: str) -> str:
    return " ".join(str(keyword or "").strip().lower().split())


def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    parts = [re.escape(p) for p in keyword.split()]
    return re.compile(r"(?<!\w)" + r"\s+".join(parts) + r"(?!\w)", re.IGNORECASE)


def _excluded_ids(overrides: Iterable[Mapping[str, Any]] | None) -> set[str]:
    if not overrides:
        return set()
    return {str(x.get("keyword_id")) for x in overrides if x.get("action") == "exclude"}


def detect_crisis(
    message: str,
    keywords: Iterable[Mapping[str, Any]],
    overrides: Iterable[Mapping[str, Any]] | None = None,
) -> dict[str, Any] | None:
    """Return the strongest crisis keyword found in ``message``.

    Matching is case-insensitive on whole words, so "harm" does not fire
    inside "pharmacy". When several keywords match the highest severity
    wins; ties go to the longer keyword, then alphabetical order.
    """
    text = str(message or "")
    if not text.strip():
        return None
    excluded = _excluded_ids(overrides)
    best: tuple[int, int, str] | None = None
    best_row: Mapping[str, Any] | None = None
    for row in keywords:
        if not row.get("is_active", True):
            continue
        if str(row.get("keyword_id")) in excluded:
            continue
        keyword = normalize_keyword(str(row.get("keyword") or ""))
        if not keyword or not _keyword_pattern(keyword).search(text):
            continue
        rank = (SEVERITY_RANK.get(str(row.get("severity")), -1), len(keyword), keyword)
        # higher severity, then longer keyword, then alphabetical
        if best is None or (rank[0], rank[1]) > (best[0], best[1]) or (
            (rank[0], rank[1]) == (best[0], best[1]) and rank[2] < best[2]
        ):
            best = rank
            best_row = row
    if best_row is None:
        return None
    return {
        "crisis_type": best_row.get("crisis_type"),
        "severity": best_row.get("severity"),
        "response_template": best_row.get("response_template"),
        "emergency_resources": list(best_row.get("emergency_resources") or []),
        "matched_keyword": normalize_keyword(str(best_row.get("keyword") or "")),
    }


def sort_keywords(rows: Iterable[dict[str, Any]]) -> list[dict[str, Any]]:
    return sorted(
        rows,
        key=lambda x: (
            str(x.get("crisis_type") or ""),
            -SEVERITY_RANK.get(str(x.get("severity")), -1),
            str(x.get("keyword") or ""),
        ),
    )
