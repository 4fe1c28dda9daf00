"""Widget search: need matching, ring proximity and the reply message."""

from __future__ import annotations

import re
from collections.abc import Iterable, Sequence
from typing import Any

from linksy.geocoding import haversine_miles

DEFAULT_RINGS: tuple[int, ...] = (10, 25, 50)
MAX_RESULTS = 5

NO_NEEDS_MESSAGE = (
    "I couldn't find any matching services for your request. "
    "Could you try describing your need in a different way?"
)

_STOP_WORDS = frozenset(
    {
        "a", "an", "and", "any", "are", "can", "do", "for", "get", "help", "i", "im",
        "in", "is", "it", "me", "my", "need", "of", "on", "or", "please", "some",
        "the", "to", "want", "where", "with",
    }
)


def tokenize(text: str) -> list[str]:
    words = re.findall(r"[a-z0-9']+", str(text or "").lower())
    return [w.replace("'", "") for w in words if w.replace("'", "") not in _STOP_WORDS]


def match_needs(
    query: str,
    needs: Iterable[dict[str, Any]],
    *,
    categories_by_id: dict[str, dict[str, Any]] | None = None,
    limit: int = MAX_RESULTS,
) -> list[dict[str, Any]]:
    query_norm = " ".join(str(query or "").lower().split())
    tokens = set(tokenize(query))
    scored: list[dict[str, Any]] = []
    for need in needs:
        if not need.get("is_active", True):
            continue
        name = str(need.get("name") or "").lower()
        synonyms = [str(x).lower() for x in need.get("synonyms") or []]
        category = (categories_by_id or {}).get(str(need.get("category_id") or "")) or {}
        phrases = [name, *synonyms]
        score = 0
        if any(p and re.search(r"(?<!\w)" + re.escape(p) + r"(?!\w)", query_norm) for p in phrases):
            score += 3
        vocabulary: set[str] = set(tokenize(name))
        for syn in synonyms:
            vocabulary.update(tokenize(syn))
        vocabulary.update(tokenize(str(category.get("name") or "")))
        score += len(tokens & vocabulary)
        if score > 0:
            scored.append({**need, "score": score})
    scored.sort(key=lambda x: (-x["score"], str(x.get("name") or "")))
    return scored[:limit]


def primary_location(locations: Sequence[dict[str, Any]]) -> dict[str, Any] | None:
    if not locations:
        return None
    for loc in locations:
        if loc.get("is_primary"):
            return loc
    return locations[0]


def distance_to(origin: dict[str, float] | None, location: dict[str, Any] | None) -> float | None:
    if origin is None or location is None:
        return None
    lat = location.get("latitude")
    lng = location.get("longitude")
    if lat is None or lng is None:
        return None
    return haversine_miles(float(origin["lat"]), float(origin["lng"]), float(lat), float(lng))


def within_radius(
    origin: dict[str, float],
    locations: Iterable[dict[str, Any]],
    radius_miles: float,
) -> float | None:
    """Smallest distance from ``origin`` to any geocoded location inside the radius."""
    best: float | None = None
    for loc in locations:
        dist = distance_to(origin, loc)
        if dist is None or dist > radius_miles:
            continue
        if best is None or dist < best:
            best = dist
    return best


def select_ring(
    origin: dict[str, float],
    candidates: Sequence[dict[str, Any]],
    locations_by_provider: dict[str, list[dict[str, Any]]],
    *,
    rings: Sequence[int] = DEFAULT_RINGS,
) -> tuple[list[str] | None, int | None]:
    chosen: list[str] | None = None
    chosen_ring: int | None = None
    for radius in rings:
        ids = [
            str(p["provider_id"])
            for p in candidates
            if within_radius(origin, locations_by_provider.get(str(p["provider_id"]), []), radius) is not None
        ]
        if len(ids) >= 2:
            return ids, radius
        if ids and chosen is None:
            chosen = ids
            chosen_ring = radius
    return chosen, chosen_ring


def rank_by_distance(
    providers: Sequence[dict[str, Any]],
    locations_by_provider: dict[str, list[dict[str, Any]]],
    origin: dict[str, float] | None,
    *,
    limit: int = MAX_RESULTS,
) -> list[dict[str, Any]]:
    ranked: list[dict[str, Any]] = []
    for provider in providers:
        locs = locations_by_provider.get(str(provider["provider_id"]), [])
        primary = primary_location(locs)
        ranked.append({**provider, "distance": distance_to(origin, primary), "primary_location": primary})
    if origin is not None:
        ranked.sort(key=lambda x: (x["distance"] is None, x["distance"] or 0.0))
    return ranked[:limit]


def compose_message(
    query: str,
    needs: Sequence[dict[str, Any]],
    providers: Sequence[dict[str, Any]],
    *,
    has_location: bool,
    radius_miles: int | None,
) -> str:
    if not providers:
        if has_location:
            return (
                f"I couldn't find any providers for \"{query}\" near your location. "
                "Try expanding your search or contact 211 for additional resources."
            )
        return (
            f"I couldn't find any providers for \"{query}\". You might want to try describing "
            "your need differently, or contact 211 for additional resources."
        )
    need_names = ", ".join(str(n.get("name")) for n in needs[:3])
    count = len(providers)
    noun = "organization" if count == 1 else "organizations"
    message = f"I found {count} {noun} that can help with {need_names}. "
    if has_location and radius_miles:
        message += f"Showing the closest results within {radius_miles} miles:"
    elif has_location:
        message += "No providers were found nearby, so here are the closest matches from a wider area:"
    else:
        message += "Here are some options (add your location to see results sorted by distance):"
    return message
