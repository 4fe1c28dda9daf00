from __future__ import annotations

import logging
import math
import os
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

import requests

logger = logging.getLogger(__name__)

GEOCODE_URL = "https://maps.googleapis.com/maps/api/geocode/json"
EARTH_RADIUS_MILES = 3959.0


@dataclass
class GeocodeResult:
    latitude: float
    longitude: float
    formatted_address: str


def build_address_string(
    line1: str | None = None,
    line2: str | None = None,
    city: str | None = None,
    state: str | None = None,
    postal_code: str | None = None,
) -> str:
    parts = [str(x).strip() for x in (line1, line2, city, state, postal_code) if x and str(x).strip()]
    return ", ".join(parts)


def address_for_location(location: dict[str, Any]) -> str:
    return build_address_string(
        location.get("address_line1"),
        location.get("address_line2"),
        location.get("city"),
        location.get("state"),
        location.get("postal_code"),
    )


def haversine_miles(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    d_lat = math.radians(lat2 - lat1)
    d_lng = math.radians(lng2 - lng1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lng / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_MILES * c, 1)


class GoogleGeocoder:
    def __init__(self, *, api_key: str | None = None, timeout_s: float = 10.0) -> None:
        self._api_key = (api_key if api_key is not None else os.environ.get("GOOGLE_MAPS_API_KEY", "")).strip()
        self._timeout_s = timeout_s

    @property
    def enabled(self) -> bool:
        return bool(self._api_key)

    def geocode(self, address: str) -> GeocodeResult | None:
        if not self._api_key:
            logger.warning("GOOGLE_MAPS_API_KEY not configured; skipping geocode")
            return None
        if not address.strip():
            return None
        try:
            resp = requests.get(
                GEOCODE_URL,
                params={"address": address, "key": self._api_key},
                timeout=self._timeout_s,
            )
            resp.raise_for_status()
            body = resp.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("geocode request failed for %r: %s", address, exc)
            return None
        status = body.get("status") if isinstance(body, dict) else None
        results = body.get("results") if isinstance(body, dict) else None
        if status != "OK" or not results:
            logger.warning("geocode returned status=%s for %r", status, address)
            return None
        first = results[0]
        loc = (first.get("geometry") or {}).get("location") or {}
        try:
            return GeocodeResult(
                latitude=float(loc["lat"]),
                longitude=float(loc["lng"]),
                formatted_address=str(first.get("formatted_address") or address),
            )
        except (KeyError, TypeError, ValueError):
            logger.warning("geocode result missing coordinates for %r", address)
            return None


def needs_geocode(location: dict[str, Any]) -> bool:
    return not location.get("geocoded_at") and bool(str(location.get("address_line1") or "").strip())


def apply_geocode(location: dict[str, Any], result: GeocodeResult) -> dict[str, Any]:
    location["latitude"] = result.latitude
    location["longitude"] = result.longitude
    location["geocoded_at"] = datetime.now(UTC).isoformat()
    location["geocode_source"] = "google"
    return location


def batch_geocode(
    locations: Iterable[dict[str, Any]],
    *,
    geocoder: GoogleGeocoder,
    delay_ms: int = 25,
    sleep: Callable[[float], None] = time.sleep,
    on_success: Callable[[dict[str, Any]], None] | None = None,
) -> dict[str, int]:
    pending = [x for x in locations if needs_geocode(x)]
    processed = 0
    succeeded = 0
    failed = 0
    for idx, location in enumerate(pending):
        if idx > 0 and delay_ms > 0:
            sleep(delay_ms / 1000.0)
        processed += 1
        result = geocoder.geocode(address_for_location(location))
        if result is None:
            failed += 1
            continue
        apply_geocode(location, result)
        succeeded += 1
        if on_success is not None:
            on_success(location)
    return {"processed": processed, "succeeded": succeeded, "failed": failed}
