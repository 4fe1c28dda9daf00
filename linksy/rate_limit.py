from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitPreset:
    limit: int
    window_seconds: int


@dataclass
class RateLimitResult:
    success: bool
    limit: int
    remaining: int
    reset: int

    def headers(self) -> dict[str, str]:
        return {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset),
        }


PRESETS: dict[str, RateLimitPreset] = {
    "global": RateLimitPreset(limit=100, window_seconds=60),
    "auth": RateLimitPreset(limit=5, window_seconds=15 * 60),
    "upload": RateLimitPreset(limit=10, window_seconds=60),
    "public_ticket": RateLimitPreset(limit=20, window_seconds=60 * 60),
}


class SlidingWindowRateLimiter:
    """Per-identifier sliding window kept in process memory.

    Once every ``sweep_interval_seconds`` ``check`` drops identifiers with no
    hits inside the longest window seen so far. ``None`` turns the sweep off.
    """

    def __init__(
        self,
        *,
        clock: Callable[[], float] = time.time,
        sweep_interval_seconds: float | None = 300,
    ) -> None:
        self._clock = clock
        self._lock = threading.Lock()
        self._hits: dict[str, list[float]] = {}
        self._sweep_interval = sweep_interval_seconds
        self._last_sweep = clock()
        self._longest_window = 0

    def _drop_expired(self, cutoff: float) -> int:
        removed = 0
        for key in list(self._hits.keys()):
            kept = [ts for ts in self._hits[key] if ts > cutoff]
            if kept:
                self._hits[key] = kept
            else:
                del self._hits[key]
                removed += 1
        return removed

    def _maybe_sweep(self, now: float) -> None:
        if self._sweep_interval is None or now - self._last_sweep < self._sweep_interval:
            return
        self._last_sweep = now
        self._drop_expired(now - self._longest_window)

    def check(self, identifier: str, *, limit: int, window_seconds: int) -> RateLimitResult:
        now = self._clock()
        cutoff = now - window_seconds
        with self._lock:
            self._longest_window = max(self._longest_window, window_seconds)
            self._maybe_sweep(now)
            history = [ts for ts in self._hits.get(identifier, []) if ts > cutoff]
            if len(history) >= limit:
                self._hits[identifier] = history
                reset = int(history[0] + window_seconds)
                return RateLimitResult(success=False, limit=limit, remaining=0, reset=reset)
            history.append(now)
            self._hits[identifier] = history
            reset = int(history[0] + window_seconds)
            return RateLimitResult(
                success=True,
                limit=limit,
                remaining=max(0, limit - len(history)),
                reset=reset,
            )

    def check_preset(self, identifier: str, preset: str) -> RateLimitResult:
        cfg = PRESETS[preset]
        return self.check(f"{preset}:{identifier}", limit=cfg.limit, window_seconds=cfg.window_seconds)

    def cleanup(self, *, max_window_seconds: int = 3600) -> int:
        cutoff = self._clock() - max_window_seconds
        with self._lock:
            return self._drop_expired(cutoff)

    def stats(self) -> dict[str, int]:
        with self._lock:
            return {
                "identifiers": len(self._hits),
                "total_hits": sum(len(x) for x in self._hits.values()),
            }

    def clear(self, identifier: str | None = None) -> None:
        with self._lock:
            if identifier is None:
                self._hits.clear()
            else:
                self._hits.pop(identifier, None)


rate_limiter = SlidingWindowRateLimiter()
