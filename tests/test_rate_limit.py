from linksy.rate_limit import PRESETS, SlidingWindowRateLimiter


class _Clock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


def test_sliding_window_blocks_then_recovers():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(clock=clock)
    results = [limiter.check("ip:1", limit=3, window_seconds=60) for _ in range(3)]
    assert [r.remaining for r in results] == [2, 1, 0]
    assert all(r.success for r in results)

    blocked = limiter.check("ip:1", limit=3, window_seconds=60)
    assert blocked.success is False
    assert blocked.headers() == {
        "X-RateLimit-Limit": "3",
        "X-RateLimit-Remaining": "0",
        "X-RateLimit-Reset": "1060",
    }

    clock.now += 61
    assert limiter.check("ip:1", limit=3, window_seconds=60).success is True


def test_identifiers_are_independent():
    limiter = SlidingWindowRateLimiter(clock=_Clock())
    assert limiter.check("a", limit=1, window_seconds=60).success
    assert not limiter.check("a", limit=1, window_seconds=60).success
    assert limiter.check("b", limit=1, window_seconds=60).success


def test_presets_prefix_identifier():
    limiter = SlidingWindowRateLimiter(clock=_Clock())
    upload = PRESETS["upload"]
    for _ in range(upload.limit):
        assert limiter.check_preset("user_1", "upload").success
    assert not limiter.check_preset("user_1", "upload").success
    assert limiter.check_preset("user_1", "global").success


def test_cleanup_and_clear():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(clock=clock, sweep_interval_seconds=None)
    limiter.check("a", limit=5, window_seconds=60)
    limiter.check("b", limit=5, window_seconds=60)
    assert limiter.stats() == {"identifiers": 2, "total_hits": 2}
    clock.now += 4000
    limiter.check("c", limit=5, window_seconds=60)
    assert limiter.cleanup() == 2
    limiter.clear("c")
    assert limiter.stats() == {"identifiers": 0, "total_hits": 0}


def test_check_sweeps_expired_identifiers_on_interval():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(clock=clock, sweep_interval_seconds=300)
    for n in range(300):
        limiter.check(f"public:10.0.{n // 256}.{n % 256}", limit=100, window_seconds=60)
    assert limiter.stats() == {"identifiers": 300, "total_hits": 300}

    clock.now += 120
    limiter.check("public:10.9.9.9", limit=100, window_seconds=60)
    assert limiter.stats()["identifiers"] == 301

    clock.now += 200
    limiter.check("public:10.9.9.9", limit=100, window_seconds=60)
    assert limiter.stats() == {"identifiers": 1, "total_hits": 1}


def test_sweep_keeps_hits_inside_longest_window():
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(clock=clock, sweep_interval_seconds=300)
    limiter.check_preset("client@example.org", "public_ticket")
    clock.now += 400
    limiter.check("public:1.1.1.1", limit=100, window_seconds=60)
    assert limiter.stats()["identifiers"] == 2
