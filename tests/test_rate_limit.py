from core.rate_limit import TOO_MANY_REQUESTS, RateLimiter


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def test_allows_up_to_limit_then_denies():
    clock = FakeClock()
    limiter = RateLimiter(limit=10, window=60, clock=clock)
    remaining = [limiter.check("203.0.113.7")["remaining"] for _ in range(10)]
    assert remaining == [9, 8, 7, 6, 5, 4, 3, 2, 1, 0]
    denied = limiter.check("203.0.113.7")
    assert denied == {"allowed": False, "error": TOO_MANY_REQUESTS, "resetTime": 1060000}


def test_addresses_are_counted_separately():
    limiter = RateLimiter(limit=1, window=60, clock=FakeClock())
    assert limiter.check("a")["allowed"] is True
    assert limiter.check("b")["allowed"] is True
    assert limiter.check("a")["allowed"] is False


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(limit=2, window=60, clock=clock)
    limiter.check("a")
    limiter.check("a")
    assert limiter.check("a")["allowed"] is False
    clock.now += 60
    assert limiter.check("a")["allowed"] is False
    clock.now += 0.001
    assert limiter.check("a") == {"allowed": True, "remaining": 1}


def test_sweep_evicts_expired_entries():
    clock = FakeClock()
    limiter = RateLimiter(limit=5, window=60, clock=clock)
    limiter.check("a")
    clock.now += 30
    limiter.check("b")
    clock.now += 31
    assert limiter.sweep() == 1
    assert len(limiter) == 1
    clock.now += 60
    assert limiter.sweep() == 1
    assert len(limiter) == 0


def test_missing_address_shares_unknown_bucket():
    limiter = RateLimiter(limit=1, window=60, clock=FakeClock())
    assert limiter.check("")["allowed"] is True
    assert limiter.check(None)["allowed"] is False
