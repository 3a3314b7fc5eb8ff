"""Tests for the in-memory fixed-window rate limiter."""

from concurrent.futures import ThreadPoolExecutor

from identity.config import RateLimitPolicy
from identity.services.rate_limit import InMemoryRateLimiter, enforce


class FakeClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestInMemoryRateLimiter:
    def test_allows_up_to_the_limit_then_blocks(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)

        results = [limiter.allow("+8801712345678", "otp_send", 3, 3600) for _ in range(4)]

        assert [info.allowed for info in results] == [True, True, True, False]
        assert [info.remaining for info in results] == [2, 1, 0, 0]
        assert results[-1].retry_after == 3600

    def test_window_is_anchored_at_first_hit(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        limiter.allow("a", "otp_send", 1, 60)

        clock.advance(45)
        blocked = limiter.allow("a", "otp_send", 1, 60)
        assert not blocked.allowed
        assert blocked.retry_after == 15

        clock.advance(15)
        assert limiter.allow("a", "otp_send", 1, 60).allowed

    def test_keys_are_independent_per_identifier_and_action(self):
        limiter = InMemoryRateLimiter(clock=FakeClock())
        assert limiter.allow("a", "otp_send", 1, 60).allowed
        assert limiter.allow("b", "otp_send", 1, 60).allowed
        assert limiter.allow("a", "otp_resend", 1, 60).allowed
        assert not limiter.allow("a", "otp_send", 1, 60).allowed

    def test_reset_and_sweep(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock)
        limiter.allow("a", "otp_send", 1, 60)
        limiter.reset("a", "otp_send")
        assert limiter.allow("a", "otp_send", 1, 60).allowed

        limiter.allow("b", "email_resend", 1, 300)
        clock.advance(60)
        assert limiter.sweep() == 1
        assert len(limiter) == 1

        clock.advance(240)
        assert limiter.sweep() == 1
        assert len(limiter) == 0

    def test_counters_for_keys_that_never_return_are_dropped(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock, sweep_interval=60)
        for index in range(1000):
            limiter.allow(f"+88017{index:08d}", "otp_send", 3, 60)
        assert len(limiter) == 1000

        clock.advance(10_000)
        limiter.allow("+8801700000000", "otp_send", 3, 60)

        assert len(limiter) == 1

    def test_sweep_keeps_counters_inside_their_window(self):
        clock = FakeClock()
        limiter = InMemoryRateLimiter(clock=clock, sweep_interval=60)
        limiter.allow("long", "otp_send", 1, 3600)
        limiter.allow("short", "otp_resend", 1, 30)

        clock.advance(61)
        limiter.allow("other", "email_resend", 1, 300)

        assert len(limiter) == 2
        assert not limiter.allow("long", "otp_send", 1, 3600).allowed

    def test_enforce_uses_the_policy(self):
        limiter = InMemoryRateLimiter(clock=FakeClock())
        policy = RateLimitPolicy("password_reset", 2, 3600)
        assert enforce(limiter, "x", policy).allowed
        assert enforce(limiter, "x", policy).allowed
        assert not enforce(limiter, "x", policy).allowed

    def test_concurrent_callers_cannot_exceed_the_limit(self):
        limiter = InMemoryRateLimiter()

        with ThreadPoolExecutor(max_workers=16) as pool:
            results = list(pool.map(lambda _: limiter.allow("a", "otp_send", 5, 3600), range(100)))

        assert sum(1 for info in results if info.allowed) == 5
