"""Tests for services/rate_limiter.py

Sliding windows per (tier, caller): the minute ceiling is reported first with a
60s retry hint, the daily ceiling with 3600s. Entries older than a day are
pruned on every check.
"""

import threading

import pytest

from services.errors import RateLimited
from services.rate_limiter import (
    AGENT_TIER,
    AI_TIER,
    DAY_RETRY_AFTER,
    MINUTE_RETRY_AFTER,
    InMemoryRateLimitStore,
    RateLimiter,
    RateLimitTier,
)


class FakeClock:
    def __init__(self, start=1_000_000.0):
        self.now = start

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def limiter(clock):
    return RateLimiter(InMemoryRateLimitStore(), clock=clock)


class TestMinuteWindow:
    def test_ceiling_then_denial_then_recovery(self, limiter, clock):
        tier = RateLimitTier("test", per_minute=3, per_day=100)
        for _ in range(3):
            assert limiter.check("u1", tier).allowed

        denied = limiter.check("u1", tier)
        assert not denied.allowed
        assert denied.retry_after_seconds == MINUTE_RETRY_AFTER == 60

        clock.advance(61)
        assert limiter.check("u1", tier).allowed

    def test_denied_requests_are_not_recorded(self, limiter, clock):
        tier = RateLimitTier("test", per_minute=1, per_day=100)
        assert limiter.check("u1", tier).allowed
        for _ in range(5):
            assert not limiter.check("u1", tier).allowed
        assert len(limiter.store.timestamps("test:u1")) == 1

    def test_callers_are_independent(self, limiter):
        tier = RateLimitTier("test", per_minute=1, per_day=100)
        assert limiter.check("u1", tier).allowed
        assert limiter.check("u2", tier).allowed
        assert not limiter.check("u1", tier).allowed

    def test_tiers_are_independent(self, limiter):
        for _ in range(AGENT_TIER.per_minute):
            assert limiter.check("u1", AGENT_TIER).allowed
        assert not limiter.check("u1", AGENT_TIER).allowed
        assert limiter.check("u1", AI_TIER).allowed


class TestDayWindow:
    def test_daily_ceiling_reports_an_hour(self, limiter, clock):
        tier = RateLimitTier("test", per_minute=2, per_day=4)
        for _ in range(2):
            for _ in range(2):
                assert limiter.check("u1", tier).allowed
            clock.advance(61)

        denied = limiter.check("u1", tier)
        assert not denied.allowed
        assert denied.retry_after_seconds == DAY_RETRY_AFTER == 3600

    def test_minute_ceiling_takes_precedence(self, limiter):
        tier = RateLimitTier("test", per_minute=2, per_day=2)
        limiter.check("u1", tier)
        limiter.check("u1", tier)
        assert limiter.check("u1", tier).retry_after_seconds == MINUTE_RETRY_AFTER

    def test_old_entries_are_pruned(self, limiter, clock):
        tier = RateLimitTier("test", per_minute=5, per_day=5)
        for _ in range(3):
            limiter.check("u1", tier)
        clock.advance(24 * 60 * 60 + 1)
        assert limiter.check("u1", tier).allowed
        assert len(limiter.store.timestamps("test:u1")) == 1


class TestEnforce:
    def test_raises_rate_limited_with_retry_after(self, limiter):
        tier = RateLimitTier("test", per_minute=1, per_day=10)
        limiter.enforce("u1", tier)
        with pytest.raises(RateLimited) as exc:
            limiter.enforce("u1", tier)
        assert exc.value.retry_after_seconds == 60
        body = exc.value.to_dict()
        assert body["error"] == "rate_limited"
        assert body["retryAfter"] == 60

    def test_default_tiers(self):
        assert (AI_TIER.per_minute, AI_TIER.per_day) == (5, 50)
        assert (AGENT_TIER.per_minute, AGENT_TIER.per_day) == (3, 20)


def test_concurrent_hits_never_exceed_the_ceiling(clock):
    """Parallel requests from one caller are serialized per key."""
    limiter = RateLimiter(InMemoryRateLimitStore(), clock=clock)
    tier = RateLimitTier("test", per_minute=5, per_day=100)
    results = []
    lock = threading.Lock()
    barrier = threading.Barrier(20)

    def worker():
        barrier.wait()
        decision = limiter.check("u1", tier)
        with lock:
            results.append(decision.allowed)

    threads = [threading.Thread(target=worker) for _ in range(20)]
    for th in threads:
        th.start()
    for th in threads:
        th.join()

    assert results.count(True) == 5
    assert results.count(False) == 15


class TestReset:
    def test_reset_one_key_keeps_others(self, clock):
        store = InMemoryRateLimitStore()
        limiter = RateLimiter(store, clock=clock)
        for _ in range(AI_TIER.per_minute):
            limiter.check("u1", AI_TIER)
        limiter.check("u2", AI_TIER)

        store.reset("ai:u1")
        assert store.timestamps("ai:u1") == []
        assert len(store.timestamps("ai:u2")) == 1
        assert limiter.check("u1", AI_TIER).allowed

    def test_reset_all(self, clock):
        store = InMemoryRateLimitStore()
        limiter = RateLimiter(store, clock=clock)
        limiter.check("u1", AI_TIER)
        limiter.check("u2", AGENT_TIER)
        store.reset()
        assert store.timestamps("ai:u1") == [] and store.timestamps("agent:u2") == []

    def test_reset_waits_for_in_flight_hit(self):
        """reset() takes the same per-key lock as hit()."""
        store = InMemoryRateLimitStore()
        store.hit("ai:u1", 1.0, AI_TIER)
        key_lock = store._lock_for("ai:u1")

        key_lock.acquire()
        t = threading.Thread(target=store.reset, args=("ai:u1",))
        t.start()
        t.join(timeout=0.2)
        assert t.is_alive()
        assert store.timestamps("ai:u1") == [1.0]

        key_lock.release()
        t.join(timeout=5)
        assert not t.is_alive()
        assert store.timestamps("ai:u1") == []
