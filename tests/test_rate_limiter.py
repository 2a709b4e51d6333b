"""
Fixed-window limiter over the in-memory counter store.
"""

from hypothesis import given, settings, strategies as st

from sentinel.security.counter_store import InMemoryCounterStore
from sentinel.security.rate_limiter import RateLimiter
from tests.conftest import run


class FakeClock:

    def __init__(self, now_ms=1_000_000):
        self.now_ms = now_ms

    def __call__(self):
        return self.now_ms


def test_allows_up_to_limit_then_limits():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(), clock=clock)

    async def scenario():
        results = [await limiter.check("1.2.3.4", 3, 60_000) for _ in range(4)]
        return results

    results = run(scenario())
    assert [r.limited for r in results] == [False, False, False, True]
    assert [r.remaining for r in results[:3]] == [2, 1, 0]
    assert results[3].retry_after_seconds == 60
    assert results[3].headers["Retry-After"] == "60"
    assert "Retry-After" not in results[0].headers


def test_window_resets_after_expiry():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(), clock=clock)

    async def scenario():
        await limiter.check("1.2.3.4", 1, 1000)
        limited = await limiter.check("1.2.3.4", 1, 1000)
        # still inside the window at exactly window_ms
        clock.now_ms += 1000
        edge = await limiter.check("1.2.3.4", 1, 1000)
        clock.now_ms += 1
        fresh = await limiter.check("1.2.3.4", 1, 1000)
        return limited, edge, fresh

    limited, edge, fresh = run(scenario())
    assert limited.limited is True
    assert edge.limited is True
    assert fresh.limited is False
    assert fresh.remaining == 0


def test_retry_after_rounds_up_and_is_at_least_one():
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(), clock=clock)

    async def scenario():
        await limiter.check("a", 1, 10_000)
        clock.now_ms += 8_500
        partial = await limiter.check("a", 1, 10_000)
        clock.now_ms += 1_500
        at_edge = await limiter.check("a", 1, 10_000)
        return partial, at_edge

    partial, at_edge = run(scenario())
    assert partial.retry_after_seconds == 2
    assert at_edge.retry_after_seconds == 1


def test_sources_and_buckets_are_independent():
    limiter = RateLimiter(InMemoryCounterStore(), clock=FakeClock())

    async def scenario():
        await limiter.check("a", 1, 60_000, bucket="login")
        other_source = await limiter.check("b", 1, 60_000, bucket="login")
        other_bucket = await limiter.check("a", 1, 60_000, bucket="contact_ip")
        same = await limiter.check("a", 1, 60_000, bucket="login")
        return other_source, other_bucket, same

    other_source, other_bucket, same = run(scenario())
    assert other_source.limited is False
    assert other_bucket.limited is False
    assert same.limited is True


def test_missing_address_shares_unknown_bucket():
    store = InMemoryCounterStore()
    limiter = RateLimiter(store, clock=FakeClock())

    async def scenario():
        await limiter.check(None, 1, 60_000)
        return await limiter.check("", 1, 60_000)

    assert run(scenario()).limited is True
    assert len(store) == 1


@settings(max_examples=50, deadline=None)
@given(limit=st.integers(min_value=1, max_value=20), extra=st.integers(min_value=0, max_value=20))
def test_exactly_limit_requests_pass_within_one_window(limit, extra):
    """For any limit, N+k back-to-back requests let exactly N through"""
    limiter = RateLimiter(InMemoryCounterStore(), clock=FakeClock())

    async def scenario():
        return [await limiter.check("x", limit, 60_000) for _ in range(limit + extra)]

    results = run(scenario())
    assert sum(1 for r in results if not r.limited) == limit
    assert all(r.retry_after_seconds >= 1 for r in results if r.limited)


@settings(max_examples=50, deadline=None)
@given(limit=st.integers(min_value=1, max_value=10), window_ms=st.integers(min_value=1, max_value=120_000))
def test_next_window_starts_fresh(limit, window_ms):
    clock = FakeClock()
    limiter = RateLimiter(InMemoryCounterStore(), clock=clock)

    async def scenario():
        for _ in range(limit):
            await limiter.check("x", limit, window_ms)
        over = await limiter.check("x", limit, window_ms)
        clock.now_ms += window_ms + 1
        after = await limiter.check("x", limit, window_ms)
        return over, after

    over, after = run(scenario())
    assert over.limited is True
    assert after.limited is False
