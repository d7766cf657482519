import pytest

from catalog_rag.config import RateLimitConfig
from catalog_rag.ratelimit import SlidingWindowRateLimiter


class _Clock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


@pytest.mark.asyncio
async def test_sliding_window_limits_per_tenant_client_and_action() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(RateLimitConfig(max_requests=2, window_seconds=60), clock=clock)

    assert (await limiter.check("t1", "10.0.0.1", "search")).allowed
    assert (await limiter.check("t1", "10.0.0.1", "search")).allowed
    denied = await limiter.check("t1", "10.0.0.1", "search")

    assert not denied.allowed
    assert "search" in denied.reason
    assert (await limiter.check("t1", "10.0.0.2", "search")).allowed
    assert (await limiter.check("t2", "10.0.0.1", "search")).allowed
    assert (await limiter.check("t1", "10.0.0.1", "knowledge")).allowed

    clock.now += 60
    assert (await limiter.check("t1", "10.0.0.1", "search")).allowed


@pytest.mark.asyncio
async def test_expired_client_windows_are_dropped() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(RateLimitConfig(max_requests=5, window_seconds=60), clock=clock)

    for index in range(1000):
        assert (await limiter.check("t1", f"10.0.{index // 256}.{index % 256}", "search")).allowed

    clock.now += 10_000
    assert (await limiter.check("t1", "10.9.9.9", "search")).allowed

    assert len(limiter._windows) <= 1


@pytest.mark.asyncio
async def test_sweep_keeps_windows_still_inside_the_horizon() -> None:
    clock = _Clock()
    limiter = SlidingWindowRateLimiter(RateLimitConfig(max_requests=1, window_seconds=60), clock=clock)

    assert (await limiter.check("t1", "10.0.0.1", "search")).allowed
    clock.now = 30
    assert (await limiter.check("t1", "10.0.0.2", "search")).allowed
    clock.now = 70

    # The first window expired; the second one is still active and must deny.
    assert (await limiter.check("t1", "10.0.0.1", "search")).allowed
    assert not (await limiter.check("t1", "10.0.0.2", "search")).allowed
