import asyncio

import pytest

from mediatrack.services import rate_limit
from mediatrack.services.rate_limit import RateLimitExceeded, SlidingWindowLimiter, with_backoff


class FakePipeline:
    def __init__(self, count):
        self.count = count

    def __getattr__(self, name):
        return lambda *args, **kwargs: self

    async def execute(self):
        return [0, 1, self.count, True]


class FakeRedis:
    def __init__(self, count=1, broken=False):
        self.count = count
        self.broken = broken

    def pipeline(self):
        if self.broken:
            raise ConnectionError("redis down")
        return FakePipeline(self.count)


def test_limiter_allows_until_window_is_full(monkeypatch):
    limiter = SlidingWindowLimiter("tmdb", limit=40, window=10)

    monkeypatch.setattr(rate_limit, "get_redis", lambda: FakeRedis(count=40))
    assert asyncio.run(limiter.acquire()) is True

    monkeypatch.setattr(rate_limit, "get_redis", lambda: FakeRedis(count=41))
    assert asyncio.run(limiter.acquire()) is False
    with pytest.raises(RateLimitExceeded) as exc:
        asyncio.run(limiter.check())
    assert exc.value.scope == "tmdb"


def test_limiter_fails_open_without_redis(monkeypatch):
    monkeypatch.setattr(rate_limit, "get_redis", lambda: FakeRedis(broken=True))
    assert asyncio.run(SlidingWindowLimiter("tmdb").acquire()) is True


def test_backoff_propagates_other_errors_immediately():
    calls = []

    async def boom():
        calls.append(1)
        raise ValueError("bad payload")

    with pytest.raises(ValueError):
        asyncio.run(with_backoff(boom, max_retries=3))
    assert calls == [1]


def test_backoff_returns_the_first_success():
    async def ok(value):
        return value * 2

    assert asyncio.run(with_backoff(ok, 21)) == 42
