"""
rate_limit.py

TMDB quota protection shared by every worker and API process.
- SlidingWindowLimiter: Redis sorted set of request timestamps, one key per scope.
- with_backoff: retries local quota refusals and HTTP 429 answers with exponential
  backoff; any other error propagates on the first attempt.
When retries run out the scope is flagged as throttled in Redis for the UI.
"""
import time
import asyncio
import logging
from typing import Optional

from mediatrack.core.config import settings
from mediatrack.core.redis_client import get_redis

logger = logging.getLogger(__name__)


class RateLimitExceeded(Exception):
    """Local quota for a scope is used up for the current window."""

    def __init__(self, message: str, scope: str = None, retry_after: float = 0.0):
        super().__init__(message)
        self.scope = scope
        self.retry_after = retry_after


class SlidingWindowLimiter:
    """At most `limit` requests per `window` seconds for a scope."""

    def __init__(self, scope: str, limit: Optional[int] = None, window: Optional[float] = None):
        self.scope = scope
        self.limit = limit or settings.tmdb_rate_limit
        self.window = window or settings.tmdb_rate_window_seconds

    @property
    def key(self) -> str:
        return f"rate_limit:{self.scope}"

    async def acquire(self) -> bool:
        """Record one request. False when the window is already full.

        Fails open when Redis is unreachable.
        """
        now = time.time()
        try:
            pipe = get_redis().pipeline()
            pipe.zremrangebyscore(self.key, 0, now - self.window)
            pipe.zadd(self.key, {f"{now:.6f}": now})
            pipe.zcard(self.key)
            pipe.expire(self.key, int(self.window) + 1)
            _, _, count, _ = await pipe.execute()
        except Exception as e:
            logger.warning(f"Rate limiter unavailable for {self.scope}, allowing request: {e}")
            return True

        if count > self.limit:
            logger.warning(f"Rate limit reached for {self.scope}: {count}/{self.limit} in {self.window}s")
            return False
        return True

    async def check(self) -> None:
        if not await self.acquire():
            raise RateLimitExceeded(f"Rate limit exceeded for {self.scope}", scope=self.scope, retry_after=self.window)


def _is_rate_limited_response(exc: Exception) -> bool:
    return getattr(exc, "status_code", None) == 429


async def with_backoff(func, *args, max_retries: int = 5, limiter: Optional[SlidingWindowLimiter] = None,
                       max_delay: float = 30, **kwargs):
    """Call `func` under the limiter, sleeping 1, 2, 4... seconds after each throttled attempt."""
    delay = 1
    last_exception = None

    for attempt in range(max_retries):
        try:
            if limiter is not None:
                await limiter.check()
            return await func(*args, **kwargs)
        except Exception as e:
            if not isinstance(e, RateLimitExceeded) and not _is_rate_limited_response(e):
                raise
            last_exception = e
            logger.warning(f"Throttled on attempt {attempt + 1}/{max_retries}, sleeping {delay}s: {e}")
            await asyncio.sleep(delay)
            delay = min(delay * 2, max_delay)

    if limiter is not None:
        await mark_throttled(limiter.scope, str(last_exception))
    raise last_exception


async def mark_throttled(scope: str, reason: str):
    """Flag a scope as throttled for an hour so the UI can explain a stalled import."""
    key = f"import_throttled:{scope}"
    try:
        redis = get_redis()
        await redis.hset(key, mapping={"reason": reason, "timestamp": int(time.time())})
        await redis.expire(key, 3600)
    except Exception as e:
        logger.warning(f"Could not record throttling for {scope}: {e}")
    logger.error(f"Catalog requests for {scope} throttled: {reason}")
