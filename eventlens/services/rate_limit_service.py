"""
Rate Limit Service

Fixed-window request counting in Redis: ``INCR`` the window key, set its
expiry on the first hit, and read ``PTTL`` for the reset time. When Redis is
missing or failing, the caller's ``fail_open`` choice (or the configured
default) decides whether the request passes.
"""

import logging
import time
from dataclasses import dataclass

import redis.asyncio as redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)

KEY_PREFIX = "rate_limit:"


@dataclass(frozen=True)
class RateLimitResult:
    success: bool
    remaining: int
    reset_at: float  # epoch seconds

    @property
    def retry_after(self) -> int:
        return max(0, int(self.reset_at - time.time()) + 1)


class RateLimiter:
    def __init__(self, client: redis.Redis | None, fail_open: bool = False) -> None:
        self.client = client
        self.fail_open = fail_open

    def _fallback(self, limit: int, window_seconds: int, fail_open: bool | None) -> RateLimitResult:
        allow = self.fail_open if fail_open is None else fail_open
        reset_at = time.time() + window_seconds
        if allow:
            return RateLimitResult(success=True, remaining=limit, reset_at=reset_at)
        return RateLimitResult(success=False, remaining=0, reset_at=reset_at)

    async def hit(
        self,
        identifier: str,
        limit: int,
        window_seconds: int,
        fail_open: bool | None = None,
    ) -> RateLimitResult:
        """Count one request for *identifier* in the current window."""
        if self.client is None:
            return self._fallback(limit, window_seconds, fail_open)

        key = f"{KEY_PREFIX}{identifier}"
        try:
            count = await self.client.incr(key)
            if count == 1:
                await self.client.expire(key, window_seconds)
            ttl_ms = await self.client.pttl(key)
        except (RedisError, OSError) as e:
            logger.error("Rate limit backend error for %s: %s", identifier, e)
            return self._fallback(limit, window_seconds, fail_open)

        reset_at = time.time() + (ttl_ms / 1000 if ttl_ms and ttl_ms > 0 else window_seconds)
        if count > limit:
            return RateLimitResult(success=False, remaining=0, reset_at=reset_at)
        return RateLimitResult(success=True, remaining=limit - count, reset_at=reset_at)


def create_redis_client(url: str | None) -> redis.Redis | None:
    """Build a lazy Redis client; connections are opened on first use."""
    if not url:
        return None
    return redis.from_url(url, encoding="utf-8", decode_responses=True, socket_connect_timeout=2)
