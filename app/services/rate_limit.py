from __future__ import annotations

import time
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol

import redis.asyncio as redis
from fastapi import HTTPException

from app.core.config import settings
from app.core.identity import Identity, owner_key


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    remaining: int
    reset_seconds: int


class RateLimiter(Protocol):
    async def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult: ...


class FixedWindowRateLimiter:
    """Counts hits per key in fixed windows; the counter key expires with its window."""

    def __init__(self, redis_url: str):
        self.r = redis.from_url(redis_url, decode_responses=True)

    async def allow(self, *, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = int(time.time())
        window = now // window_seconds
        rkey = f"rl:{key}:{window}"

        async with self.r.pipeline(transaction=True) as pipe:
            pipe.incr(rkey)
            # the window index is part of the key, so refreshing the TTL never extends a window
            pipe.expire(rkey, window_seconds)
            hits, _ = await pipe.execute()

        reset = window_seconds - (now % window_seconds)
        return RateLimitResult(allowed=hits <= limit, remaining=max(0, limit - hits), reset_seconds=reset)


async def enforce_report_quota(limiter: RateLimiter, identity: Identity) -> RateLimitResult:
    # anonymous callers share one bucket
    result = await limiter.allow(
        key=f"reports:{owner_key(identity)}",
        limit=settings.report_rate_limit,
        window_seconds=settings.report_rate_window_seconds,
    )
    if not result.allowed:
        raise HTTPException(
            status_code=429,
            detail="Too many report requests",
            headers={"Retry-After": str(result.reset_seconds)},
        )
    return result


@lru_cache(maxsize=1)
def get_rate_limiter() -> RateLimiter:
    return FixedWindowRateLimiter(settings.redis_url)
