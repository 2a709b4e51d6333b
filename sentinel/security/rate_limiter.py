#!/usr/bin/env python3
"""
🚦 Fixed-window rate limiter

check() answers "has this source exceeded N requests in the current window?"
for any named bucket (the gate, login, PIN check, contact form). Each bucket
keys its own windows, so limits on one route never consume another's quota.
"""

import math
import time
from typing import Callable, Optional

import structlog
from fastapi import HTTPException, Request, status

from sentinel.models import RateLimitResult
from sentinel.security.counter_store import CounterStore, InMemoryCounterStore
from sentinel.security.metrics import rate_limited_requests

logger = structlog.get_logger(__name__)

UNKNOWN_SOURCE = "unknown"


def _now_ms() -> int:
    return int(time.time() * 1000)


class RateLimiter:

    def __init__(self, store: Optional[CounterStore] = None, clock: Callable[[], int] = _now_ms):
        self.store = store or InMemoryCounterStore()
        self.clock = clock

    async def check(self, source_address: Optional[str], limit: int, window_ms: int,
                    bucket: str = "global") -> RateLimitResult:
        # All unidentified clients share one quota
        source = source_address or UNKNOWN_SOURCE
        now = self.clock()
        count, window_start = await self.store.hit(f"{bucket}:{source}", now, window_ms)
        reset_at = window_start + window_ms

        if count > limit:
            retry_after = max(1, math.ceil((reset_at - now) / 1000))
            rate_limited_requests.labels(bucket=bucket).inc()
            logger.warning(f"Rate limit exceeded for {source} on {bucket}: {count}/{limit}")
            return RateLimitResult(
                limited=True,
                retry_after_seconds=retry_after,
                limit=limit,
                remaining=0,
                reset_at_ms=reset_at,
            )

        return RateLimitResult(
            limited=False,
            retry_after_seconds=0,
            limit=limit,
            remaining=max(limit - count, 0),
            reset_at_ms=reset_at,
        )


def get_client_ip(request: Request) -> str:
    """Best-effort client address; proxies first, then the socket peer"""
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        first = forwarded_for.split(",")[0].strip()
        if first:
            return first

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    return request.client.host if request.client else UNKNOWN_SOURCE


def rate_limit(bucket: str, limit: int, window_ms: int,
               key: Callable[[Request], str] = get_client_ip,
               message: str = "Too many requests, please try again later"):
    """
    Per-endpoint limit as a FastAPI dependency, independent of the gate's
    own limit and of burst detection. Raises 429 with Retry-After.
    """

    async def dependency(request: Request) -> RateLimitResult:
        limiter: RateLimiter = request.app.state.rate_limiter
        result = await limiter.check(key(request), limit, window_ms, bucket=bucket)
        if result.limited:
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=message,
                headers=result.headers,
            )
        return result

    return dependency
