#!/usr/bin/env python3
"""
🧮 Counter stores for fixed-window rate limiting

Two interchangeable backends behind one interface:

- InMemoryCounterStore: process-local dict. Each instance of the service
  gets its own quota, and concurrent requests from one source can lose
  updates (read-modify-write is not atomic). Fine for a single instance,
  development and tests.
- RedisCounterStore: INCR/PTTL in one pipeline, shared by every instance
  pointed at the same Redis.

Selected by RATE_LIMIT_BACKEND, see build_counter_store().
"""

from dataclasses import dataclass
from typing import Dict, Tuple

import redis.asyncio as redis
import structlog

from sentinel.core.config import Settings

logger = structlog.get_logger(__name__)


@dataclass
class RateWindowState:
    count: int
    window_start_ms: int


class CounterStore:
    """Counts hits for a key inside a fixed window"""

    async def hit(self, key: str, now_ms: int, window_ms: int) -> Tuple[int, int]:
        """
        Register one hit and return ``(count, window_start_ms)`` for the
        window the hit landed in. A window that has expired
        (``now - window_start > window_ms``) restarts at count 1.
        """
        raise NotImplementedError

    async def reset(self, key: str):
        raise NotImplementedError

    async def close(self):
        pass


class InMemoryCounterStore(CounterStore):

    def __init__(self):
        self._windows: Dict[str, RateWindowState] = {}

    async def hit(self, key: str, now_ms: int, window_ms: int) -> Tuple[int, int]:
        state = self._windows.get(key)
        if state is None or now_ms - state.window_start_ms > window_ms:
            state = RateWindowState(count=1, window_start_ms=now_ms)
            self._windows[key] = state
            return state.count, state.window_start_ms

        state.count += 1
        return state.count, state.window_start_ms

    async def reset(self, key: str):
        self._windows.pop(key, None)

    def __len__(self) -> int:
        return len(self._windows)


class RedisCounterStore(CounterStore):

    def __init__(self, client: redis.Redis, key_prefix: str = "rate_limit"):
        self.redis = client
        self.key_prefix = key_prefix

    @classmethod
    def from_url(cls, url: str, key_prefix: str = "rate_limit") -> "RedisCounterStore":
        client = redis.from_url(
            url,
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
        )
        return cls(client, key_prefix)

    def _key(self, key: str) -> str:
        return f"{self.key_prefix}:{key}"

    async def hit(self, key: str, now_ms: int, window_ms: int) -> Tuple[int, int]:
        redis_key = self._key(key)
        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.incr(redis_key)
            pipe.pttl(redis_key)
            count, ttl_ms = await pipe.execute()

        # First hit of a window (or a key that lost its TTL): start the window now
        if ttl_ms is None or ttl_ms < 0:
            await self.redis.pexpire(redis_key, window_ms)
            ttl_ms = window_ms

        window_start_ms = now_ms - (window_ms - min(int(ttl_ms), window_ms))
        return int(count), window_start_ms

    async def reset(self, key: str):
        await self.redis.delete(self._key(key))

    async def close(self):
        await self.redis.close()


def build_counter_store(settings: Settings) -> CounterStore:
    backend = settings.rate_limit_backend.lower()
    if backend == "redis":
        logger.info(f"Rate limit counters shared through Redis at {settings.redis_url}")
        return RedisCounterStore.from_url(settings.redis_url, settings.redis_key_prefix)
    if backend != "memory":
        raise ValueError(f"Unsupported RATE_LIMIT_BACKEND: {settings.rate_limit_backend}")
    logger.info("Rate limit counters kept in process memory (per instance quotas)")
    return InMemoryCounterStore()
