from __future__ import annotations

import hashlib
import time
import uuid
from typing import Tuple

import redis.asyncio as aioredis
from redis import Redis


class RedisCache:
    """Thin Redis wrapper holding shared sliding-window attempt logs."""

    # Atomic prune + count + record over a sorted set of attempt timestamps
    _SLIDING_WINDOW_SCRIPT = """
local key = KEYS[1]
local now = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local limit = tonumber(ARGV[3])
local member = ARGV[4]

redis.call('ZREMRANGEBYSCORE', key, '-inf', now - window)
local count = redis.call('ZCARD', key)

if count >= limit then
  local oldest = redis.call('ZRANGE', key, 0, 0, 'WITHSCORES')
  local retry_after = math.ceil(tonumber(oldest[2]) + window - now)
  return {0, count, math.max(retry_after, 1)}
end

redis.call('ZADD', key, now, member)
redis.call('EXPIRE', key, math.ceil(window))
return {1, count + 1, 0}
"""

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = aioredis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._sliding_window = self.client.register_script(self._SLIDING_WINDOW_SCRIPT)

    @staticmethod
    def _normalize_rate_key(key: str) -> str:
        """Hash key components so delimiters in client input cannot collide."""

        digest = hashlib.sha256(key.encode()).hexdigest()
        return f"rate:sensitive:{digest}"

    @staticmethod
    def _parse_result(result) -> Tuple[bool, int]:
        allowed, _count, retry_after = result
        return bool(int(allowed)), int(retry_after or 0)

    def verify_connection(self) -> None:
        """Assert Redis connectivity before enabling the shared limiter."""

        # Short-lived sync client so the async client is not bound to a
        # temporary event loop during startup checks.
        sync_client = Redis.from_url(self.redis_url, decode_responses=True)
        try:
            sync_client.ping()
        finally:
            sync_client.close()

    async def check_sliding_window(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]:
        """Record an attempt unless ``limit`` attempts already fall in the window.

        Returns ``(allowed, retry_after_seconds)``.
        """
        result = await self._sliding_window(
            keys=[self._normalize_rate_key(key)],
            args=[time.time(), window_seconds, limit, uuid.uuid4().hex],
        )
        return self._parse_result(result)

    async def close(self) -> None:
        """Close Redis connection pool. Call when shutting down or resetting runtime."""
        await self.client.aclose()
        await self.client.connection_pool.disconnect()


class SyncRedisCache:
    """Synchronous Redis wrapper for use in tests.

    Uses a synchronous client internally to avoid event loop binding issues in
    pytest, but exposes the same awaitable surface as RedisCache.
    """

    def __init__(self, redis_url: str, *, socket_timeout: float = 5.0):
        self.redis_url = redis_url
        self.client = Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_timeout=socket_timeout,
            socket_connect_timeout=socket_timeout,
        )
        self._sliding_window = self.client.register_script(
            RedisCache._SLIDING_WINDOW_SCRIPT
        )

    def verify_connection(self) -> None:
        self.client.ping()

    async def check_sliding_window(
        self, key: str, limit: int, window_seconds: int
    ) -> Tuple[bool, int]:
        result = self._sliding_window(
            keys=[RedisCache._normalize_rate_key(key)],
            args=[time.time(), window_seconds, limit, uuid.uuid4().hex],
        )
        return RedisCache._parse_result(result)

    async def close(self) -> None:
        self.client.close()
