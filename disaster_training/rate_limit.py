"""
Fixed-window request limiter backed by Redis.

One counter per client IP per window: ratelimit:<ip>:<window index>. The
counter expires with its window, so no cleanup is needed. When Redis is
unreachable requests are let through and the failure is logged.
"""
from typing import Optional, Tuple
import logging
import time

from redis.asyncio import Redis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RateLimiter:
    def __init__(self, redis: Redis, window_sec: int, max_requests: int):
        self.redis = redis
        self.window_sec = window_sec
        self.max_requests = max_requests

    @classmethod
    def from_url(cls, url: str, window_sec: int, max_requests: int) -> "RateLimiter":
        redis = Redis.from_url(url, socket_connect_timeout=1.0, socket_timeout=1.0, decode_responses=True)
        return cls(redis, window_sec, max_requests)

    def _key(self, client_id: str, now: Optional[float] = None) -> str:
        window = int((now if now is not None else time.time()) // self.window_sec)
        return f"ratelimit:{client_id}:{window}"

    async def hit(self, client_id: str, now: Optional[float] = None) -> Tuple[bool, int]:
        """
        Count one request. Returns (allowed, remaining).
        """
        key = self._key(client_id, now)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(key)
                pipe.expire(key, self.window_sec)
                count, _ = await pipe.execute()
        except RedisError as e:
            logger.warning(f"Rate limiter unavailable, allowing request: {e}")
            return True, self.max_requests
        return count <= self.max_requests, max(self.max_requests - count, 0)

    async def close(self) -> None:
        await self.redis.aclose()
