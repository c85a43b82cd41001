# skillify/core/cache.py
from typing import Optional

from fastapi import Request
from loguru import logger
from redis.asyncio import Redis
from redis.exceptions import RedisError

from skillify.core.errors import UpstreamError
from skillify.core.settings import settings


class KeyValueCache:
    """
    Thin async wrapper around Redis:
    - get / set with TTL / delete / keys_matching (SCAN MATCH)
    - incr / expire / ttl for the rate limiter
    Every Redis failure (timeouts included) is raised as UpstreamError;
    callers decide whether to swallow it.
    """

    def __init__(self, redis: Redis):
        self.redis = redis

    @classmethod
    def from_url(cls, url: str | None = None) -> "KeyValueCache":
        client = Redis.from_url(
            url or settings.REDIS_URL,
            decode_responses=True,
            socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
            socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
        )
        return cls(client)

    async def get(self, key: str) -> Optional[str]:
        try:
            return await self.redis.get(key)
        except RedisError as e:
            raise UpstreamError(f"Cache get failed for {key}: {e}") from e

    async def set(self, key: str, value: str, ttl_seconds: int) -> None:
        try:
            await self.redis.set(key, value, ex=ttl_seconds)
        except RedisError as e:
            raise UpstreamError(f"Cache set failed for {key}: {e}") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self.redis.delete(*keys)
        except RedisError as e:
            raise UpstreamError(f"Cache delete failed: {e}") from e

    async def keys_matching(self, pattern: str) -> list[str]:
        try:
            return [key async for key in self.redis.scan_iter(match=pattern, count=500)]
        except RedisError as e:
            raise UpstreamError(f"Cache scan failed for {pattern}: {e}") from e

    async def incr_window(self, key: str, seconds: int) -> int:
        """INCR a counter whose TTL is set in the same transaction as its creation."""
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.set(key, 0, ex=seconds, nx=True)
                pipe.incr(key)
                _, count = await pipe.execute()
            return int(count)
        except RedisError as e:
            raise UpstreamError(f"Cache incr failed for {key}: {e}") from e

    async def ttl(self, key: str) -> int:
        try:
            return await self.redis.ttl(key)
        except RedisError as e:
            raise UpstreamError(f"Cache ttl failed for {key}: {e}") from e

    async def aclose(self) -> None:
        try:
            await self.redis.aclose()
        except RedisError as e:
            logger.warning(f"Redis close error: {e}")


def get_cache(request: Request) -> KeyValueCache:
    """Cache client built once in the app lifespan."""
    return request.app.state.cache
