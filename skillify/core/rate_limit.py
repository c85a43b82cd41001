from fastapi import Depends, Request
from loguru import logger

from skillify.core.cache import KeyValueCache, get_cache
from skillify.core.errors import RateLimited, UpstreamError
from skillify.core.settings import settings


class RateLimiter:
    """
    Fixed-window limiter keyed by client IP: rate_limit:<scope>:<ip>.
    Fails open when the cache is unavailable.
    """

    def __init__(self, scope: str, max_requests: int | None = None, window_seconds: int | None = None):
        self.scope = scope
        self.max_requests = max_requests or settings.RATE_LIMIT_MAX_REQUESTS
        self.window_seconds = window_seconds or settings.RATE_LIMIT_WINDOW_SECONDS

    async def __call__(self, request: Request, cache: KeyValueCache = Depends(get_cache)):
        identity = request.client.host if request.client else "anonymous"
        key = f"rate_limit:{self.scope}:{identity}"
        try:
            current = await cache.incr_window(key, self.window_seconds)
            if current <= self.max_requests:
                return
            ttl = await cache.ttl(key)
        except UpstreamError as e:
            logger.warning(f"Rate limit check skipped: {e.message}")
            return

        raise RateLimited(f"Too many requests. Try again after {max(ttl, 0)} seconds.")
