"""
ClaimFlow - Rate Limiter

Fixed-window request counters kept in Redis so every instance of the API
shares the same budget per actor. Keys expire with their window.

Key layout: ``ratelimit:{scope}:{actor}:{window_index}``
"""

import logging
import time
from typing import Optional

import redis.asyncio as redis
from fastapi import Depends

from app.config import get_settings
from app.dependencies import SessionUser, require_session
from app.utils.error_handling import RateLimitException

logger = logging.getLogger(__name__)
settings = get_settings()


class RateLimiter:
    """Redis-based fixed window rate limiter."""

    PREFIX = "ratelimit"

    def __init__(
        self,
        redis_url: Optional[str] = None,
        max_requests: Optional[int] = None,
        window_seconds: Optional[int] = None,
    ):
        self.redis_url = redis_url or settings.redis_url
        self.max_requests = max_requests or settings.rate_limit_max_requests
        self.window_seconds = window_seconds or settings.rate_limit_window_seconds
        self._client: Optional[redis.Redis] = None

    async def get_client(self) -> redis.Redis:
        """Get or create Redis client."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def close(self):
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _key(self, scope: str, actor: str, window_index: int) -> str:
        return f"{self.PREFIX}:{scope}:{actor}:{window_index}"

    async def hit(self, scope: str, actor: str, now: Optional[float] = None) -> int:
        """
        Count one request and return the number of requests in the current
        window. When Redis is unreachable the request is allowed (returns 0).
        """
        now = time.time() if now is None else now
        window_index = int(now // self.window_seconds)
        key = self._key(scope, actor, window_index)
        try:
            client = await self.get_client()
            count = await client.incr(key)
            if count == 1:
                await client.expire(key, self.window_seconds)
            return count
        except Exception as e:
            logger.warning(f"Rate limiter unavailable for {key}, allowing request: {e}")
            return 0

    async def check(self, scope: str, actor: str, now: Optional[float] = None) -> None:
        """Raise RateLimitException when the actor exceeded the window budget."""
        now = time.time() if now is None else now
        count = await self.hit(scope, actor, now)
        if count > self.max_requests:
            retry_after = self.window_seconds - int(now % self.window_seconds)
            logger.info(f"Rate limit exceeded for {actor} on {scope} ({count}/{self.max_requests})")
            raise RateLimitException(retry_after=max(retry_after, 1))


# Global rate limiter instance
rate_limiter = RateLimiter()


def get_rate_limiter() -> RateLimiter:
    """Get the global rate limiter instance."""
    return rate_limiter


def rate_limit(scope: str):
    """
    Dependency factory limiting mutating routes per authenticated actor.

    Usage:
        @router.post("/reimburse", dependencies=[Depends(rate_limit("finance:reimburse"))])
    """
    async def dependency(
        session: SessionUser = Depends(require_session),
        limiter: RateLimiter = Depends(get_rate_limiter),
    ) -> None:
        if not settings.rate_limit_enabled:
            return
        await limiter.check(scope, str(session.user_id))

    return dependency
