"""
Rate limiting service using Redis
"""
from datetime import datetime, timedelta
from typing import Optional, Tuple
import redis.asyncio as redis

from engage_service.config import get_engage_settings


class RateLimiter:
    """
    Redis-based fixed-window rate limiter, one counter per user, endpoint
    and minute.
    """

    def __init__(self, client: Optional[redis.Redis] = None, per_minute: Optional[int] = None):
        settings = get_engage_settings()
        self.redis = client or redis.from_url(settings.redis_url, decode_responses=True)
        self.enabled = settings.rate_limit_enabled
        self.per_minute = per_minute or settings.rate_limit_per_minute

    @staticmethod
    def _key(user_id: str, endpoint: str, now: datetime) -> str:
        return f"ratelimit:minute:{user_id}:{endpoint}:{now.strftime('%Y%m%d%H%M')}"

    async def check_rate_limit(self, user_id: str, endpoint: str) -> Tuple[bool, Optional[int]]:
        """
        Check and count one request

        Args:
            user_id: Profile ID
            endpoint: Logical endpoint name

        Returns:
            (is_allowed, retry_after_seconds)
        """
        if not self.enabled:
            return True, None

        now = datetime.utcnow()
        key = self._key(user_id, endpoint, now)

        count = await self.redis.get(key)
        if count and int(count) >= self.per_minute:
            next_minute = (now + timedelta(minutes=1)).replace(second=0, microsecond=0)
            retry_after = max(1, int((next_minute - now).total_seconds()))
            return False, retry_after

        pipe = self.redis.pipeline()
        pipe.incr(key)
        pipe.expire(key, 60)
        await pipe.execute()

        return True, None


_rate_limiter: Optional[RateLimiter] = None


def get_rate_limiter() -> RateLimiter:
    """Get or create the rate limiter singleton."""
    global _rate_limiter
    if _rate_limiter is None:
        _rate_limiter = RateLimiter()
    return _rate_limiter
