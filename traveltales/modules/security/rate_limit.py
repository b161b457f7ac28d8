import logging
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Dict, Optional

from ...clock import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RateLimitPolicy:
    """At most ``limit`` requests per ``window_seconds`` for one identity."""

    name: str
    limit: int
    window_seconds: int


@dataclass
class RateLimitStatus:
    allowed: bool
    limit: int
    remaining: int
    reset_at: datetime
    retry_after: int = 0

    def headers(self) -> Dict[str, str]:
        """Standard RateLimit-* response headers (reset as epoch seconds)."""
        return {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(int(self.reset_at.timestamp())),
        }


class RateLimiter:
    """
    Sliding-window log limiter on Redis sorted sets.

    Each identity gets ``ratelimit:{policy}:{identity}`` whose members are
    individual requests scored by their timestamp in milliseconds.
    """

    def __init__(self, redis_client, policies: Dict[str, RateLimitPolicy], clock: Clock = utc_now):
        self.redis = redis_client
        self.policies = dict(policies)
        self.clock = clock

    async def hit(self, policy_name: str, identity: str) -> RateLimitStatus:
        """
        Record one request and report whether it is within the limit.

        Logic:
        1. Drop entries older than the window
        2. Add this request, count the window, read the oldest entry
        3. If over the limit, remove this request again so rejected
           attempts do not push the reset time out
        """
        policy = self.policies[policy_name]
        key = f"ratelimit:{policy.name}:{identity}"
        now = self.clock()
        now_ms = int(now.timestamp() * 1000)
        window_ms = policy.window_seconds * 1000
        member = f"{now_ms}:{uuid.uuid4().hex}"

        async with self.redis.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(key, 0, now_ms - window_ms)
            pipe.zadd(key, {member: now_ms})
            pipe.zcard(key)
            pipe.zrange(key, 0, 0, withscores=True)
            pipe.expire(key, policy.window_seconds)
            _, _, count, oldest, _ = await pipe.execute()

        allowed = count <= policy.limit
        if not allowed:
            await self.redis.zrem(key, member)
            logger.warning(f"Rate limit '{policy.name}' exceeded for {identity[:16]}")

        oldest_ms = int(oldest[0][1]) if oldest else now_ms
        reset_at = datetime.fromtimestamp((oldest_ms + window_ms) / 1000, tz=UTC)
        remaining = max(policy.limit - count, 0)
        # Seconds until the oldest counted request leaves the window
        retry_after = max(int((reset_at - now).total_seconds() + 0.999), 1)
        return RateLimitStatus(allowed, policy.limit, remaining, reset_at, retry_after)

    async def reset(self, policy_name: str, identity: Optional[str] = None) -> None:
        """Forget recorded requests for one identity, or for the whole policy."""
        policy = self.policies[policy_name]
        if identity is not None:
            await self.redis.delete(f"ratelimit:{policy.name}:{identity}")
            return
        async for key in self.redis.scan_iter(match=f"ratelimit:{policy.name}:*"):
            await self.redis.delete(key)
