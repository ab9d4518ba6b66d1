"""
Fixed-window rate limiters for the math-validation service.

Two backends share one contract:
- RateLimiter: in-process window guarded by an asyncio.Lock.
- RedisRateLimiter: window counter in Redis, shared by every backend instance.

try_acquire() resets the window when it has elapsed, then either increments
and allows or refuses without touching state further.
"""

import asyncio
import time
import redis.asyncio as redis
from typing import Callable, Optional
from dataclasses import dataclass
import logging

logger = logging.getLogger(__name__)

# Runs as one server-side step so no other caller ever reads a count above the quota
ACQUIRE_SCRIPT = """
local count = redis.call("INCR", KEYS[1])
if redis.call("TTL", KEYS[1]) < 0 then
    redis.call("EXPIRE", KEYS[1], ARGV[2])
end
if count > tonumber(ARGV[1]) then
    redis.call("DECR", KEYS[1])
    return 0
end
return 1
"""


@dataclass(frozen=True)
class RateLimitConfig:
    """Quota for one window."""
    max_requests: int = 30    # requests per window
    window_seconds: int = 60  # 1 minute window


class RateLimiter:
    """
    In-process fixed window.

    The reset-and-increment step runs under a lock so concurrent validations
    (e.g. two canvases in one collaborative session) cannot both squeeze
    into the last slot.
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._lock = asyncio.Lock()
        self._count = 0
        self._window_start = clock()

    def _roll_window(self, now: float) -> None:
        if now - self._window_start >= self.config.window_seconds:
            self._count = 0
            self._window_start = now

    async def try_acquire(self) -> bool:
        """Take one slot from the current window if one is free."""
        async with self._lock:
            self._roll_window(self._clock())
            if self._count >= self.config.max_requests:
                logger.warning(
                    f"[RateLimit] Quota exhausted ({self.config.max_requests}/{self.config.window_seconds}s)"
                )
                return False
            self._count += 1
            return True

    async def remaining(self) -> int:
        async with self._lock:
            self._roll_window(self._clock())
            return max(0, self.config.max_requests - self._count)

    async def get_quota_status(self) -> dict:
        """
        Get current window status.

        Returns dict with:
        - remaining: slots left
        - limit: max requests per window
        - reset_in_seconds: seconds until the window rolls over
        """
        async with self._lock:
            now = self._clock()
            self._roll_window(now)
            reset_in = self.config.window_seconds - (now - self._window_start)
            return {
                "remaining": max(0, self.config.max_requests - self._count),
                "limit": self.config.max_requests,
                "window_seconds": self.config.window_seconds,
                "reset_in_seconds": max(0, int(reset_in)),
                "backend": "memory"
            }

    async def reset(self) -> None:
        """Start a fresh window (tests and admin use)."""
        async with self._lock:
            self._count = 0
            self._window_start = self._clock()
        logger.info("[RateLimit] Window reset")

    async def close(self) -> None:
        return None


class RedisRateLimiter:
    """
    Fixed window backed by Redis.

    Keys used:
    - {prefix}:count  → requests issued in the current window (expires with it)
    """

    def __init__(
        self,
        redis_url: str,
        config: Optional[RateLimitConfig] = None,
        key_prefix: str = "rate_limit:validation",
        client: Optional["redis.Redis"] = None
    ):
        self.redis_url = redis_url
        self.config = config or RateLimitConfig()
        self.key_prefix = key_prefix
        self._client: Optional[redis.Redis] = client

    @property
    def _count_key(self) -> str:
        return f"{self.key_prefix}:count"

    async def connect(self) -> None:
        """Initialize Redis connection."""
        if self._client is None:
            self._client = redis.from_url(
                self.redis_url,
                encoding="utf-8",
                decode_responses=True
            )
        # Test connection
        await self._client.ping()
        logger.info("Rate limiter connected to Redis")

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_client(self) -> "redis.Redis":
        if not self._client:
            raise RuntimeError("Rate limiter not connected. Call connect() first.")
        return self._client

    async def try_acquire(self) -> bool:
        client = self._require_client()
        window = self.config.window_seconds

        # The key vanishing is the window reset
        allowed = await client.eval(ACQUIRE_SCRIPT, 1, self._count_key, self.config.max_requests, window)

        if not int(allowed):
            logger.warning(
                f"[RateLimit] Quota exhausted ({self.config.max_requests}/{window}s, redis)"
            )
            return False
        return True

    async def remaining(self) -> int:
        client = self._require_client()
        current = await client.get(self._count_key)
        used = int(current) if current else 0
        return max(0, self.config.max_requests - used)

    async def get_quota_status(self) -> dict:
        client = self._require_client()

        pipe = client.pipeline()
        pipe.get(self._count_key)
        pipe.ttl(self._count_key)
        results = await pipe.execute()

        used = int(results[0]) if results[0] else 0
        ttl = int(results[1]) if results[1] and int(results[1]) > 0 else 0

        return {
            "remaining": max(0, self.config.max_requests - used),
            "limit": self.config.max_requests,
            "window_seconds": self.config.window_seconds,
            "reset_in_seconds": ttl,
            "backend": "redis"
        }

    async def reset(self) -> None:
        client = self._require_client()
        await client.delete(self._count_key)
        logger.info("[RateLimit] Window reset (redis)")


async def create_rate_limiter(
    redis_url: str,
    config: Optional[RateLimitConfig] = None
):
    """
    Build the limiter for the configured backend.

    Falls back to the in-process window when Redis is not configured or
    cannot be reached.
    """
    if redis_url:
        limiter = RedisRateLimiter(redis_url, config)
        try:
            await limiter.connect()
            return limiter
        except (redis.RedisError, OSError) as e:
            logger.warning(f"Rate limiter unavailable (Redis connection failed): {e}")
    return RateLimiter(config)
