import logging
import time
import uuid
from collections import OrderedDict, deque
from typing import Deque, Dict, Optional

import redis
import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RateLimiter:
    """Sliding-window rate limiter keyed by client.

    Memory is bounded: keys whose newest hit has left the window are evicted,
    and when more than ``max_keys`` clients are tracked the least recently
    seen ones are dropped first.
    """

    def __init__(
        self,
        max_requests: int = 120,
        window_s: float = 60.0,
        max_keys: int = 10_000,
    ):
        self.max_requests = max_requests
        self.window_s = window_s
        self.max_keys = max_keys
        self._hits: "OrderedDict[str, Deque[float]]" = OrderedDict()

    def _evict(self, now: float) -> None:
        """Drop stale keys from the least-recently-seen end."""
        cutoff = now - self.window_s
        while self._hits:
            key, hits = next(iter(self._hits.items()))
            if hits and hits[-1] > cutoff and len(self._hits) <= self.max_keys:
                break
            self._hits.popitem(last=False)

    def is_allowed(self, key: str = "default", now: Optional[float] = None) -> bool:
        """Record a hit for ``key`` and report whether it is within the limit."""
        now = time.monotonic() if now is None else now
        cutoff = now - self.window_s

        hits = self._hits.get(key)
        if hits is None:
            hits = deque()
            self._hits[key] = hits
        self._hits.move_to_end(key)
        while hits and hits[0] <= cutoff:
            hits.popleft()

        allowed = len(hits) < self.max_requests
        if allowed:
            hits.append(now)
        elif not hits:
            del self._hits[key]
        self._evict(now)
        return allowed

    def get_remaining(self, key: str = "default", now: Optional[float] = None) -> int:
        now = time.monotonic() if now is None else now
        hits = self._hits.get(key) or ()
        recent = sum(1 for t in hits if t > now - self.window_s)
        return max(0, self.max_requests - recent)

    @property
    def tracked_keys(self) -> int:
        return len(self._hits)

    def reset(self, key: Optional[str] = None) -> None:
        """Reset rate limit for key."""
        if key:
            self._hits.pop(key, None)
        else:
            self._hits.clear()


class DistributedRateLimiter:
    """Redis sorted-set sliding window, falling back to the local limiter."""

    def __init__(
        self,
        max_requests: int = 120,
        window_s: float = 60.0,
        max_keys: int = 10_000,
        redis_url: Optional[str] = None,
    ):
        self.max_requests = max_requests
        self.window_s = window_s
        self._local = RateLimiter(max_requests, window_s, max_keys)
        self._redis = aioredis.from_url(redis_url, decode_responses=True) if redis_url else None

    async def is_allowed(self, key: str = "default") -> bool:
        if self._redis is None:
            return self._local.is_allowed(key)
        try:
            return await self._redis_is_allowed(key)
        except redis.RedisError as e:
            logger.warning("redis rate limiter unavailable, using local: %s", e)
            return self._local.is_allowed(key)

    async def _redis_is_allowed(self, key: str) -> bool:
        now = time.time()
        bucket = f"rate:{key}"

        pipe = self._redis.pipeline()
        pipe.zremrangebyscore(bucket, 0, now - self.window_s)
        pipe.zcard(bucket)
        results = await pipe.execute()
        if int(results[1]) >= self.max_requests:
            return False

        pipe = self._redis.pipeline()
        pipe.zadd(bucket, {f"{now}:{uuid.uuid4().hex[:8]}": now})
        pipe.expire(bucket, int(self.window_s) + 1)
        await pipe.execute()
        return True

    async def close(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()

    def stats(self) -> Dict[str, object]:
        return {
            "backend": "redis" if self._redis is not None else "local",
            "tracked_keys": self._local.tracked_keys,
        }
