# ============================================================================
# MarsVista - API Rate Limit Service
# ============================================================================
"""
Tiered hourly + daily request quotas per caller.

Called once per inbound API request, before any query work. Every check
increments both the caller's hourly and daily counters exactly once, allowed
or not, and the request is admitted only if both counters are within their
tier's limits. The HTTP layer turns the decision into headers/status codes.

Counters live in Redis as fixed windows:

    ratelimit:hourly:{caller_id}:{YYYYMMDDHH}   expires at the end of the hour
    ratelimit:daily:{caller_id}:{YYYYMMDD}      expires at the end of the day

Both increments run inside one Lua script, so concurrent requests for the
same caller can never both observe the same count. If Redis is unreachable
the service logs a warning and uses an in-process store with the same
semantics under a mutex, retrying Redis after a short cool-down.

Usage:
    from marsvista.core.ops.rate_limit_service import rate_limit_service

    decision = await rate_limit_service.check(api_key_id, tier="free")
    if not decision.allowed:
        ...  # 429 with decision.hourly_reset_at / decision.daily_reset_at
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError

from marsvista.config import settings

logger = logging.getLogger("marsvista.ops.rate_limit")

KEY_PREFIX = "ratelimit"

# Seconds to wait before trying Redis again after a failure
REDIS_RETRY_COOLDOWN = 30.0

# KEYS: counter keys; ARGV: matching expiry instants (unix ms). Returns new counts.
INCREMENT_SCRIPT = """
local counts = {}
for i, key in ipairs(KEYS) do
    local count = redis.call('INCR', key)
    if count == 1 then
        redis.call('PEXPIREAT', key, ARGV[i])
    end
    counts[i] = count
end
return counts
"""


@dataclass
class RateLimitDecision:
    """
    Result of one quota check.

    ``*_remaining`` is None for an unlimited window and never negative.
    ``*_reset_at`` is the UTC instant the current window ends.
    """

    allowed: bool
    tier: str
    hourly_limit: int
    daily_limit: int
    hourly_count: int
    daily_count: int
    hourly_remaining: Optional[int]
    daily_remaining: Optional[int]
    hourly_reset_at: datetime
    daily_reset_at: datetime


def window_bounds(now: datetime) -> Tuple[datetime, datetime, datetime, datetime]:
    """Return (hour_start, hour_end, day_start, day_end) in UTC for ``now``."""
    now = now.astimezone(timezone.utc) if now.tzinfo else now.replace(tzinfo=timezone.utc)
    hour_start = now.replace(minute=0, second=0, microsecond=0)
    day_start = hour_start.replace(hour=0)
    return hour_start, hour_start + timedelta(hours=1), day_start, day_start + timedelta(days=1)


def _within(count: int, limit: int) -> bool:
    return limit < 0 or count <= limit


def _remaining(count: int, limit: int) -> Optional[int]:
    if limit < 0:
        return None
    return max(limit - count, 0)


class MemoryCounterStore:
    """
    In-process fixed-window counters.

    Increment-and-read of all keys in one call happens under a single lock,
    so it is atomic across threads and tasks. Expired windows are reset
    lazily on access.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._counters: Dict[str, Tuple[int, float]] = {}
        self._lock = threading.Lock()
        self._clock = clock

    def increment(self, keys: Sequence[str], expire_at: Sequence[float]) -> List[int]:
        now = self._clock()
        counts: List[int] = []
        with self._lock:
            for key, expiry in zip(keys, expire_at):
                count, current_expiry = self._counters.get(key, (0, expiry))
                if current_expiry <= now:
                    count, current_expiry = 0, expiry
                count += 1
                self._counters[key] = (count, current_expiry)
                counts.append(count)
            if len(self._counters) > 10_000:
                self._purge(now)
        return counts

    def _purge(self, now: float) -> None:
        for key in [k for k, (_, exp) in self._counters.items() if exp <= now]:
            del self._counters[key]

    def clear(self) -> None:
        with self._lock:
            self._counters.clear()


class RateLimitService:
    """
    Quota decision engine.

    Attributes:
        tiers: tier name -> (hourly_limit, daily_limit); -1 means unlimited
    """

    def __init__(
        self,
        tiers: Optional[Dict[str, Sequence[int]]] = None,
        redis_url: Optional[str] = None,
        use_redis: bool = True,
        clock: Optional[Callable[[], datetime]] = None,
        redis_timeout: Optional[float] = None,
    ):
        self.tiers: Dict[str, Tuple[int, int]] = {
            name.lower(): (int(limits[0]), int(limits[1]))
            for name, limits in (tiers or settings.rate_limit_tiers).items()
        }
        if not self.tiers:
            raise ValueError("At least one rate limit tier must be configured")
        self._redis_url = redis_url or settings.redis_url
        self._use_redis = use_redis
        self._redis_timeout = settings.redis_timeout_seconds if redis_timeout is None else redis_timeout
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._redis: Optional[redis.Redis] = None
        self._redis_loop: Optional[asyncio.AbstractEventLoop] = None
        self._redis_down_until = 0.0
        self._memory = MemoryCounterStore(clock=lambda: self._clock().timestamp())

    async def _get_redis(self) -> redis.Redis:
        """
        Get or create the Redis client for the running event loop.

        A client bound to a previous (closed) loop is abandoned, not closed.
        """
        loop = asyncio.get_running_loop()
        if self._redis is None or self._redis_loop is not loop:
            self._redis_loop = loop
            self._redis = redis.from_url(
                self._redis_url,
                decode_responses=True,
                socket_timeout=self._redis_timeout,
                socket_connect_timeout=self._redis_timeout,
            )
        return self._redis

    def resolve_tier(self, tier: Optional[str]) -> Tuple[str, int, int]:
        """
        Return (tier_name, hourly_limit, daily_limit) for ``tier``.

        Unknown tiers fall back to the most restrictive configured tier.
        """
        key = (tier or "").strip().lower()
        if key in self.tiers:
            hourly, daily = self.tiers[key]
            return key, hourly, daily

        def strictness(item):
            hourly, daily = item[1]
            return (
                float("inf") if hourly < 0 else hourly,
                float("inf") if daily < 0 else daily,
            )

        fallback, (hourly, daily) = min(self.tiers.items(), key=strictness)
        logger.warning(f"Unknown rate limit tier '{tier}', applying most restrictive tier '{fallback}'")
        return fallback, hourly, daily

    async def _increment(self, keys: List[str], expire_at: List[datetime]) -> List[int]:
        if self._use_redis and time.monotonic() >= self._redis_down_until:
            try:
                r = await self._get_redis()
                args = [int(when.timestamp() * 1000) for when in expire_at]
                counts = await r.eval(INCREMENT_SCRIPT, len(keys), *keys, *args)
                return [int(c) for c in counts]
            except (RedisError, OSError) as e:
                self._redis_down_until = time.monotonic() + REDIS_RETRY_COOLDOWN
                logger.warning(f"Redis unavailable for rate limiting, using in-memory counters: {e}")
        return self._memory.increment(keys, [when.timestamp() for when in expire_at])

    async def check(self, caller_id: str, tier: Optional[str] = None) -> RateLimitDecision:
        """
        Count one request for ``caller_id`` and decide whether it is allowed.

        Args:
            caller_id: Stable caller identity (API key id, user id)
            tier: Caller's tier name

        Returns:
            RateLimitDecision with counts, remaining quota and window resets
        """
        tier_name, hourly_limit, daily_limit = self.resolve_tier(tier)
        hour_start, hour_end, day_start, day_end = window_bounds(self._clock())

        keys = [
            f"{KEY_PREFIX}:hourly:{caller_id}:{hour_start:%Y%m%d%H}",
            f"{KEY_PREFIX}:daily:{caller_id}:{day_start:%Y%m%d}",
        ]
        hourly_count, daily_count = await self._increment(keys, [hour_end, day_end])

        allowed = _within(hourly_count, hourly_limit) and _within(daily_count, daily_limit)
        if not allowed:
            logger.info(
                f"Rate limit exceeded for {caller_id} ({tier_name}): "
                f"hourly {hourly_count}/{hourly_limit}, daily {daily_count}/{daily_limit}"
            )

        return RateLimitDecision(
            allowed=allowed,
            tier=tier_name,
            hourly_limit=hourly_limit,
            daily_limit=daily_limit,
            hourly_count=hourly_count,
            daily_count=daily_count,
            hourly_remaining=_remaining(hourly_count, hourly_limit),
            daily_remaining=_remaining(daily_count, daily_limit),
            hourly_reset_at=hour_end,
            daily_reset_at=day_end,
        )

    async def close(self) -> None:
        if self._redis is not None and self._redis_loop is asyncio.get_running_loop():
            await self._redis.aclose()
        self._redis = None
        self._redis_loop = None


# Global service instance
rate_limit_service = RateLimitService()
