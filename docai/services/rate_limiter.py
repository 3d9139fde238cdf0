"""
Rate limiter service.

Fixed-window counters keyed by (route, owner, client address). Each call
increments the window's counter atomically at the store; the request is
allowed while the count stays within the policy maximum.

Two stores are provided: an in-process one for single-instance deployments
and a Redis one that every instance can share.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass

import redis.asyncio as redis

from docai.logging_config import get_logger

log = get_logger(component="rate_limiter")


@dataclass(frozen=True)
class RatePolicy:
    """Maximum requests per window for one route class."""
    max_requests: int
    window_ms: int


@dataclass(frozen=True)
class RateDecision:
    """Result of a rate limit check."""
    allowed: bool
    remaining: int
    retry_after_ms: int


def rate_limit_key(route: str, owner_id: str | None, client_address: str | None) -> str:
    return f"ratelimit:{route}:{owner_id or 'anonymous'}:{client_address or 'unknown'}"


class RateStore(ABC):
    """Backing store for window counters."""

    @abstractmethod
    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        """
        Atomically increment the counter for `key`.

        Starts a new window if the previous one expired.

        Returns:
            (count in current window, milliseconds until the window resets)
        """
        ...


class MemoryRateStore(RateStore):
    """In-process counters. Lost on restart and not shared between instances."""

    SWEEP_INTERVAL_MS = 60_000

    def __init__(self, clock=None):
        self._clock = clock or (lambda: int(time.monotonic() * 1000))
        self._windows: dict[str, tuple[int, int]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = self._clock()

    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        async with self._lock:
            now = self._clock()
            self._sweep(now)

            count, reset_at = self._windows.get(key, (0, 0))
            if reset_at <= now:
                count, reset_at = 0, now + window_ms
            count += 1
            self._windows[key] = (count, reset_at)
            return count, reset_at - now

    def _sweep(self, now: int) -> None:
        """Evict expired windows at most once per sweep interval."""
        if now - self._last_sweep < self.SWEEP_INTERVAL_MS:
            return
        self._last_sweep = now
        expired = [key for key, (_, reset_at) in self._windows.items() if reset_at <= now]
        for key in expired:
            del self._windows[key]

    def __len__(self) -> int:
        return len(self._windows)


# INCR and the window expiry run as one script so concurrent callers
# never observe a counter without a deadline.
_HIT_SCRIPT = """
local count = redis.call('INCR', KEYS[1])
if count == 1 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
end
local ttl = redis.call('PTTL', KEYS[1])
if ttl < 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[1])
    ttl = tonumber(ARGV[1])
end
return {count, ttl}
"""


class RedisRateStore(RateStore):
    """Counters shared by every instance through Redis."""

    def __init__(self, redis_url: str):
        self.redis_url = redis_url
        self._redis = None

    async def get_redis(self):
        if self._redis is None:
            self._redis = redis.from_url(self.redis_url)
        return self._redis

    async def hit(self, key: str, window_ms: int) -> tuple[int, int]:
        r = await self.get_redis()
        count, ttl = await r.eval(_HIT_SCRIPT, 1, key, window_ms)
        return int(count), int(ttl)


class RateLimiter:
    """Applies per-route policies on top of a RateStore."""

    def __init__(self, store: RateStore, policies: dict[str, RatePolicy]):
        self.store = store
        self.policies = policies

    async def allow(self, key: str, policy: RatePolicy) -> RateDecision:
        """
        Count one request against `key` and decide whether it may proceed.

        A rejected call has no effect beyond the counter increment itself.
        """
        try:
            count, reset_in_ms = await self.store.hit(key, policy.window_ms)
        except redis.RedisError as exc:
            # Shared store is down: fail open, same as an unlimited window
            log.warning("rate_store_unavailable", key=key, error=str(exc))
            return RateDecision(allowed=True, remaining=policy.max_requests, retry_after_ms=0)

        allowed = count <= policy.max_requests
        return RateDecision(
            allowed=allowed,
            remaining=max(0, policy.max_requests - count),
            retry_after_ms=0 if allowed else max(0, reset_in_ms),
        )

    async def check(self, route: str, owner_id: str | None, client_address: str | None) -> RateDecision:
        """Apply the policy registered for `route`."""
        policy = self.policies[route]
        return await self.allow(rate_limit_key(route, owner_id, client_address), policy)


def build_rate_limiter(settings) -> RateLimiter:
    """Create the rate limiter selected by RATE_LIMIT_BACKEND."""
    if settings.RATE_LIMIT_BACKEND == "redis":
        store = RedisRateStore(settings.REDIS_URL)
    else:
        store = MemoryRateStore()

    policies = {
        "upload": RatePolicy(settings.RATE_LIMIT_UPLOAD_MAX, settings.RATE_LIMIT_UPLOAD_WINDOW_MS),
        "process": RatePolicy(settings.RATE_LIMIT_PROCESS_MAX, settings.RATE_LIMIT_PROCESS_WINDOW_MS),
        "read": RatePolicy(settings.RATE_LIMIT_READ_MAX, settings.RATE_LIMIT_READ_WINDOW_MS),
    }
    return RateLimiter(store, policies)
