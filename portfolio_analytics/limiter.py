import logging
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import redis
from fastapi import Depends, HTTPException, Request, status
from slowapi import Limiter

from portfolio_analytics.config import settings
from portfolio_analytics.services.enrichment import client_ip_from_headers

logger = logging.getLogger("AnalyticsAPI.Limiter")

# App-wide ceiling applied by SlowAPIMiddleware
limiter = Limiter(
    key_func=client_ip_from_headers,
    default_limits=[settings.DEFAULT_RATELIMIT],
    storage_uri=settings.rate_limit_storage_uri,
)


@dataclass
class RateLimitCounter:
    count: int
    reset_at: float


@dataclass(frozen=True)
class RateLimitPolicy:
    name: str
    max_requests: int
    window_seconds: int


class MemoryCounterStore:
    """
    Process-local fixed-window counters.
    Increment-and-compare happens under one lock, so bursts from the same
    key cannot undercount. Expired counters are pruned once the map grows
    past `max_keys`; a scan that frees nothing is not repeated until the
    earliest live window has ended.
    """

    def __init__(self, max_keys: int = 10000):
        self.max_keys = max_keys
        self._counters: Dict[str, RateLimitCounter] = {}
        self._lock = threading.Lock()
        self._next_prune_at = 0.0
        self.prune_scans = 0

    def hit(self, key: str, max_requests: int, window_seconds: int, now: float) -> bool:
        with self._lock:
            current = self._counters.get(key)

            if current is None or now > current.reset_at:
                if current is None and len(self._counters) >= self.max_keys and now > self._next_prune_at:
                    self._prune(now)
                self._counters[key] = RateLimitCounter(count=1, reset_at=now + window_seconds)
                return True

            if current.count >= max_requests:
                return False

            current.count += 1
            return True

    def get(self, key: str) -> Optional[RateLimitCounter]:
        return self._counters.get(key)

    def _prune(self, now: float):
        self.prune_scans += 1
        expired = [k for k, c in self._counters.items() if now > c.reset_at]
        for k in expired:
            del self._counters[k]
        # Nothing left can expire before the earliest remaining reset
        self._next_prune_at = min((c.reset_at for c in self._counters.values()), default=now)
        logger.debug(f"Pruned {len(expired)} expired rate-limit counters.")


class RedisCounterStore:
    """
    Counters shared by every process pointed at the same Redis.
    The window starts on the first hit (SET NX with expiry) and the
    increment runs in the same MULTI block. Redis errors fall back to a
    process-local store so a call always resolves.
    """

    def __init__(self, client: redis.Redis, prefix: str = "ratelimit", fallback: Optional[MemoryCounterStore] = None):
        self.redis = client
        self.prefix = prefix
        self.fallback = fallback or MemoryCounterStore()

    def _get_key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    def hit(self, key: str, max_requests: int, window_seconds: int, now: float) -> bool:
        redis_key = self._get_key(key)
        try:
            pipe = self.redis.pipeline(transaction=True)
            pipe.set(redis_key, 0, ex=window_seconds, nx=True)
            pipe.incr(redis_key)
            _, count = pipe.execute()
        except redis.RedisError as e:
            logger.error(f"Redis rate-limit error: {e}. Falling back to in-process counters.")
            return self.fallback.hit(key, max_requests, window_seconds, now)

        return int(count) <= max_requests


class RateLimiter:
    """Fixed-window limiter keyed by client; the store decides where counts live."""

    def __init__(self, store, clock: Callable[[], float] = time.time):
        self.store = store
        self.clock = clock

    def allow(self, client_key: str, max_requests: int, window_seconds: int) -> bool:
        allowed = self.store.hit(client_key, max_requests, window_seconds, self.clock())
        if not allowed:
            logger.warning(f"Rate limit reached for '{client_key}'.")
        return allowed

    def check(self, policy: RateLimitPolicy, client_ip: str) -> bool:
        return self.allow(f"{policy.name}:{client_ip}", policy.max_requests, policy.window_seconds)


TRACK_POLICY = RateLimitPolicy(
    name="track",
    max_requests=settings.TRACK_RATE_LIMIT,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)
LOGIN_POLICY = RateLimitPolicy(
    name="login",
    max_requests=settings.LOGIN_RATE_LIMIT,
    window_seconds=settings.RATE_LIMIT_WINDOW_SECONDS,
)


def create_rate_limiter() -> RateLimiter:
    """Build the limiter on Redis when REDIS_URL is set, in memory otherwise."""
    if settings.REDIS_URL:
        logger.info("Using Redis for rate-limit counters.")
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        store = RedisCounterStore(client, fallback=MemoryCounterStore(settings.RATE_LIMIT_MAX_KEYS))
    else:
        logger.info("Using in-process rate-limit counters.")
        store = MemoryCounterStore(settings.RATE_LIMIT_MAX_KEYS)
    return RateLimiter(store)


def get_rate_limiter(request: Request) -> RateLimiter:
    """FastAPI dependency returning the limiter built at startup."""
    return request.app.state.rate_limiter


def rate_limit(policy: RateLimitPolicy, detail: str = "Too many requests. Please try again later."):
    """Dependency factory enforcing `policy` per client IP."""

    def dependency(request: Request, rate_limiter: RateLimiter = Depends(get_rate_limiter)):
        client_ip = client_ip_from_headers(request)
        if not rate_limiter.check(policy, client_ip):
            raise HTTPException(
                status_code=status.HTTP_429_TOO_MANY_REQUESTS,
                detail=detail
            )

    return dependency
