"""
Fixed-window rate limiting for the unauthenticated portal surface

The limiter is created once at startup (see main.lifespan) and read from
app.state by the request dependency, so the in-memory backend can be swapped
for the shared Redis backend without touching call sites.
"""

import logging
import os
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Optional

import redis
from fastapi import Request

from .domain.portal.errors import RateLimited, UpstreamFailure
from .shared.validators import is_ip_address

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 60


@dataclass(frozen=True)
class RateLimitResult:
    allowed: bool
    count: int
    limit: int
    reset_after: int

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class RateLimiter:
    """Counts hits per key inside fixed windows"""

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        raise NotImplementedError

    def close(self) -> None:
        pass


class InMemoryRateLimiter(RateLimiter):
    """Process-local limiter; counters reset on restart and are not shared between instances"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self.clock = clock
        # Format: {key: {"count": int, "reset_time": float}}
        self._windows: dict[str, dict] = {}
        self._lock = Lock()
        self._last_cleanup = clock()

    def _cleanup(self, now: float) -> None:
        if now - self._last_cleanup < CLEANUP_INTERVAL_SECONDS:
            return
        expired = [k for k, v in self._windows.items() if now >= v["reset_time"]]
        for k in expired:
            del self._windows[k]
        if expired:
            logger.debug(f"Cleaned up {len(expired)} expired rate limit windows")
        self._last_cleanup = now

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        now = self.clock()
        with self._lock:
            self._cleanup(now)

            window = self._windows.get(key)
            if window is None or now >= window["reset_time"]:
                window = {"count": 0, "reset_time": now + window_seconds}
                self._windows[key] = window

            allowed = window["count"] < limit
            if allowed:
                window["count"] += 1

            reset_after = max(0, int(window["reset_time"] - now + 0.999))
            return RateLimitResult(allowed, window["count"], limit, reset_after)


class RedisRateLimiter(RateLimiter):
    """Shared limiter using atomic INCR with an expiry set on the first hit"""

    def __init__(self, client: redis.Redis, key_prefix: str = "portal_rl"):
        self.client = client
        self.key_prefix = key_prefix

    def hit(self, key: str, limit: int, window_seconds: int) -> RateLimitResult:
        redis_key = f"{self.key_prefix}:{key}"
        count = int(self.client.incr(redis_key))
        if count == 1:
            self.client.expire(redis_key, window_seconds)

        ttl = self.client.ttl(redis_key)
        if ttl == -1:
            # Key lost its expiry (e.g. crash between INCR and EXPIRE)
            self.client.expire(redis_key, window_seconds)
            ttl = window_seconds

        reset_after = ttl if ttl and ttl > 0 else window_seconds
        return RateLimitResult(count <= limit, min(count, limit), limit, reset_after)

    def close(self) -> None:
        self.client.close()


def get_redis_client() -> redis.Redis:
    """Create a Redis client from REDIS_URL or the individual REDIS_* settings"""
    redis_url = os.getenv("REDIS_URL")
    if redis_url:
        client = redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
            health_check_interval=30,
        )
    else:
        client = redis.Redis(
            host=os.getenv("REDIS_HOST", "localhost"),
            port=int(os.getenv("REDIS_PORT", "6379")),
            password=os.getenv("REDIS_PASSWORD") or None,
            db=int(os.getenv("REDIS_DB", "0")),
            ssl=os.getenv("REDIS_SSL", "false").lower() == "true",
            decode_responses=True,
            socket_connect_timeout=15,
            socket_timeout=30,
            retry_on_timeout=True,
            health_check_interval=30,
        )
    client.ping()
    logger.info("Redis connected successfully for rate limiting")
    return client


def build_rate_limiter(backend: str) -> RateLimiter:
    """Create the limiter configured by RATE_LIMIT_BACKEND"""
    if backend == "redis":
        return RedisRateLimiter(get_redis_client())
    if backend != "memory":
        logger.warning(f"Unknown RATE_LIMIT_BACKEND '{backend}', using in-memory limiter")
    logger.info("Using process-local in-memory rate limiter")
    return InMemoryRateLimiter()


def get_client_ip(request: Request) -> str:
    """First X-Forwarded-For hop if it is an IP, then X-Real-IP, then the peer address"""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        first_ip = forwarded.split(",")[0].strip()
        if is_ip_address(first_ip):
            return first_ip

    real_ip = request.headers.get("X-Real-IP", "").strip()
    if is_ip_address(real_ip):
        return real_ip

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def create_rate_limiter(
    limit: int, window_seconds: int, key_prefix: str = "portal"
) -> Callable:
    """
    Create a per-IP rate limiting dependency

    Example usage:
        pay_rate_limit = create_rate_limiter(limit=10, window_seconds=60, key_prefix="pay")

        @router.post("/invoice-pay/{token}", dependencies=[Depends(pay_rate_limit)])
        async def pay(token: str):
            ...
    """

    async def rate_limiter(request: Request) -> None:
        limiter: Optional[RateLimiter] = getattr(request.app.state, "rate_limiter", None)
        if limiter is None:
            raise UpstreamFailure("Rate limiting service not initialized", status_code=503)

        key = f"{key_prefix}:{get_client_ip(request)}"
        try:
            result = limiter.hit(key, limit, window_seconds)
        except redis.RedisError as e:
            logger.error(f"Rate limit check failed for {key}: {e}")
            # Fail closed - deny request if rate limiting is unavailable
            raise UpstreamFailure(
                "Rate limiting service temporarily unavailable", status_code=503
            ) from e

        if not result.allowed:
            logger.warning(f"Rate limit EXCEEDED for {key} - {result.count}/{limit}")
            raise RateLimited(headers={"Retry-After": str(result.reset_after)})

        request.state.rate_limit_remaining = result.remaining
        request.state.rate_limit_limit = limit

    return rate_limiter
