"""Redirect rate limiting backed by Redis sliding windows.

Flow Diagram — RedirectRateGuard.check()
========================================
::
    ┌────────────────────┐
    │ client key         │
    │ (ip)               │
    └─────────┬──────────┘
              ▼
    ┌────────────────────┐      ┌────────────────────┐
    │ rl:redirect:client │      │ rl:redirect:code   │
    │ :{ip}              │      │ :{code}:{ip}       │
    └─────────┬──────────┘      └─────────┬──────────┘
              ▼                           ▼
    ZREMRANGEBYSCORE / ZADD / ZCARD / EXPIRE (one MULTI)
              │
    ┌─────────┴──────────┐
    │ any exceeded?      │── backend error ──► allow (fail open, logged)
    └─────────┬──────────┘
         YES  ▼
       RateLimitResult(exceeded=True, retry_after=...)

Key Behaviours
===============
- Windows are rolling: each attempt is a member of a sorted set scored by time.
- Rejected attempts count too, so hammering a code keeps the client limited.
- Infrastructure failures never block a redirect; availability wins over quota.
"""

import asyncio
import logging
import math
import time
import uuid
from dataclasses import dataclass

import redis.asyncio as redis
from prometheus_client import Counter
from redis.exceptions import RedisError

from shortlinks.config import Settings

__all__ = ["RateLimitResult", "RedirectRateGuard", "RedisRateLimiter"]

logger = logging.getLogger(__name__)

RATE_LIMIT_DECISIONS_TOTAL = Counter(
    "shortlinks_rate_limit_decisions_total",
    "Redirect rate limit decisions",
    ["decision"],
)
RATE_LIMIT_BACKEND_ERRORS_TOTAL = Counter(
    "shortlinks_rate_limit_backend_errors_total",
    "Rate limiter backend failures (requests were allowed)",
)


@dataclass(frozen=True)
class RateLimitResult:
    exceeded: bool
    count: int = 0
    limit: int = 0
    retry_after: int = 0

    @classmethod
    def allowed(cls) -> "RateLimitResult":
        return cls(exceeded=False)


class RedisRateLimiter:
    def __init__(self, client: redis.Redis) -> None:
        self._client = client

    async def check_and_increment(self, key: str, window_seconds: int, max_requests: int) -> RateLimitResult:
        now = time.time()
        member = f"{now:.6f}:{uuid.uuid4().hex}"
        pipe = self._client.pipeline(transaction=True)
        pipe.zremrangebyscore(key, 0, now - window_seconds)
        pipe.zadd(key, {member: now})
        pipe.zcard(key)
        pipe.zrange(key, 0, 0, withscores=True)
        pipe.expire(key, window_seconds)
        _, _, count, oldest, _ = await pipe.execute()

        if count <= max_requests:
            return RateLimitResult(exceeded=False, count=count, limit=max_requests)

        oldest_score = oldest[0][1] if oldest else now
        retry_after = max(1, math.ceil(oldest_score + window_seconds - now))
        return RateLimitResult(exceeded=True, count=count, limit=max_requests, retry_after=retry_after)


class RedirectRateGuard:
    """Applies the per-client and per-client-per-code redirect quotas."""

    def __init__(self, limiter: RedisRateLimiter, settings: Settings) -> None:
        self._limiter = limiter
        self._enabled = settings.REDIRECT_RATE_LIMIT_ENABLED
        self._window = settings.REDIRECT_RATE_LIMIT_WINDOW_SECONDS
        self._per_client = settings.REDIRECT_RATE_LIMIT_PER_CLIENT
        self._per_code = settings.REDIRECT_RATE_LIMIT_PER_CODE
        self._prefix = settings.RATE_LIMIT_KEY_PREFIX
        self._timeout = settings.CACHE_OPERATION_TIMEOUT_SECONDS * 2

    async def check(self, short_code: str, client_key: str | None) -> RateLimitResult:
        if not self._enabled or not client_key:
            return RateLimitResult.allowed()

        checks = (
            (f"{self._prefix}:client:{client_key}", self._per_client),
            (f"{self._prefix}:code:{short_code}:{client_key}", self._per_code),
        )
        for key, limit in checks:
            try:
                result = await asyncio.wait_for(
                    self._limiter.check_and_increment(key, self._window, limit),
                    timeout=self._timeout,
                )
            except (TimeoutError, RedisError, OSError) as exc:
                RATE_LIMIT_BACKEND_ERRORS_TOTAL.inc()
                logger.error(f"Rate limiter unavailable, allowing request: {exc!r}")
                return RateLimitResult.allowed()

            if result.exceeded:
                RATE_LIMIT_DECISIONS_TOTAL.labels(decision="limited").inc()
                logger.warning(
                    f"Redirect rate limit exceeded for {client_key} on {short_code}",
                    extra={"event": "rate_limited", "short_code": short_code, "client_key": client_key,
                           "limit": limit, "window_seconds": self._window},
                )
                return result

        RATE_LIMIT_DECISIONS_TOTAL.labels(decision="allowed").inc()
        return RateLimitResult.allowed()
