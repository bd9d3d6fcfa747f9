"""Resolution cache: a Redis read-through cache in front of the short-code store.

Flow Diagram — get()
====================
::
    ┌──────────────┐
    │ GET link:code│──── timeout / RedisError ───► MISS (logged)
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ value?       │
    └──────┬───────┘
    ┌──────┼──────────────┬─────────────────┐
    │ None │ "__tombstone__"│ JSON payload    │ undecodable
    ▼      ▼                ▼                 ▼
   MISS  TOMBSTONE   CachedLinkPayload       MISS (logged)

Key Behaviours
===============
- Never authoritative: every write lands in the store first.
- Every Redis call is bounded by ``CACHE_OPERATION_TIMEOUT_SECONDS``. On timeout or
  error, reads degrade to MISS and writes are dropped; nothing is raised.
- Tombstones mark "confirmed absent" for a short TTL so repeated lookups of a
  nonexistent code do not hit the store.
- Only the write path calls ``invalidate``. The read path only ``put``s.
- A short-lived fill lock (SET NX EX) keeps a hot miss from stampeding the store.
"""

import asyncio
import logging
from collections.abc import Awaitable
from typing import Any

import redis.asyncio as redis
from prometheus_client import Counter
from pydantic import ValidationError as PydanticValidationError
from redis.exceptions import RedisError

from shortlinks.config import Settings
from shortlinks.enums import CacheStatus
from shortlinks.schemas import CachedLinkPayload

__all__ = ["MISS", "TOMBSTONE", "CacheLookup", "ResolutionCache"]

logger = logging.getLogger(__name__)

TOMBSTONE_MARKER = "__tombstone__"

CACHE_LOOKUPS_TOTAL = Counter(
    "shortlinks_cache_lookups_total",
    "Resolution cache lookups by result",
    ["result"],
)
CACHE_ERRORS_TOTAL = Counter(
    "shortlinks_cache_errors_total",
    "Resolution cache operations that failed or timed out",
    ["operation"],
)


class _Sentinel:
    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


MISS = _Sentinel("MISS")
TOMBSTONE = _Sentinel("TOMBSTONE")

CacheLookup = CachedLinkPayload | _Sentinel


class ResolutionCache:
    def __init__(self, client: redis.Redis, settings: Settings) -> None:
        self._client = client
        self._prefix = settings.CACHE_KEY_PREFIX
        self._ttl = settings.CACHE_TTL_SECONDS
        self._tombstone_ttl = settings.CACHE_TOMBSTONE_TTL_SECONDS
        self._timeout = settings.CACHE_OPERATION_TIMEOUT_SECONDS
        self._lock_ttl = settings.CACHE_LOCK_TTL_SECONDS

    def key(self, code: str) -> str:
        return f"{self._prefix}:{code}"

    def lock_key(self, code: str) -> str:
        return f"lock:{self._prefix}:{code}"

    async def _call(self, operation: str, awaitable: Awaitable[Any], default: Any = None) -> Any:
        try:
            return await asyncio.wait_for(awaitable, timeout=self._timeout)
        except (TimeoutError, RedisError, OSError) as exc:
            CACHE_ERRORS_TOTAL.labels(operation=operation).inc()
            logger.warning(f"Cache {operation} failed, continuing without cache: {exc!r}")
            return default

    async def get(self, code: str) -> CacheLookup:
        raw = await self._call("get", self._client.get(self.key(code)), default=MISS)
        if raw is MISS:
            CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.ERROR).inc()
            return MISS
        if raw is None:
            CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.MISS).inc()
            return MISS
        if raw == TOMBSTONE_MARKER:
            CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.TOMBSTONE).inc()
            return TOMBSTONE

        try:
            payload = CachedLinkPayload.model_validate_json(raw)
        except PydanticValidationError as exc:
            CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.ERROR).inc()
            logger.error(f"Cache deserialization error for {code}: {exc}")
            return MISS
        CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.HIT).inc()
        return payload

    async def put(self, link: Any) -> None:
        """Cache ``link`` (a ShortLink row or a CachedLinkPayload) under each of its codes."""
        payload = link if isinstance(link, CachedLinkPayload) else CachedLinkPayload.model_validate(link)
        body = payload.model_dump_json()
        codes = {payload.short_code}
        if payload.custom_alias:
            codes.add(payload.custom_alias)
        for code in codes:
            await self._call("put", self._client.set(self.key(code), body, ex=self._ttl))

    async def put_tombstone(self, code: str) -> None:
        await self._call("put_tombstone", self._client.set(self.key(code), TOMBSTONE_MARKER, ex=self._tombstone_ttl))

    async def invalidate(self, *codes: str | None) -> bool:
        keys = [self.key(code) for code in codes if code]
        if not keys:
            return True
        deleted = await self._call("invalidate", self._client.delete(*keys), default=False)
        if deleted is False:
            logger.error(f"Cache invalidation failed for {keys}; stale entries expire within {self._ttl}s")
            return False
        return True

    async def acquire_fill_lock(self, code: str) -> bool:
        """Return True when the caller should go to the store now.

        That is the case when the lock was taken, and also when Redis is
        unreachable: there is nothing to wait for then.
        """
        locked = await self._call(
            "lock", self._client.set(self.lock_key(code), "1", ex=self._lock_ttl, nx=True), default=MISS
        )
        return locked is MISS or bool(locked)

    async def release_fill_lock(self, code: str) -> None:
        await self._call("unlock", self._client.delete(self.lock_key(code)))

    async def ping(self) -> bool:
        return bool(await self._client.ping())
