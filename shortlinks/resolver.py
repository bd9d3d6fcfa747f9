"""Redirect resolution: decide what a visitor hitting ``/{code}`` gets.

Resolution Flow
===============
::
    ┌──────────────┐
    │ resolve(code,│
    │   visitor)   │
    └──────┬───────┘
           ▼
    ┌──────────────┐  exceeded   ┌──────────────┐
    │ rate guard   │────────────►│ RATE_LIMITED │
    └──────┬───────┘             └──────────────┘
           ▼
    malformed code ──► NOT_FOUND (no cache or store access)
           ▼
    ┌──────────────┐  TOMBSTONE  ┌──────────────┐
    │ cache.get    │────────────►│ NOT_FOUND    │
    └──────┬───────┘             └──────────────┘
      MISS │ HIT ─────────────────────────┐
           ▼                              │
    ┌──────────────┐  none  ┌───────────┐ │
    │ fill lock +  │───────►│ tombstone │─┼──► NOT_FOUND
    │ store read   │        └───────────┘ │
    └──────┬───────┘  error ─► StoreUnavailable (503, never 404)
           │ found: cache.put             │
           ▼◄─────────────────────────────┘
    ┌──────────────┐  inactive / expired ┌──────┐
    │ liveness     │────────────────────►│ GONE │
    └──────┬───────┘                     └──────┘
           ▼
    preview requested ──► PREVIEW (no click)
           ▼
    password set, missing/wrong ──► PASSWORD_REQUIRED
           ▼
    schedule click recording (not awaited)
           ▼
    bot and bot redirects disabled ──► PREVIEW(is_bot)
           ▼
       REDIRECT(original_url)

Key Behaviours
===============
- Liveness is decided here and only here, against the current time, whether
  the record came from the cache or the store.
- A cache outage degrades to store reads; a store outage is an error, never
  a "not found".
- Click recording runs after the outcome is decided and cannot delay or
  fail the redirect.
"""

import asyncio
import datetime
import logging
import time
from dataclasses import dataclass

from prometheus_client import Counter, Histogram
from sqlalchemy.exc import SQLAlchemyError

from shortlinks.background import BackgroundTaskRunner
from shortlinks.cache import TOMBSTONE, ResolutionCache
from shortlinks.click_recorder import ClickRecorder, classify_bot
from shortlinks.codegen import ALIAS_PATTERN
from shortlinks.config import Settings
from shortlinks.enums import ResolutionStatus
from shortlinks.exceptions import StoreUnavailable
from shortlinks.rate_limit import RedirectRateGuard
from shortlinks.schemas import CachedLinkPayload
from shortlinks.security import PasswordHasher
from shortlinks.store import ShortLinkStore
from shortlinks.utils import as_utc, utcnow

__all__ = ["RedirectResolver", "ResolutionOutcome", "VisitorContext", "is_live"]

logger = logging.getLogger(__name__)

RESOLUTION_OUTCOMES_TOTAL = Counter(
    "shortlinks_resolution_outcomes_total",
    "Short code resolutions by outcome",
    ["status"],
)
RESOLUTION_DURATION = Histogram(
    "shortlinks_resolution_duration_seconds",
    "Time taken to resolve a short code",
    buckets=[0.001, 0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0],
)
STORE_UNAVAILABLE_TOTAL = Counter(
    "shortlinks_store_unavailable_total",
    "Redirects that failed because the store could not be read",
)


@dataclass(frozen=True)
class VisitorContext:
    client_ip: str | None = None
    user_agent: str | None = None
    referer: str | None = None
    preview_requested: bool = False
    provided_password: str | None = None

    @property
    def client_key(self) -> str | None:
        return self.client_ip


@dataclass(frozen=True)
class ResolutionOutcome:
    status: ResolutionStatus
    link: CachedLinkPayload | None = None
    location: str | None = None
    retry_after: int | None = None
    is_bot: bool = False

    @classmethod
    def not_found(cls) -> "ResolutionOutcome":
        return cls(ResolutionStatus.NOT_FOUND)

    @classmethod
    def gone(cls, link: CachedLinkPayload) -> "ResolutionOutcome":
        return cls(ResolutionStatus.GONE, link=link)

    @classmethod
    def password_required(cls, link: CachedLinkPayload) -> "ResolutionOutcome":
        return cls(ResolutionStatus.PASSWORD_REQUIRED, link=link)

    @classmethod
    def rate_limited(cls, retry_after: int) -> "ResolutionOutcome":
        return cls(ResolutionStatus.RATE_LIMITED, retry_after=retry_after)

    @classmethod
    def preview(cls, link: CachedLinkPayload, is_bot: bool = False) -> "ResolutionOutcome":
        return cls(ResolutionStatus.PREVIEW, link=link, is_bot=is_bot)

    @classmethod
    def redirect(cls, link: CachedLinkPayload, is_bot: bool = False) -> "ResolutionOutcome":
        return cls(ResolutionStatus.REDIRECT, link=link, location=link.original_url, is_bot=is_bot)


def is_live(link: CachedLinkPayload, now: datetime.datetime) -> bool:
    if not link.is_active:
        return False
    expires_at = as_utc(link.expires_at)
    return expires_at is None or expires_at > now


class RedirectResolver:
    def __init__(
        self,
        *,
        cache: ResolutionCache,
        store: ShortLinkStore,
        rate_guard: RedirectRateGuard,
        background: BackgroundTaskRunner,
        passwords: PasswordHasher,
        settings: Settings,
        recorder: ClickRecorder | None = None,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._cache = cache
        self._store = store
        self._rate_guard = rate_guard
        self._background = background
        self._passwords = passwords
        self._settings = settings
        self._recorder = recorder
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @classmethod
    def from_context(cls, ctx) -> "RedirectResolver":
        manager = ctx.service_manager
        return cls(
            cache=manager.cache,
            store=ShortLinkStore(ctx.database),
            rate_guard=manager.rate_guard,
            background=manager.background,
            passwords=manager.passwords,
            settings=manager.settings,
            recorder=manager.click_recorder,
            logger=ctx.logger,
        )

    async def resolve(self, code: str, visitor: VisitorContext) -> ResolutionOutcome:
        """Resolve ``code`` for ``visitor`` into exactly one outcome.

        Raises:
            StoreUnavailable: the cache missed and the store could not be read.
        """
        start_time = time.perf_counter()
        try:
            outcome = await self._resolve(code, visitor)
        finally:
            RESOLUTION_DURATION.observe(time.perf_counter() - start_time)
        RESOLUTION_OUTCOMES_TOTAL.labels(status=outcome.status).inc()
        self._logger.debug(f"Resolved {code}: {outcome.status}")
        return outcome

    async def _resolve(self, code: str, visitor: VisitorContext) -> ResolutionOutcome:
        limit = await self._rate_guard.check(code, visitor.client_key)
        if limit.exceeded:
            return ResolutionOutcome.rate_limited(limit.retry_after)

        if not self._is_well_formed(code):
            return ResolutionOutcome.not_found()

        link = await self._lookup(code)
        if link is None:
            return ResolutionOutcome.not_found()

        if not is_live(link, utcnow()):
            return ResolutionOutcome.gone(link)

        if visitor.preview_requested:
            return ResolutionOutcome.preview(link)

        if link.password_hash is not None:
            if not await self._check_password(code, link, visitor):
                return ResolutionOutcome.password_required(link)

        is_bot = classify_bot(visitor.user_agent, self._settings.BOT_USER_AGENT_TOKENS)
        self._schedule_click(code, link, visitor)

        if is_bot and not self._settings.ALLOW_BOT_REDIRECTS:
            return ResolutionOutcome.preview(link, is_bot=True)
        return ResolutionOutcome.redirect(link, is_bot=is_bot)

    def _is_well_formed(self, code: str) -> bool:
        """Whether ``code`` could have been issued at all; others never reach the cache or store."""
        settings = self._settings
        min_length = min(settings.CUSTOM_ALIAS_MIN_LENGTH, settings.SHORT_CODE_LENGTH)
        max_length = max(settings.CUSTOM_ALIAS_MAX_LENGTH, settings.SHORT_CODE_LENGTH)
        return min_length <= len(code) <= max_length and ALIAS_PATTERN.match(code) is not None

    async def _lookup(self, code: str) -> CachedLinkPayload | None:
        entry = await self._cache.get(code)
        if entry is TOMBSTONE:
            return None
        if isinstance(entry, CachedLinkPayload):
            return entry
        return await self._fill(code)

    async def _fill(self, code: str) -> CachedLinkPayload | None:
        locked = await self._cache.acquire_fill_lock(code)
        try:
            if not locked:
                # Someone else is filling this key; give them a moment.
                for _ in range(self._settings.CACHE_LOCK_RETRY_COUNT):
                    await asyncio.sleep(self._settings.CACHE_LOCK_RETRY_DELAY_SECONDS)
                    entry = await self._cache.get(code)
                    if entry is TOMBSTONE:
                        return None
                    if isinstance(entry, CachedLinkPayload):
                        return entry

            record = await self._read_store(code)
            if record is None:
                await self._cache.put_tombstone(code)
                return None
            link = CachedLinkPayload.model_validate(record)
            await self._cache.put(link)
            return link
        finally:
            if locked:
                await self._cache.release_fill_lock(code)

    async def _read_store(self, code: str):
        try:
            return await asyncio.wait_for(
                self._store.get_by_code(code),
                timeout=self._settings.STORE_READ_TIMEOUT_SECONDS,
            )
        except (TimeoutError, SQLAlchemyError, OSError) as exc:
            STORE_UNAVAILABLE_TOTAL.inc()
            self._logger.error(f"Store read failed for {code}: {exc!r}")
            raise StoreUnavailable(f"Short-code store unavailable while resolving '{code}'") from exc

    async def _check_password(self, code: str, link: CachedLinkPayload, visitor: VisitorContext) -> bool:
        if not visitor.provided_password:
            return False
        # bcrypt verify is CPU-bound.
        valid = await asyncio.to_thread(self._passwords.verify, visitor.provided_password, link.password_hash)
        if not valid:
            logger.warning(
                f"Wrong password for protected link {code}",
                extra={"event": "wrong_link_password", "short_code": code, "client_ip": visitor.client_ip},
            )
        return valid

    def _schedule_click(self, code: str, link: CachedLinkPayload, visitor: VisitorContext) -> None:
        if self._recorder is None or not self._settings.CLICK_RECORDING_ENABLED:
            return
        self._background.schedule(self._recorder.record, link.id, visitor, name=f"click:{code}")
