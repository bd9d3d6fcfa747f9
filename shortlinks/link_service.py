"""Link write path: create, update and delete short links, keeping the cache honest.

Link Creation Flow
==================
::
    ┌──────────────┐
    │ POST /api/   │
    │ links        │
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ LinkCreate   │  URL, alias, expiry validated by the schema
    └──────┬───────┘
           ▼
    ┌──────────────┐
    │ CodeGenerator│◄───────────────┐
    │ generate()   │                │ ShortCodeConflict on insert
    └──────┬───────┘                │ (random code: retry)
           ▼                        │
    ┌──────────────┐                │
    │ store.create │────────────────┘
    └──────┬───────┘  alias conflict ─► AliasTaken
           ▼
    ┌──────────────┐
    │ cache.put    │  overwrites any tombstone for the code
    └──────────────┘

Update / Delete Flow
====================
::
    store.update / store.delete  (owner-scoped, NotFoundOrForbidden)
           ▼
    cache.invalidate(short_code, custom_alias)   before returning
           ▼
    next redirect misses and re-reads the store

Key Behaviours
===============
- The store is written first; the cache is only ever a copy.
- Invalidation happens synchronously, so once an update returns no redirect
  serves the old record (bar a cache outage, bounded by the cache TTL).
- Deleted codes are retired unless ``ALLOW_CODE_REUSE`` is set.
"""

import asyncio
import logging
import time
import uuid

from prometheus_client import Counter, Histogram

from shortlinks.cache import ResolutionCache
from shortlinks.codegen import CodeGenerator
from shortlinks.config import Settings
from shortlinks.enums import RequestStatus
from shortlinks.exceptions import (
    AliasTaken,
    CodeGenerationExhausted,
    ConflictError,
    NotFoundOrForbidden,
    ShortCodeConflict,
    ValidationError,
)
from shortlinks.models import ShortLink
from shortlinks.schemas import LinkCreate, LinkUpdate
from shortlinks.security import PasswordHasher
from shortlinks.store import ClickBreakdown, ShortLinkStore

__all__ = ["LinkService"]

LINK_WRITES_TOTAL = Counter(
    "shortlinks_link_writes_total",
    "Link write operations by operation and status",
    ["operation", "status"],
)
LINK_CREATION_DURATION = Histogram(
    "shortlinks_link_creation_duration_seconds",
    "Time taken to create short links",
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0],
)


class LinkService:
    def __init__(
        self,
        *,
        store: ShortLinkStore,
        cache: ResolutionCache,
        passwords: PasswordHasher,
        settings: Settings,
        logger: logging.Logger | logging.LoggerAdapter | None = None,
    ) -> None:
        self._store = store
        self._cache = cache
        self._passwords = passwords
        self._settings = settings
        self._logger = logger if logger is not None else logging.getLogger(__name__)

    @classmethod
    def from_context(cls, ctx) -> "LinkService":
        manager = ctx.service_manager
        store = ShortLinkStore(
            ctx.database,
            retire_deleted_codes=not manager.settings.ALLOW_CODE_REUSE,
            password_hasher=manager.passwords.hash,
        )
        return cls(
            store=store,
            cache=manager.cache,
            passwords=manager.passwords,
            settings=manager.settings,
            logger=ctx.logger,
        )

    async def create_link(self, data: LinkCreate, owner_id: str | None = None) -> ShortLink:
        """Create a link and warm the cache with it.

        Raises:
            AliasTaken: the custom alias is in use (or retired).
            CodeGenerationExhausted: no free random code within the attempt bound.
        """
        start_time = time.perf_counter()
        try:
            link = await self._create(data, owner_id)
        except ConflictError:
            LINK_WRITES_TOTAL.labels(operation="create", status=RequestStatus.CONFLICT).inc()
            raise
        except CodeGenerationExhausted:
            LINK_WRITES_TOTAL.labels(operation="create", status=RequestStatus.ERROR).inc()
            raise
        finally:
            LINK_CREATION_DURATION.observe(time.perf_counter() - start_time)

        await self._cache.put(link)
        LINK_WRITES_TOTAL.labels(operation="create", status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link created: {link.short_code} (owner={owner_id or 'anonymous'})")
        return link

    async def _create(self, data: LinkCreate, owner_id: str | None) -> ShortLink:
        generator = CodeGenerator(self._store, self._settings)
        password_hash = await asyncio.to_thread(self._passwords.hash, data.password) if data.password else None

        for attempt in range(1, generator.max_attempts + 1):
            code = await generator.generate(data.custom_alias)
            try:
                return await self._store.create(
                    short_code=code,
                    custom_alias=data.custom_alias,
                    original_url=data.original_url,
                    title=data.title,
                    description=data.description,
                    is_public=data.is_public,
                    password_hash=password_hash,
                    expires_at=data.expires_at,
                    owner_id=owner_id,
                )
            except ShortCodeConflict as exc:
                if data.custom_alias is not None:
                    raise AliasTaken(data.custom_alias) from exc
                self._logger.warning(f"Short code {code} lost an insert race (attempt {attempt})")

        raise CodeGenerationExhausted(generator.max_attempts)

    async def update_link(self, link_id: uuid.UUID, owner_id: str | None, patch: LinkUpdate) -> ShortLink:
        if not patch.model_fields_set:
            LINK_WRITES_TOTAL.labels(operation="update", status=RequestStatus.VALIDATION_ERROR).inc()
            raise ValidationError("No valid fields to update")

        try:
            link = await self._store.update(link_id, owner_id, patch)
        except NotFoundOrForbidden:
            LINK_WRITES_TOTAL.labels(operation="update", status=RequestStatus.NOT_FOUND).inc()
            raise

        await self._cache.invalidate(link.short_code, link.custom_alias)
        LINK_WRITES_TOTAL.labels(operation="update", status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link updated: {link.short_code} fields={sorted(patch.model_fields_set)}")
        return link

    async def delete_link(self, link_id: uuid.UUID, owner_id: str | None) -> None:
        try:
            link = await self._store.delete(link_id, owner_id)
        except NotFoundOrForbidden:
            LINK_WRITES_TOTAL.labels(operation="delete", status=RequestStatus.NOT_FOUND).inc()
            raise

        await self._cache.invalidate(link.short_code, link.custom_alias)
        LINK_WRITES_TOTAL.labels(operation="delete", status=RequestStatus.SUCCESS).inc()
        self._logger.info(f"Link deleted: {link.short_code}")

    async def get_stats(self, code: str, owner_id: str | None = None) -> tuple[ShortLink, ClickBreakdown]:
        """Link record and click breakdown. Private links are visible to their owner only."""
        link = await self._store.get_by_code(code)
        if link is None:
            raise NotFoundOrForbidden("Short URL not found")
        if not link.is_public and (owner_id is None or link.owner_id != owner_id):
            raise NotFoundOrForbidden("Short URL not found")
        return link, await self._store.click_breakdown(link.id)
