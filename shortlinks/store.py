"""Short-code store: durable CRUD for short links and their click events.

The store returns raw records. It never decides whether a link is alive; that
policy lives in the resolver so it is applied in exactly one place.

Operation Overview
==================
::
    create(...)                 retired check + INSERT, either clash -> ShortCodeConflict
    get_by_code(code)           SELECT by short_code OR custom_alias
    get_owned(id, owner)        SELECT by id AND owner_id -> NotFoundOrForbidden
    update(id, owner, patch)    explicit per-field patch, then COMMIT
    delete(id, owner)           DELETE (+ retire code) -> short code freed/retired
    increment_click_count(id)   UPDATE ... SET click_count = click_count + 1
    record_click(...)           INSERT click_events + counters, one transaction
    is_code_taken(code)         short_code / custom_alias / retired_codes
    click_breakdown(id)         read-only aggregates for the stats endpoint

Key Behaviours
===============
- Click counters are bumped in SQL, never read-modify-write in Python.
- "Missing" and "owned by someone else" are the same error on purpose.
- Reads are plain SELECTs with no row locks, so listing and analytics queries
  running elsewhere are never blocked by the redirect path.
- Retired codes are re-checked inside the insert transaction. A delete that
  commits between that check and the insert can still let its code be reused
  once. That window is accepted.
"""

import datetime
import logging
import uuid
from collections.abc import Callable
from dataclasses import dataclass

from prometheus_client import Counter
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.exceptions import NotFoundOrForbidden, ShortCodeConflict
from shortlinks.models import ClickEvent, RetiredCode, ShortLink
from shortlinks.schemas import LinkUpdate
from shortlinks.utils import utcnow

__all__ = ["ClickBreakdown", "ShortLinkStore"]

logger = logging.getLogger(__name__)

DATABASE_READS_TOTAL = Counter(
    "shortlinks_database_reads_total",
    "Database read operations issued by the short-code store",
)
DATABASE_WRITES_TOTAL = Counter(
    "shortlinks_database_writes_total",
    "Database write operations issued by the short-code store",
)
STORE_INTEGRITY_WARNINGS_TOTAL = Counter(
    "shortlinks_store_integrity_warnings_total",
    "Lookups where one code matched more than one link",
)


@dataclass
class ClickBreakdown:
    """Human clicks grouped by device and country, plus the bot click total."""

    by_device: dict[str, int]
    by_country: dict[str, int]
    bot_clicks: int


class ShortLinkStore:
    def __init__(
        self,
        session: AsyncSession,
        *,
        retire_deleted_codes: bool = True,
        password_hasher: Callable[[str], str] | None = None,
    ) -> None:
        self._db = session
        self._retire_deleted_codes = retire_deleted_codes
        self._hash_password = password_hasher

    async def create(
        self,
        *,
        short_code: str,
        original_url: str,
        custom_alias: str | None = None,
        title: str | None = None,
        description: str | None = None,
        is_public: bool = True,
        password_hash: str | None = None,
        expires_at: datetime.datetime | None = None,
        owner_id: str | None = None,
    ) -> ShortLink:
        if await self._is_retired(short_code):
            # Only reachable when a delete committed after the availability check.
            await self._db.rollback()
            logger.warning(f"Refusing to insert retired code: {short_code}")
            raise ShortCodeConflict(short_code)

        link = ShortLink(
            short_code=short_code,
            custom_alias=custom_alias,
            original_url=original_url,
            title=title,
            description=description,
            is_active=True,
            is_public=is_public,
            password_hash=password_hash,
            click_count=0,
            expires_at=expires_at,
            owner_id=owner_id,
        )
        self._db.add(link)
        try:
            await self._db.commit()
        except IntegrityError as exc:
            await self._db.rollback()
            logger.warning(f"Unique constraint violation inserting code: {short_code}")
            raise ShortCodeConflict(short_code) from exc
        DATABASE_WRITES_TOTAL.inc()
        await self._db.refresh(link)
        return link

    async def get_by_code(self, code: str) -> ShortLink | None:
        result = await self._db.execute(
            select(ShortLink).where(or_(ShortLink.short_code == code, ShortLink.custom_alias == code))
        )
        DATABASE_READS_TOTAL.inc()
        matches = list(result.scalars().all())
        if not matches:
            return None
        if len(matches) == 1:
            return matches[0]

        STORE_INTEGRITY_WARNINGS_TOTAL.inc()
        logger.warning(
            f"Integrity warning: code '{code}' matched {len(matches)} links",
            extra={"event": "integrity", "short_code": code, "link_ids": [str(m.id) for m in matches]},
        )
        for link in matches:
            if link.short_code == code:
                return link
        return matches[0]

    async def get_owned(self, link_id: uuid.UUID, owner_id: str | None) -> ShortLink:
        if owner_id is None:
            raise NotFoundOrForbidden()
        result = await self._db.execute(
            select(ShortLink).where(ShortLink.id == link_id, ShortLink.owner_id == owner_id)
        )
        DATABASE_READS_TOTAL.inc()
        link = result.scalar_one_or_none()
        if link is None:
            raise NotFoundOrForbidden()
        return link

    async def update(self, link_id: uuid.UUID, owner_id: str | None, patch: LinkUpdate) -> ShortLink:
        link = await self.get_owned(link_id, owner_id)
        fields = patch.model_fields_set

        if "original_url" in fields:
            link.original_url = patch.original_url
        if "title" in fields:
            link.title = patch.title
        if "description" in fields:
            link.description = patch.description
        if "is_active" in fields:
            link.is_active = patch.is_active
        if "is_public" in fields:
            link.is_public = patch.is_public
        if "expires_at" in fields:
            link.expires_at = patch.expires_at
        if "password" in fields:
            if patch.password is None:
                link.password_hash = None
            else:
                if self._hash_password is None:
                    raise RuntimeError("ShortLinkStore needs a password_hasher to set a password")
                link.password_hash = self._hash_password(patch.password)

        link.updated_at = utcnow()
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
        await self._db.refresh(link)
        return link

    async def delete(self, link_id: uuid.UUID, owner_id: str | None) -> ShortLink:
        link = await self.get_owned(link_id, owner_id)
        await self._db.execute(delete(ShortLink).where(ShortLink.id == link.id))
        if self._retire_deleted_codes:
            self._db.add(RetiredCode(code=link.short_code))
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()
        return link

    async def increment_click_count(self, link_id: uuid.UUID) -> None:
        await self._db.execute(
            update(ShortLink)
            .where(ShortLink.id == link_id)
            .values(click_count=ShortLink.click_count + 1, updated_at=ShortLink.updated_at)
        )
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()

    async def record_click(self, click: ClickEvent, *, count_click: bool) -> None:
        """Persist ``click`` and bump the link's counters in one transaction."""
        self._db.add(click)
        # updated_at tracks owner edits, not visits.
        values: dict = {"last_accessed_at": click.clicked_at, "updated_at": ShortLink.updated_at}
        if count_click:
            values["click_count"] = ShortLink.click_count + 1
        await self._db.execute(update(ShortLink).where(ShortLink.id == click.short_link_id).values(**values))
        await self._db.commit()
        DATABASE_WRITES_TOTAL.inc()

    async def is_code_taken(self, code: str) -> bool:
        result = await self._db.execute(
            select(ShortLink.id)
            .where(or_(ShortLink.short_code == code, ShortLink.custom_alias == code))
            .limit(1)
        )
        DATABASE_READS_TOTAL.inc()
        if result.first() is not None:
            return True

        return await self._is_retired(code)

    async def _is_retired(self, code: str) -> bool:
        retired = await self._db.execute(select(RetiredCode.code).where(RetiredCode.code == code))
        DATABASE_READS_TOTAL.inc()
        return retired.first() is not None

    async def click_breakdown(self, link_id: uuid.UUID) -> ClickBreakdown:
        human = ClickEvent.is_bot.is_(False)
        by_device = await self._db.execute(
            select(ClickEvent.device_type, func.count())
            .where(ClickEvent.short_link_id == link_id, human)
            .group_by(ClickEvent.device_type)
        )
        by_country = await self._db.execute(
            select(ClickEvent.country, func.count())
            .where(ClickEvent.short_link_id == link_id, human, ClickEvent.country.is_not(None))
            .group_by(ClickEvent.country)
        )
        bots = await self._db.execute(
            select(func.count()).select_from(ClickEvent).where(
                ClickEvent.short_link_id == link_id, ClickEvent.is_bot.is_(True)
            )
        )
        DATABASE_READS_TOTAL.inc(3)
        return ClickBreakdown(
            by_device={device: count for device, count in by_device.all()},
            by_country={country: count for country, count in by_country.all()},
            bot_clicks=bots.scalar_one(),
        )
