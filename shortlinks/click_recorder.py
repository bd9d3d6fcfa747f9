"""Click recording: classify the visitor and persist a ClickEvent.

Flow Diagram — ClickRecorder.record()
=====================================
::
    ┌──────────────────┐
    │ record(link_id,  │   (runs in a background task, after the
    │        visitor)  │    redirect response has been decided)
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ classify_bot     │  token list, case-insensitive
    │ classify_device  │  tv > tablet > mobile > desktop
    │ parse_agent      │  user_agents: browser / os family
    │ resolve_geo      │  MaxMind, nulls on failure
    └────────┬─────────┘
             ▼
    ┌──────────────────┐
    │ own DB session:  │
    │ INSERT click +   │
    │ bump counters    │
    └────────┬─────────┘
             ▼
      any exception ──► logged and counted, never raised

Key Behaviours
===============
- ``clicked_at`` is taken when the click is recorded.
- Bot clicks are always stored, flagged ``is_bot=True``. They only bump
  ``click_count`` when ``COUNT_BOT_CLICKS`` is set.
- The recorder never shares the request's database session.
"""

import logging
import uuid
from collections.abc import Iterable
from typing import TYPE_CHECKING

from prometheus_client import Counter
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from user_agents import parse

from shortlinks.config import Settings
from shortlinks.enums import DeviceType
from shortlinks.geo import GeoLocator, NullGeoLocator, resolve_geo
from shortlinks.models import ClickEvent
from shortlinks.store import ShortLinkStore
from shortlinks.utils import utcnow

if TYPE_CHECKING:
    from shortlinks.resolver import VisitorContext

__all__ = ["ClickRecorder", "classify_bot", "classify_device", "parse_agent"]

logger = logging.getLogger(__name__)

AGENT_FIELD_MAX_LENGTH = 50

CLICKS_RECORDED_TOTAL = Counter(
    "shortlinks_clicks_recorded_total",
    "Click events persisted",
    ["is_bot"],
)
CLICKS_FAILED_TOTAL = Counter(
    "shortlinks_clicks_failed_total",
    "Click events that could not be persisted",
)


def _matches_any(user_agent: str, tokens: Iterable[str]) -> bool:
    return any(token.lower() in user_agent for token in tokens)


def classify_device(
    user_agent: str | None,
    tv_tokens: Iterable[str],
    tablet_tokens: Iterable[str],
    mobile_tokens: Iterable[str],
) -> DeviceType:
    if not user_agent:
        return DeviceType.UNKNOWN
    ua = user_agent.lower()
    if _matches_any(ua, tv_tokens):
        return DeviceType.TV
    if _matches_any(ua, tablet_tokens):
        return DeviceType.TABLET
    if _matches_any(ua, mobile_tokens):
        return DeviceType.MOBILE
    return DeviceType.DESKTOP


def classify_bot(user_agent: str | None, tokens: Iterable[str]) -> bool:
    if not user_agent:
        return False
    return _matches_any(user_agent.lower(), tokens)


def parse_agent(user_agent: str | None) -> tuple[str | None, str | None]:
    """Return (browser family, os family), e.g. ("Chrome", "Mac OS X")."""
    if not user_agent:
        return None, None
    agent = parse(user_agent)
    browser = agent.browser.family or None
    os_family = agent.os.family or None
    return (
        browser[:AGENT_FIELD_MAX_LENGTH] if browser else None,
        os_family[:AGENT_FIELD_MAX_LENGTH] if os_family else None,
    )


class ClickRecorder:
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        geo_locator: GeoLocator | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings
        self._geo = geo_locator or NullGeoLocator()

    def is_bot(self, user_agent: str | None) -> bool:
        return classify_bot(user_agent, self._settings.BOT_USER_AGENT_TOKENS)

    def build_click(self, link_id: uuid.UUID, visitor: "VisitorContext") -> ClickEvent:
        settings = self._settings
        user_agent = visitor.user_agent
        browser, os_family = parse_agent(user_agent) if settings.ENABLE_USER_AGENT_PARSING else (None, None)
        location = resolve_geo(self._geo, visitor.client_ip)
        return ClickEvent(
            id=uuid.uuid4(),
            short_link_id=link_id,
            ip_address=visitor.client_ip,
            user_agent=user_agent,
            referer=visitor.referer,
            country=location.country,
            region=location.region,
            city=location.city,
            device_type=classify_device(
                user_agent,
                settings.DEVICE_TV_TOKENS,
                settings.DEVICE_TABLET_TOKENS,
                settings.DEVICE_MOBILE_TOKENS,
            ),
            browser=browser,
            os=os_family,
            is_bot=self.is_bot(user_agent),
            clicked_at=utcnow(),
        )

    async def record(self, link_id: uuid.UUID, visitor: "VisitorContext") -> None:
        try:
            click = self.build_click(link_id, visitor)
            async with self._session_factory() as session:
                store = ShortLinkStore(session)
                await store.record_click(click, count_click=not click.is_bot or self._settings.COUNT_BOT_CLICKS)
        except Exception as exc:
            CLICKS_FAILED_TOTAL.inc()
            logger.error(f"Click recording failed for link {link_id}: {exc!r}")
            return

        CLICKS_RECORDED_TOTAL.labels(is_bot=str(click.is_bot).lower()).inc()
        logger.debug(f"Click recorded for link {link_id} (device={click.device_type}, bot={click.is_bot})")
