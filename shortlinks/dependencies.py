"""Dependency injection with an application-scoped service manager.

This module provides a centralized way to inject database and cache dependencies
with consistent naming across all API endpoints. Shared resources are created
once in the FastAPI lifespan and stored on ``app.state``, so nothing reaches for
a module-level singleton and tests can build their own manager.

Dependency Graph
================
::
    Request
      ├─ get_service_manager ──► app.state.services
      ├─ get_db ───────────────► AsyncSession (per request)
      ├─ get_owner_id ─────────► X-Owner-Id header (auth seam)
      └─ get_request_context ──► RequestContext
              ├─ get_link_service ─► LinkService
              └─ get_resolver ─────► RedirectResolver
"""

import logging
import time
import uuid
from collections.abc import AsyncGenerator
from dataclasses import dataclass, field

import redis.asyncio as redis
from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlinks.background import BackgroundTaskRunner
from shortlinks.cache import ResolutionCache
from shortlinks.click_recorder import ClickRecorder
from shortlinks.config import Settings, get_settings
from shortlinks.database import build_engine, build_session_factory, close_db
from shortlinks.geo import GeoLocator, build_geo_locator
from shortlinks.link_service import LinkService
from shortlinks.rate_limit import RedirectRateGuard, RedisRateLimiter
from shortlinks.redis import close_redis, create_redis
from shortlinks.resolver import RedirectResolver
from shortlinks.security import PasswordHasher

__all__ = [
    "RequestContext",
    "ServiceManager",
    "get_db",
    "get_link_service",
    "get_owner_id",
    "get_request_context",
    "get_resolver",
    "get_service_manager",
    "setup_logger",
]


def setup_logger(level: str = "INFO") -> logging.Logger:
    """Configure the ``shortlinks`` logger once; modules log through its children."""
    logger = logging.getLogger("shortlinks")
    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        handler.setFormatter(formatter)
        logger.addHandler(handler)
    logger.setLevel(level.upper())
    return logger


# ============================================================================
# SERVICE MANAGER
# ============================================================================


class ServiceManager:
    """Owns the resources shared by all requests.

    Attributes:
        settings: Application settings
        logger: Configured ``shortlinks`` logger
        engine / session_factory: SQLAlchemy async engine and session factory
        redis: Shared Redis client
        cache: Resolution cache over ``redis``
        rate_guard: Redirect rate limiting over ``redis``
        passwords: bcrypt password hasher
        background: Fire-and-forget task runner
        click_recorder: Click event persistence (own sessions)
    """

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._initialized = False

    async def initialize(
        self,
        *,
        engine: AsyncEngine | None = None,
        redis_client: redis.Redis | None = None,
        geo_locator: GeoLocator | None = None,
    ) -> None:
        """Create shared resources once at startup."""
        if self._initialized:
            return
        settings = self.settings
        self.logger = setup_logger(settings.LOG_LEVEL)

        self.engine = engine or build_engine(settings)
        self.session_factory: async_sessionmaker[AsyncSession] = build_session_factory(self.engine)
        self.redis = redis_client or create_redis(settings.REDIS_URL)

        self.cache = ResolutionCache(self.redis, settings)
        self.rate_guard = RedirectRateGuard(RedisRateLimiter(self.redis), settings)
        self.passwords = PasswordHasher(settings.PASSWORD_HASH_ROUNDS)
        self.geo_locator = geo_locator or build_geo_locator(settings)
        self.background = BackgroundTaskRunner(settings.CLICK_MAX_PENDING_TASKS)
        self.click_recorder = ClickRecorder(self.session_factory, settings, self.geo_locator)

        self._initialized = True
        self.logger.info(f"{settings.APP_NAME} services initialized (env={settings.APP_ENV})")

    async def cleanup(self) -> None:
        """Drain background work, then release shared resources at shutdown."""
        if not self._initialized:
            return
        await self.background.drain(self.settings.BACKGROUND_DRAIN_TIMEOUT_SECONDS)
        self.geo_locator.close()
        await close_redis(self.redis)
        await close_db(self.engine)
        self._initialized = False
        self.logger.info("Services shut down")


# ============================================================================
# LIGHTWEIGHT REQUEST CONTEXT
# ============================================================================


@dataclass
class RequestContext:
    """Per-request context with tracking and shared resource access.

    Attributes:
        database: Async database session (only per-request resource)
        service_manager: Service manager with shared resources
        request_id: Unique identifier for this request
        trace_id: Correlation ID for distributed tracing
        user_agent: Client user agent string
        client_ip: Client IP address
        referer: Referer header, if any
        start_time: Request start timestamp
        tags: Request tags for categorization
    """

    database: AsyncSession
    service_manager: ServiceManager
    request_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    trace_id: str | None = None
    user_agent: str | None = None
    client_ip: str | None = None
    referer: str | None = None
    start_time: float = field(default_factory=lambda: time.time())
    tags: list[str] = field(default_factory=list)

    @property
    def settings(self) -> Settings:
        return self.service_manager.settings

    @property
    def cache(self) -> ResolutionCache:
        return self.service_manager.cache

    @property
    def logger(self) -> logging.LoggerAdapter:
        """Shared logger with the request context attached to every record."""
        return logging.LoggerAdapter(
            self.service_manager.logger,
            {
                "request_id": self.request_id,
                "trace_id": self.trace_id or self.request_id,
                "client_ip": self.client_ip,
                "user_agent": self.user_agent,
                "tags": ",".join(self.tags),
            },
        )

    def add_tag(self, tag: str) -> None:
        if tag not in self.tags:
            self.tags.append(tag)

    def get_duration(self) -> float:
        """Request duration in milliseconds."""
        return (time.time() - self.start_time) * 1000


# ============================================================================
# DEPENDENCY FUNCTIONS
# ============================================================================


async def get_service_manager(request: Request) -> ServiceManager:
    return request.app.state.services


async def get_db(manager: ServiceManager = Depends(get_service_manager)) -> AsyncGenerator[AsyncSession, None]:
    async with manager.session_factory() as session:
        yield session


def get_owner_id(x_owner_id: str | None = Header(default=None)) -> str | None:
    """Caller identity. Authentication plugs in here; anonymous callers get None."""
    if x_owner_id is None:
        return None
    x_owner_id = x_owner_id.strip()
    return x_owner_id or None


def _client_ip(request: Request, settings: Settings) -> str | None:
    if settings.TRUST_FORWARDED_FOR:
        forwarded = request.headers.get("x-forwarded-for")
        if forwarded:
            return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


async def get_request_context(
    request: Request,
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> RequestContext:
    return RequestContext(
        database=db,
        service_manager=manager,
        trace_id=request.headers.get("x-trace-id"),
        user_agent=request.headers.get("user-agent"),
        client_ip=_client_ip(request, manager.settings),
        referer=request.headers.get("referer"),
    )


def get_link_service(ctx: RequestContext = Depends(get_request_context)) -> LinkService:
    return LinkService.from_context(ctx)


def get_resolver(ctx: RequestContext = Depends(get_request_context)) -> RedirectResolver:
    return RedirectResolver.from_context(ctx)
