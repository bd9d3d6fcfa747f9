"""Shared pytest fixtures for API, store, cache and resolver tests.

The suite runs without external services: SQLite (aiosqlite) stands in for
PostgreSQL and fakeredis for Redis.
"""

from collections.abc import AsyncGenerator
from pathlib import Path

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from shortlinks.background import BackgroundTaskRunner
from shortlinks.cache import ResolutionCache
from shortlinks.click_recorder import ClickRecorder
from shortlinks.config import Settings
from shortlinks.database import build_engine, build_session_factory, init_db
from shortlinks.dependencies import ServiceManager
from shortlinks.main import app
from shortlinks.rate_limit import RedirectRateGuard, RedisRateLimiter
from shortlinks.security import PasswordHasher
from shortlinks.store import ShortLinkStore

# httpx identifies itself as python-httpx, which counts as a bot.
BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0 Safari/537.36"


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(
        APP_ENV="test",
        BASE_URL="http://sho.rt",
        LOG_LEVEL="WARNING",
        DATABASE_URL=f"sqlite+aiosqlite:///{tmp_path / 'shortlinks.db'}",
        REDIS_URL="redis://unused:6379/0",
        CACHE_OPERATION_TIMEOUT_SECONDS=1.0,
        CACHE_LOCK_RETRY_DELAY_SECONDS=0.01,
        PASSWORD_HASH_ROUNDS=4,
    )


@pytest_asyncio.fixture
async def engine(settings: Settings) -> AsyncGenerator[AsyncEngine, None]:
    engine = build_engine(settings)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def redis_client() -> AsyncGenerator[fake_aioredis.FakeRedis, None]:
    client = fake_aioredis.FakeRedis(decode_responses=True)
    await client.flushall()
    yield client
    await client.aclose()


@pytest.fixture
def passwords(settings: Settings) -> PasswordHasher:
    return PasswordHasher(settings.PASSWORD_HASH_ROUNDS)


@pytest.fixture
def store(db_session: AsyncSession, passwords: PasswordHasher) -> ShortLinkStore:
    return ShortLinkStore(db_session, password_hasher=passwords.hash)


@pytest.fixture
def cache(redis_client, settings: Settings) -> ResolutionCache:
    return ResolutionCache(redis_client, settings)


@pytest.fixture
def rate_guard(redis_client, settings: Settings) -> RedirectRateGuard:
    return RedirectRateGuard(RedisRateLimiter(redis_client), settings)


@pytest_asyncio.fixture
async def background() -> AsyncGenerator[BackgroundTaskRunner, None]:
    runner = BackgroundTaskRunner(max_pending=100)
    yield runner
    await runner.drain(timeout=1.0)


@pytest.fixture
def recorder(session_factory: async_sessionmaker[AsyncSession], settings: Settings) -> ClickRecorder:
    return ClickRecorder(session_factory, settings)


@pytest_asyncio.fixture
async def manager(settings: Settings, engine: AsyncEngine, redis_client) -> AsyncGenerator[ServiceManager, None]:
    manager = ServiceManager(settings)
    await manager.initialize(engine=engine, redis_client=redis_client)
    yield manager
    await manager.cleanup()


@pytest_asyncio.fixture
async def client(manager: ServiceManager) -> AsyncGenerator[AsyncClient, None]:
    # ASGITransport does not run the lifespan; install the manager directly.
    app.state.services = manager
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", headers={"User-Agent": BROWSER_UA}) as ac:
        yield ac
    del app.state.services
