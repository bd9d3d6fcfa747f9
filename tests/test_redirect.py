"""Redirect endpoint behavior tests."""

import datetime

import pytest
from httpx import AsyncClient

from shortlinks.dependencies import ServiceManager
from shortlinks.models import ShortLink
from shortlinks.rate_limit import RedirectRateGuard, RedisRateLimiter
from shortlinks.store import ShortLinkStore
from shortlinks.utils import utcnow

ALICE = {"X-Owner-Id": "alice"}


async def shorten(client: AsyncClient, **payload) -> dict:
    response = await client.post("/api/links", json=payload, headers=ALICE)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.mark.asyncio
async def test_redirect_valid_code(client: AsyncClient) -> None:
    link = await shorten(client, original_url="https://www.google.com")

    # httpx won't follow by default
    response = await client.get(f"/{link['short_code']}", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "https://www.google.com"


@pytest.mark.asyncio
async def test_redirect_invalid_code(client: AsyncClient) -> None:
    response = await client.get("/nonexistent", follow_redirects=False)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redirect_malformed_code(client: AsyncClient) -> None:
    response = await client.get("/favicon.ico", follow_redirects=False)
    assert response.status_code == 404


@pytest.mark.asyncio
async def test_redirect_records_clicks(client: AsyncClient, manager: ServiceManager) -> None:
    link = await shorten(client, original_url="https://www.python.org")

    for _ in range(3):
        await client.get(f"/{link['short_code']}", follow_redirects=False)
    await manager.background.drain(timeout=5.0)

    stats = await client.get(f"/api/stats/{link['short_code']}")
    assert stats.status_code == 200
    assert stats.json()["click_count"] == 3


@pytest.mark.asyncio
async def test_redirect_with_custom_alias(client: AsyncClient) -> None:
    await shorten(client, original_url="https://www.github.com", custom_alias="ghub")

    response = await client.get("/ghub", follow_redirects=False)
    assert response.status_code == 307
    assert response.headers["location"] == "https://www.github.com"


@pytest.mark.asyncio
async def test_redirect_deactivated_is_gone(client: AsyncClient) -> None:
    link = await shorten(client, original_url="https://www.github.com")
    await client.patch(f"/api/links/{link['id']}", json={"is_active": False}, headers=ALICE)

    response = await client.get(f"/{link['short_code']}", follow_redirects=False)
    assert response.status_code == 410


@pytest.mark.asyncio
async def test_redirect_expired_is_gone(client: AsyncClient, manager: ServiceManager) -> None:
    async with manager.session_factory() as session:
        await ShortLinkStore(session).create(
            short_code="late01",
            original_url="https://example.com",
            expires_at=utcnow() - datetime.timedelta(seconds=5),
        )

    response = await client.get("/late01", follow_redirects=False)
    assert response.status_code == 410


@pytest.mark.asyncio
async def test_redirect_password_protected(client: AsyncClient) -> None:
    link = await shorten(client, original_url="https://secret.example.com", password="opensesame")
    code = link["short_code"]

    missing = await client.get(f"/{code}", follow_redirects=False)
    wrong = await client.get(f"/{code}", params={"password": "nope"}, follow_redirects=False)
    via_query = await client.get(f"/{code}", params={"password": "opensesame"}, follow_redirects=False)
    via_header = await client.get(f"/{code}", headers={"X-URL-Password": "opensesame"}, follow_redirects=False)

    assert missing.status_code == 401
    assert missing.json()["requires_password"] is True
    assert wrong.status_code == 401
    assert via_query.status_code == 307
    assert via_header.headers["location"] == "https://secret.example.com"


@pytest.mark.asyncio
async def test_preview(client: AsyncClient, manager: ServiceManager) -> None:
    link = await shorten(client, original_url="https://www.python.org", title="Python")

    response = await client.get(f"/{link['short_code']}", params={"preview": "true"})
    await manager.background.drain(timeout=5.0)

    assert response.status_code == 200
    data = response.json()
    assert data["original_url"] == "https://www.python.org"
    assert data["title"] == "Python"
    stats = await client.get(f"/api/stats/{link['short_code']}")
    assert stats.json()["click_count"] == 0


@pytest.mark.asyncio
async def test_preview_hides_protected_destination(client: AsyncClient) -> None:
    link = await shorten(client, original_url="https://secret.example.com", password="opensesame")

    response = await client.get(f"/{link['short_code']}", params={"preview": "true"})

    assert response.status_code == 200
    assert response.json()["original_url"] is None
    assert response.json()["has_password"] is True


@pytest.mark.asyncio
async def test_bot_click_recorded_separately(client: AsyncClient, manager: ServiceManager) -> None:
    link = await shorten(client, original_url="https://www.python.org")
    bot = {"User-Agent": "Mozilla/5.0 (compatible; Googlebot/2.1; +http://www.google.com/bot.html)"}

    response = await client.get(f"/{link['short_code']}", headers=bot, follow_redirects=False)
    await manager.background.drain(timeout=5.0)

    assert response.status_code == 307
    stats = (await client.get(f"/api/stats/{link['short_code']}")).json()
    assert stats["click_count"] == 0
    assert stats["bot_clicks"] == 1


@pytest.mark.asyncio
async def test_rate_limited(client: AsyncClient, manager: ServiceManager) -> None:
    link = await shorten(client, original_url="https://www.python.org")
    limited = manager.settings.model_copy(update={"REDIRECT_RATE_LIMIT_PER_CODE": 2})
    manager.rate_guard = RedirectRateGuard(RedisRateLimiter(manager.redis), limited)

    for _ in range(2):
        await client.get(f"/{link['short_code']}", follow_redirects=False)
    response = await client.get(f"/{link['short_code']}", follow_redirects=False)

    assert response.status_code == 429
    assert int(response.headers["retry-after"]) >= 1


@pytest.mark.asyncio
async def test_store_outage_is_503(client: AsyncClient, manager: ServiceManager, monkeypatch) -> None:
    async def broken(self, code: str) -> ShortLink | None:
        raise OSError("connection refused")

    monkeypatch.setattr(ShortLinkStore, "get_by_code", broken)

    response = await client.get("/abc123", follow_redirects=False)
    assert response.status_code == 503
