"""Link write path tests: creation, owner updates, deletion and cache upkeep."""

import uuid
from unittest.mock import AsyncMock

import pytest

from shortlinks.cache import MISS, ResolutionCache
from shortlinks.enums import ResolutionStatus
from shortlinks.exceptions import (
    AliasTaken,
    CodeGenerationExhausted,
    NotFoundOrForbidden,
    ShortCodeConflict,
    ValidationError,
)
from shortlinks.link_service import LinkService
from shortlinks.resolver import RedirectResolver, VisitorContext
from shortlinks.schemas import CachedLinkPayload, LinkCreate, LinkUpdate
from shortlinks.store import ShortLinkStore

VISITOR = VisitorContext(client_ip="203.0.113.9", user_agent="Mozilla/5.0 Firefox/121.0")


@pytest.fixture
def service(store: ShortLinkStore, cache: ResolutionCache, passwords, settings) -> LinkService:
    return LinkService(store=store, cache=cache, passwords=passwords, settings=settings)


@pytest.fixture
def resolver(store, cache, rate_guard, background, passwords, settings) -> RedirectResolver:
    return RedirectResolver(
        cache=cache,
        store=store,
        rate_guard=rate_guard,
        background=background,
        passwords=passwords,
        settings=settings,
    )


@pytest.mark.asyncio
async def test_create_random_code_and_cache(service: LinkService, cache: ResolutionCache, settings) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com/a"), owner_id="alice")

    assert len(link.short_code) == settings.SHORT_CODE_LENGTH
    assert link.custom_alias is None
    assert link.owner_id == "alice"
    cached = await cache.get(link.short_code)
    assert isinstance(cached, CachedLinkPayload)
    assert cached.original_url == "https://example.com/a"


@pytest.mark.asyncio
async def test_create_with_alias(service: LinkService) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com", custom_alias="launch"))

    assert link.short_code == "launch"
    assert link.custom_alias == "launch"


@pytest.mark.asyncio
async def test_duplicate_alias_rejected(service: LinkService) -> None:
    await service.create_link(LinkCreate(original_url="https://example.com", custom_alias="launch"))

    with pytest.raises(AliasTaken):
        await service.create_link(LinkCreate(original_url="https://other.example.com", custom_alias="launch"))


@pytest.mark.asyncio
async def test_alias_cannot_shadow_random_code(service: LinkService) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com"))

    with pytest.raises(AliasTaken):
        await service.create_link(LinkCreate(original_url="https://x.example.com", custom_alias=link.short_code))


@pytest.mark.asyncio
async def test_create_overwrites_tombstone(
    service: LinkService, cache: ResolutionCache, resolver: RedirectResolver
) -> None:
    assert (await resolver.resolve("fresh1", VISITOR)).status is ResolutionStatus.NOT_FOUND

    await service.create_link(LinkCreate(original_url="https://example.com/new", custom_alias="fresh1"))

    outcome = await resolver.resolve("fresh1", VISITOR)
    assert outcome.status is ResolutionStatus.REDIRECT
    assert outcome.location == "https://example.com/new"


@pytest.mark.asyncio
async def test_create_retries_lost_insert_race(service: LinkService, store: ShortLinkStore, monkeypatch) -> None:
    real_create = store.create
    attempts = []

    async def racy_create(**fields):
        attempts.append(fields["short_code"])
        if len(attempts) == 1:
            raise ShortCodeConflict(fields["short_code"])
        return await real_create(**fields)

    monkeypatch.setattr(store, "create", racy_create)

    link = await service.create_link(LinkCreate(original_url="https://example.com"))

    assert len(attempts) == 2
    assert link.short_code == attempts[1]


@pytest.mark.asyncio
async def test_alias_insert_race_is_alias_taken(service: LinkService, store: ShortLinkStore, monkeypatch) -> None:
    monkeypatch.setattr(store, "create", AsyncMock(side_effect=ShortCodeConflict("launch")))

    with pytest.raises(AliasTaken):
        await service.create_link(LinkCreate(original_url="https://example.com", custom_alias="launch"))


@pytest.mark.asyncio
async def test_create_exhausted(service: LinkService, store: ShortLinkStore, monkeypatch) -> None:
    monkeypatch.setattr(store, "is_code_taken", AsyncMock(return_value=True))

    with pytest.raises(CodeGenerationExhausted):
        await service.create_link(LinkCreate(original_url="https://example.com"))


@pytest.mark.asyncio
async def test_create_hashes_password(service: LinkService, passwords) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com", password="hunter22"))

    assert link.password_hash is not None
    assert "hunter22" not in link.password_hash
    assert passwords.verify("hunter22", link.password_hash)


@pytest.mark.asyncio
async def test_update_empty_patch_rejected(service: LinkService) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com"), owner_id="alice")

    with pytest.raises(ValidationError):
        await service.update_link(link.id, "alice", LinkUpdate())


@pytest.mark.asyncio
async def test_update_invalidates_cache(
    service: LinkService, cache: ResolutionCache, resolver: RedirectResolver
) -> None:
    link = await service.create_link(
        LinkCreate(original_url="https://old.example.com", custom_alias="moving"), owner_id="alice"
    )
    assert (await resolver.resolve("moving", VISITOR)).location == "https://old.example.com"

    await service.update_link(link.id, "alice", LinkUpdate(original_url="https://new.example.com"))

    assert await cache.get("moving") is MISS
    assert (await resolver.resolve("moving", VISITOR)).location == "https://new.example.com"


@pytest.mark.asyncio
async def test_deactivate_takes_effect_immediately(service: LinkService, resolver: RedirectResolver) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com"), owner_id="alice")
    assert (await resolver.resolve(link.short_code, VISITOR)).status is ResolutionStatus.REDIRECT

    await service.update_link(link.id, "alice", LinkUpdate(is_active=False))

    assert (await resolver.resolve(link.short_code, VISITOR)).status is ResolutionStatus.GONE


@pytest.mark.asyncio
async def test_update_by_other_owner(service: LinkService) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com"), owner_id="alice")

    with pytest.raises(NotFoundOrForbidden):
        await service.update_link(link.id, "mallory", LinkUpdate(title="pwned"))
    with pytest.raises(NotFoundOrForbidden):
        await service.update_link(uuid.uuid4(), "alice", LinkUpdate(title="ghost"))


@pytest.mark.asyncio
async def test_delete_invalidates_and_retires(service: LinkService, resolver: RedirectResolver) -> None:
    link = await service.create_link(
        LinkCreate(original_url="https://example.com", custom_alias="bye-bye"), owner_id="alice"
    )
    assert (await resolver.resolve("bye-bye", VISITOR)).status is ResolutionStatus.REDIRECT

    await service.delete_link(link.id, "alice")

    assert (await resolver.resolve("bye-bye", VISITOR)).status is ResolutionStatus.NOT_FOUND
    with pytest.raises(AliasTaken):
        await service.create_link(LinkCreate(original_url="https://example.com", custom_alias="bye-bye"))


@pytest.mark.asyncio
async def test_delete_by_other_owner(service: LinkService) -> None:
    link = await service.create_link(LinkCreate(original_url="https://example.com"), owner_id="alice")

    with pytest.raises(NotFoundOrForbidden):
        await service.delete_link(link.id, "mallory")
    with pytest.raises(NotFoundOrForbidden):
        await service.delete_link(link.id, None)


@pytest.mark.asyncio
async def test_stats_of_private_link_owner_only(service: LinkService) -> None:
    link = await service.create_link(
        LinkCreate(original_url="https://example.com", is_public=False), owner_id="alice"
    )

    found, breakdown = await service.get_stats(link.short_code, "alice")
    assert found.id == link.id
    assert breakdown.bot_clicks == 0
    with pytest.raises(NotFoundOrForbidden):
        await service.get_stats(link.short_code, "mallory")
    with pytest.raises(NotFoundOrForbidden):
        await service.get_stats("nothere", None)
