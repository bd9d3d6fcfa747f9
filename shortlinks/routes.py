"""FastAPI route definitions for the short-link REST API.

This module is a thin layer: it parses requests, calls the link service or the
redirect resolver, and maps outcomes and domain errors onto HTTP responses.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/links
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409/422/503

    PATCH  /api/links/:link_id
        ├─ LinkUpdate (request body), X-Owner-Id
        └─ LinkResponse (200) or 404/422

    DELETE /api/links/:link_id
        └─ 204 or 404

    GET    /api/stats/:short_code
        └─ LinkStats (200) or 404

    GET    /:short_code[?preview=true][&password=...]
        └─ 307 Redirect, 200 preview, 401, 404, 410, 429 or 503

Outcome Mapping — GET /:short_code
==================================
::
    REDIRECT           -> REDIRECT_STATUS_CODE (default 307), Location
    PREVIEW            -> 200 LinkPreview
    PASSWORD_REQUIRED  -> 401 {"requires_password": true}
    NOT_FOUND          -> 404
    GONE               -> 410 (expired or deactivated)
    RATE_LIMITED       -> 429 + Retry-After
    StoreUnavailable   -> 503

Key Behaviours
===============
- All endpoints use async/await for non-blocking I/O.
- Database and cache access is injected via RequestContext.
- "Not found" and "not yours" are the same 404 on owner endpoints.
- 307 redirects are not cached by browsers, so deactivation and expiry take
  effect on the next visit.
"""

import uuid

from fastapi import APIRouter, Depends, Header, HTTPException, Response
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy import text

from shortlinks.dependencies import (
    RequestContext,
    get_link_service,
    get_owner_id,
    get_request_context,
    get_resolver,
)
from shortlinks.enums import HealthStatus, ResolutionStatus
from shortlinks.exceptions import (
    AliasTaken,
    CodeGenerationExhausted,
    NotFoundOrForbidden,
    StoreUnavailable,
    ValidationError,
)
from shortlinks.link_service import LinkService
from shortlinks.resolver import RedirectResolver, VisitorContext
from shortlinks.schemas import HealthResponse, LinkCreate, LinkPreview, LinkResponse, LinkStats, LinkUpdate

__all__ = ["router"]

router = APIRouter()


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    db_status = HealthStatus.HEALTHY
    cache_status = HealthStatus.HEALTHY

    try:
        await ctx.database.execute(text("SELECT 1"))
    except Exception as e:
        ctx.logger.error(f"Database health check failed: {e}")
        db_status = HealthStatus.UNHEALTHY

    try:
        await ctx.cache.ping()
    except Exception as e:
        ctx.logger.error(f"Cache health check failed: {e}")
        cache_status = HealthStatus.UNHEALTHY

    status = (
        HealthStatus.HEALTHY
        if db_status is HealthStatus.HEALTHY and cache_status is HealthStatus.HEALTHY
        else HealthStatus.UNHEALTHY
    )
    ctx.logger.debug(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status)


@router.post("/api/links", response_model=LinkResponse, status_code=201, tags=["links"])
async def create_link(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: str | None = Depends(get_owner_id),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.add_tag("link_creation")
    try:
        link = await service.create_link(payload, owner_id=owner_id)
    except AliasTaken as exc:
        ctx.logger.warning(f"Link creation failed: {exc}")
        raise HTTPException(status_code=409, detail=str(exc)) from exc
    except CodeGenerationExhausted as exc:
        ctx.logger.error(f"Link creation failed: {exc}")
        raise HTTPException(status_code=503, detail="Unable to allocate a short code, try again") from exc

    ctx.logger.info(f"Link created: {link.short_code} in {ctx.get_duration():.1f}ms")
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.patch("/api/links/{link_id}", response_model=LinkResponse, tags=["links"])
async def update_link(
    link_id: uuid.UUID,
    payload: LinkUpdate,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: str | None = Depends(get_owner_id),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    try:
        link = await service.update_link(link_id, owner_id, payload)
    except NotFoundOrForbidden as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return LinkResponse.from_link(link, ctx.settings.BASE_URL)


@router.delete("/api/links/{link_id}", status_code=204, tags=["links"])
async def delete_link(
    link_id: uuid.UUID,
    owner_id: str | None = Depends(get_owner_id),
    service: LinkService = Depends(get_link_service),
) -> Response:
    try:
        await service.delete_link(link_id, owner_id)
    except NotFoundOrForbidden as exc:
        raise HTTPException(status_code=404, detail=str(exc)) from exc
    return Response(status_code=204)


@router.get("/api/stats/{short_code}", response_model=LinkStats, tags=["links"])
async def get_stats(
    short_code: str,
    ctx: RequestContext = Depends(get_request_context),
    owner_id: str | None = Depends(get_owner_id),
    service: LinkService = Depends(get_link_service),
) -> LinkStats:
    try:
        link, breakdown = await service.get_stats(short_code, owner_id)
    except NotFoundOrForbidden as exc:
        ctx.logger.warning(f"Stats not found for short code: {short_code}")
        raise HTTPException(status_code=404, detail=str(exc)) from exc

    return LinkStats(
        **LinkResponse.from_link(link, ctx.settings.BASE_URL).model_dump(),
        human_clicks_by_device=breakdown.by_device,
        human_clicks_by_country=breakdown.by_country,
        bot_clicks=breakdown.bot_clicks,
    )


@router.get("/{short_code}", tags=["redirect"])
async def redirect_to_url(
    short_code: str,
    preview: bool = False,
    password: str | None = None,
    x_url_password: str | None = Header(default=None),
    ctx: RequestContext = Depends(get_request_context),
    resolver: RedirectResolver = Depends(get_resolver),
) -> Response:
    ctx.add_tag("redirect")
    visitor = VisitorContext(
        client_ip=ctx.client_ip,
        user_agent=ctx.user_agent,
        referer=ctx.referer,
        preview_requested=preview,
        provided_password=password or x_url_password,
    )

    try:
        outcome = await resolver.resolve(short_code, visitor)
    except StoreUnavailable as exc:
        raise HTTPException(status_code=503, detail="Service temporarily unavailable") from exc

    if outcome.status is ResolutionStatus.REDIRECT:
        return RedirectResponse(url=outcome.location, status_code=ctx.settings.REDIRECT_STATUS_CODE)
    if outcome.status is ResolutionStatus.PREVIEW:
        return JSONResponse(LinkPreview.from_payload(outcome.link, is_bot=outcome.is_bot).model_dump(mode="json"))
    if outcome.status is ResolutionStatus.PASSWORD_REQUIRED:
        return JSONResponse(
            {"detail": "Password required", "requires_password": True},
            status_code=401,
        )
    if outcome.status is ResolutionStatus.GONE:
        raise HTTPException(status_code=410, detail="Short URL has expired or is no longer active")
    if outcome.status is ResolutionStatus.RATE_LIMITED:
        raise HTTPException(
            status_code=429,
            detail="Too many requests",
            headers={"Retry-After": str(outcome.retry_after)},
        )
    raise HTTPException(status_code=404, detail="Short URL not found")
