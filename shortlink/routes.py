"""FastAPI route definitions for the short-link REST API.

API Endpoint Overview
=====================
::
    GET    /health
        └─ HealthResponse (200)

    POST   /api/shorten
        ├─ LinkCreate (request body)
        └─ LinkResponse (201) or 409/422

    POST   /api/bulk-shorten
        └─ BulkShortenResponse (200) or 400 (over BULK_MAX_URLS)/422

    GET    /api/info/:link_id
        └─ LinkInfo (200) or 404/410

    POST   /api/verify/:link_id
        └─ PasswordVerifyResponse (200) or 401/404/410

    GET    /api/analytics/:link_id?days=30
        └─ AnalyticsResponse (200) or 404

    GET    /api/users/:owner_id/links
        └─ [LinkResponse] (200)

    DELETE /api/links/:link_id
        └─ 204 or 404

    GET    /:link_id
        └─ 307 Redirect (target or password page) or 404/410/503

Key Behaviours
===============
- Errors from the service layer are ``ShortLinkError`` subclasses; the handler
  registered in ``shortlink.main`` turns them into status codes.
- The redirect never waits on click bookkeeping.
- 307 redirects preserve the HTTP method.
"""

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from fastapi.responses import RedirectResponse

from shortlink.dependencies import RequestContext, get_link_service, get_request_context, get_resolver
from shortlink.enums import HealthStatus, ResolutionStatus
from shortlink.models import Link, as_utc
from shortlink.resolver import LinkResolver
from shortlink.schemas import (
    AnalyticsResponse,
    BulkShortenRequest,
    BulkShortenResponse,
    HealthResponse,
    LinkCreate,
    LinkInfo,
    LinkResponse,
    PasswordVerifyRequest,
    PasswordVerifyResponse,
)
from shortlink.service import LinkService

__all__ = ["router"]

router = APIRouter()


def _link_response(link: Link, base_url: str) -> LinkResponse:
    return LinkResponse(
        link_id=link.id,
        short_url=f"{base_url}/{link.id}",
        target_url=link.target_url,
        owner_id=link.owner_id,
        has_password=link.has_password,
        title=link.title,
        image=link.image,
        click_count=link.click_count,
        created_at=as_utc(link.created_at),
        expires_at=as_utc(link.expires_at),
        last_accessed_at=as_utc(link.last_accessed_at),
    )


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check(ctx: RequestContext = Depends(get_request_context)) -> HealthResponse:
    resources = ctx.resources
    db_status = HealthStatus.HEALTHY if await resources.database_healthy() else HealthStatus.UNHEALTHY
    cache_status = HealthStatus.HEALTHY if await resources.cache.ping() else HealthStatus.UNHEALTHY
    channel_status = HealthStatus.HEALTHY if resources.channel.available else HealthStatus.UNHEALTHY

    # The redirect path survives cache and channel outages; only the store is fatal.
    status = db_status
    ctx.logger.info(f"Health check completed: {status.value}")
    return HealthResponse(status=status, database=db_status, cache=cache_status, channel=channel_status)


@router.post("/api/shorten", response_model=LinkResponse, status_code=201, tags=["links"])
async def shorten_url(
    payload: LinkCreate,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> LinkResponse:
    ctx.logger.info(
        f"Link creation requested: {payload.url}",
        extra={"operation": "create_link", "custom_id": payload.custom_id},
    )
    link = await service.create(payload)
    ctx.logger.info(
        f"Link created: {link.id}",
        extra={"operation": "create_link", "link_id": link.id, "duration_ms": ctx.get_duration()},
    )
    return _link_response(link, ctx.settings.BASE_URL)


@router.post("/api/bulk-shorten", response_model=BulkShortenResponse, tags=["links"])
async def bulk_shorten(
    payload: BulkShortenRequest,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> BulkShortenResponse:
    if len(payload.urls) > ctx.settings.BULK_MAX_URLS:
        raise HTTPException(status_code=400, detail=f"Maximum {ctx.settings.BULK_MAX_URLS} URLs allowed")
    results = await service.bulk_create(payload.urls, owner_id=payload.owner_id)
    ctx.logger.info(f"Bulk shorten: {sum(item.success for item in results)}/{len(results)} created")
    return BulkShortenResponse(results=results)


@router.get("/api/info/{link_id}", response_model=LinkInfo, tags=["links"])
async def link_info(link_id: str, service: LinkService = Depends(get_link_service)) -> LinkInfo:
    link = await service.get(link_id)
    return LinkInfo(
        link_id=link.id,
        has_password=link.has_password,
        title=link.title,
        image=link.image,
        expires_at=as_utc(link.expires_at),
    )


@router.post("/api/verify/{link_id}", response_model=PasswordVerifyResponse, tags=["redirect"])
async def verify_password(
    link_id: str,
    payload: PasswordVerifyRequest,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> PasswordVerifyResponse:
    target_url = await resolver.verify_password(link_id, payload.password, ctx.client)
    ctx.logger.info(f"Password verified for {link_id}", extra={"operation": "verify", "link_id": link_id})
    return PasswordVerifyResponse(target_url=target_url)


@router.get("/api/analytics/{link_id}", response_model=AnalyticsResponse, tags=["analytics"])
async def link_analytics(
    link_id: str,
    days: int | None = Query(None, ge=0),
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> AnalyticsResponse:
    if days is None:
        days = ctx.settings.STATS_DEFAULT_WINDOW_DAYS
    window_days = min(days, ctx.settings.STATS_MAX_WINDOW_DAYS)
    link, snapshot = await service.analytics(link_id, window_days)
    return AnalyticsResponse(link=_link_response(link, ctx.settings.BASE_URL), stats=snapshot)


@router.get("/api/users/{owner_id}/links", response_model=list[LinkResponse], tags=["links"])
async def owner_links(
    owner_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> list[LinkResponse]:
    links = await service.list_for_owner(owner_id)
    return [_link_response(link, ctx.settings.BASE_URL) for link in links]


@router.delete("/api/links/{link_id}", status_code=204, tags=["links"])
async def delete_link(
    link_id: str,
    ctx: RequestContext = Depends(get_request_context),
    service: LinkService = Depends(get_link_service),
) -> Response:
    await service.delete(link_id)
    ctx.logger.info(f"Link deleted: {link_id}", extra={"operation": "delete", "link_id": link_id})
    return Response(status_code=204)


@router.get("/{link_id}", tags=["redirect"])
async def redirect_to_target(
    link_id: str,
    ctx: RequestContext = Depends(get_request_context),
    resolver: LinkResolver = Depends(get_resolver),
) -> RedirectResponse:
    resolution = await resolver.resolve(link_id, ctx.client)

    if resolution.status is ResolutionStatus.GATED:
        ctx.logger.info(f"Redirect gated: {link_id}", extra={"operation": "redirect", "link_id": link_id})
        return RedirectResponse(url=f"{ctx.settings.PASSWORD_PAGE_URL}/{link_id}", status_code=307)

    ctx.logger.info(
        f"Redirect successful: {link_id} -> {resolution.target_url}",
        extra={"operation": "redirect", "link_id": link_id, "duration_ms": ctx.get_duration()},
    )
    return RedirectResponse(url=resolution.target_url, status_code=307)
