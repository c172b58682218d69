"""
FastAPI Application Entry Point

Toast Order Sync - incremental order collection and order-board expansion.
Supports both the simulated POS (development) and the real Toast API
(production).

Endpoints:
    - GET  /api/orders/latest: Latest raw orders (ids or full documents)
    - GET  /api/orders/expanded: Order-board entries with menu names and totals
    - GET  /api/orders/by-date: Cached orders for one business date
    - GET  /api/orders/by-range: Orders opened in an explicit time range
    - GET  /api/orders/{guid}: Single order (cache first)
    - GET  /api/menus: Published menu with cache status
    - GET  /api/kitchen/prep-stations: Kitchen prep stations
    - GET  /api/debug/auth-stats: Cached token state and refresh counters
    - POST /api/orders/sync: Queue a background incremental sync
    - GET  /health: System health check

Author: Your Name
Version: 2.0.0
"""

import asyncio
import logging
import sys
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Windows-specific event loop policy
if sys.platform == "win32":
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())

# Internal imports
from ordersync.core.config import get_settings, setup_logging
from ordersync.schemas import (
    AuthStatsResponse,
    ErrorResponse,
    ExpandedOrdersResponse,
    HealthResponse,
    LatestOrdersResponse,
    MenuResponse,
    OrderDetailEnum,
    OrdersByDateResponse,
    PrepStationsRequest,
    PrepStationsResponse,
    SyncResponse,
    UpstreamErrorResponse,
)
from ordersync.services.feed import OrderFeedService, get_order_feed_service
from ordersync.services.kv import BaseKeyValueStore, get_kv_store
from ordersync.services.menu import MenuRepository, get_menu_repository
from ordersync.services.orders.fields import parse_business_date
from ordersync.services.toast import BaseToastApi, UpstreamError, describe_token, get_toast_api
from ordersync.tasks import sync_recent_orders

# Initialize configuration and logging
settings = get_settings()
setup_logging()
logger = logging.getLogger(__name__)

DEFAULT_RANGE_HOURS = 6


# =============================================================================
# APPLICATION LIFECYCLE
# =============================================================================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application startup and shutdown events.
    """
    # Startup
    logger.info("=" * 60)
    logger.info(f"🚀 Starting {settings.app_name}")
    logger.info(f"   Version: {settings.app_version}")
    logger.info(f"   Environment: {settings.env_mode.value}")
    logger.info(f"   Debug: {settings.debug}")
    logger.info("=" * 60)

    # Log service configuration
    kv_store = get_kv_store()
    logger.info(f"✅ KV Store: {kv_store.provider_name}")

    # Validate production config
    missing = settings.validate_production_config()
    if missing:
        logger.warning(f"⚠️ Missing production config: {missing}")
    else:
        toast_api = get_toast_api()
        logger.info(f"✅ Toast API: {toast_api.provider_name}")

    logger.info("=" * 60)
    logger.info("✅ Application ready!")
    logger.info("=" * 60)

    yield  # Application runs

    # Shutdown
    logger.info("Shutting down...")
    if get_toast_api.cache_info().currsize:
        await get_toast_api().close()
    await kv_store.close()
    logger.info("✅ Cleanup complete")


# =============================================================================
# APPLICATION INSTANCE
# =============================================================================

app = FastAPI(
    title=settings.app_name,
    description=(
        "Incremental Toast POS order sync with a cached order index, "
        "menu-aware order expansion and graceful degradation when upstream fails."
    ),
    version=settings.app_version,
    lifespan=lifespan,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive query datetimes as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def blank_to_none(value: Optional[str]) -> Optional[str]:
    if value is None or not value.strip():
        return None
    return value.strip()


def parse_business_date_param(value: str) -> int:
    """``2024-05-01`` or ``20240501`` -> ``20240501``; 400 otherwise."""
    business_date = parse_business_date(value.strip().replace("-", ""))
    try:
        if business_date is None:
            raise ValueError(value)
        datetime.strptime(str(business_date), "%Y%m%d")
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid business date: {value}")
    return business_date


def get_optional_toast_api() -> Optional[BaseToastApi]:
    """Toast API for the health check; None when it cannot be configured."""
    try:
        return get_toast_api()
    except ValueError as e:
        logger.error(f"Toast API not configured: {e}")
        return None


def upstream_error_response(
    exc: UpstreamError,
    route: str,
    code: Optional[str] = None,
) -> JSONResponse:
    """502 payload for an upstream failure nothing could cover."""
    return JSONResponse(
        status_code=502,
        content={
            "error": {"message": exc.message, "code": code or exc.code},
            "debug": {"status": exc.status, "requestId": exc.request_id, "route": route},
        },
    )


# =============================================================================
# ROOT & HEALTH ENDPOINTS
# =============================================================================

@app.get("/", tags=["Root"])
async def root() -> dict[str, str]:
    """API root with navigation links."""
    return {
        "message": f"🍞 Welcome to {settings.app_name}",
        "version": settings.app_version,
        "environment": settings.env_mode.value,
        "documentation": "/docs",
        "latest": "/api/orders/latest",
        "expanded": "/api/orders/expanded",
        "menus": "/api/menus",
        "prepStations": "/api/kitchen/prep-stations",
        "health": "/health",
    }


@app.get(
    "/health",
    response_model=HealthResponse,
    tags=["Health"],
    summary="System Health Check",
)
async def health_check(
    kv_store: BaseKeyValueStore = Depends(get_kv_store),
    toast_api: Optional[BaseToastApi] = Depends(get_optional_toast_api),
) -> HealthResponse:
    """Verify the cache store and the POS API are reachable."""

    kv_status = "healthy"
    try:
        if not await kv_store.health_check():
            kv_status = "unhealthy"
    except Exception as e:
        kv_status = f"unhealthy: {str(e)}"
        logger.error(f"KV store health check failed: {e}")

    if toast_api is None:
        toast_status = "unhealthy: not configured"
    else:
        try:
            toast_status = "healthy" if await toast_api.health_check() else "unhealthy"
        except Exception as e:
            toast_status = f"unhealthy: {str(e)}"
            logger.error(f"Toast API health check failed: {e}")

    overall = "operational" if kv_status == toast_status == "healthy" else "degraded"

    return HealthResponse(
        status=overall,
        environment=settings.env_mode.value,
        kv_store=kv_status,
        toast_api=toast_status,
        timestamp=datetime.now(),
    )


# =============================================================================
# ORDER ENDPOINTS
# =============================================================================

@app.get(
    "/api/orders/latest",
    response_model=LatestOrdersResponse,
    response_model_exclude_unset=True,
    responses={400: {"model": ErrorResponse}, 502: {"model": UpstreamErrorResponse}},
    tags=["Orders"],
    summary="Latest Orders",
)
async def latest_orders(
    limit: int = Query(settings.default_orders_limit, ge=1, le=500),
    detail: OrderDetailEnum = Query(OrderDetailEnum.FULL),
    page_size: int = Query(settings.orders_page_size, ge=1, le=100, alias="pageSize"),
    minutes: Optional[int] = Query(None, ge=1),
    since: Optional[datetime] = Query(None),
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    location_id: Optional[str] = Query(None, alias="locationId"),
    status: Optional[str] = Query(None),
    incremental: bool = Query(False),
    debug: bool = Query(False),
    feed: OrderFeedService = Depends(get_order_feed_service),
) -> dict[str, Any]:
    """
    Retrieve the latest orders, newest first.

    With ``incremental=true`` the window starts at the sync cursor and
    short results are topped up from the cached recent index.
    """
    window = None
    if start is not None or end is not None:
        if start is None or end is None:
            raise HTTPException(status_code=400, detail="start and end must be provided together")
        window = (as_utc(start), as_utc(end))

    return await feed.latest_orders(
        limit,
        detail=detail.value,
        page_size=page_size,
        minutes=minutes,
        since=as_utc(since),
        window=window,
        location_id=location_id,
        status=status,
        incremental=incremental,
        debug=debug,
    )


@app.get(
    "/api/orders/expanded",
    response_model=ExpandedOrdersResponse,
    response_model_exclude_unset=True,
    responses={502: {"model": UpstreamErrorResponse}},
    tags=["Orders"],
    summary="Expanded Orders",
)
async def expanded_orders(
    limit: int = Query(settings.expanded_default_limit, ge=1, le=settings.expanded_max_limit),
    minutes: Optional[int] = Query(None, ge=1),
    location_id: Optional[str] = Query(None, alias="locationId"),
    status: Optional[str] = Query(None),
    fulfillment_status: Optional[list[str]] = Query(None, alias="fulfillmentStatus"),
    refresh_menu: bool = Query(False, alias="refreshMenu"),
    debug: bool = Query(False),
    feed: OrderFeedService = Depends(get_order_feed_service),
) -> dict[str, Any]:
    """Order-board entries: one per check, with items, modifiers and money."""
    return await feed.expanded_orders(
        limit,
        minutes=minutes,
        location_id=location_id,
        status=status,
        fulfillment_status=fulfillment_status,
        refresh_menu=refresh_menu,
        debug=debug,
    )


@app.get(
    "/api/orders/by-date",
    response_model=OrdersByDateResponse,
    response_model_exclude_unset=True,
    responses={400: {"model": ErrorResponse}},
    tags=["Orders"],
    summary="Orders By Business Date",
)
async def orders_by_date(
    date: str = Query(..., description="Business date as YYYY-MM-DD or yyyyMMdd"),
    detail: OrderDetailEnum = Query(OrderDetailEnum.IDS),
    feed: OrderFeedService = Depends(get_order_feed_service),
) -> dict[str, Any]:
    """Orders the cache holds for one business date, newest first."""
    return await feed.orders_by_date(parse_business_date_param(date), detail=detail.value)


@app.get(
    "/api/orders/by-range",
    response_model=LatestOrdersResponse,
    response_model_exclude_unset=True,
    responses={400: {"model": ErrorResponse}, 502: {"model": UpstreamErrorResponse}},
    tags=["Orders"],
    summary="Orders By Time Range",
)
async def orders_by_range(
    start: Optional[datetime] = Query(None),
    end: Optional[datetime] = Query(None),
    hours: Optional[int] = Query(None, ge=1),
    limit: int = Query(500, ge=1, le=500),
    detail: OrderDetailEnum = Query(OrderDetailEnum.FULL),
    debug: bool = Query(False),
    feed: OrderFeedService = Depends(get_order_feed_service),
) -> dict[str, Any]:
    """
    Orders opened between ``start`` and ``end``, or in the last ``hours``
    (default 6). The range may not exceed the configured lookback ceiling.
    """
    if start is not None or end is not None:
        if start is None or end is None:
            raise HTTPException(status_code=400, detail="start and end must be provided together")
        window = (as_utc(start), as_utc(end))
    else:
        now = datetime.now(timezone.utc)
        window = (now - timedelta(hours=hours or DEFAULT_RANGE_HOURS), now)

    if window[1] <= window[0]:
        raise HTTPException(status_code=400, detail="end must be after start")
    if window[1] - window[0] > timedelta(minutes=settings.max_lookback_minutes):
        raise HTTPException(
            status_code=400,
            detail=f"Range may not exceed {settings.max_lookback_minutes} minutes",
        )

    return await feed.latest_orders(
        limit,
        detail=detail.value,
        window=window,
        debug=debug,
        route="/api/orders/by-range",
    )


@app.post(
    "/api/orders/sync",
    response_model=SyncResponse,
    tags=["Orders"],
    summary="Queue Incremental Sync",
)
async def queue_sync() -> SyncResponse:
    """Queue a cursor-anchored sync on the Celery worker."""
    task = sync_recent_orders.delay()
    logger.info(f"Queued order sync task {task.id}")
    return SyncResponse(queued=True, task_id=task.id)


@app.get(
    "/api/orders/{guid}",
    responses={404: {"model": ErrorResponse}, 502: {"model": UpstreamErrorResponse}},
    tags=["Orders"],
)
async def get_order(
    guid: str,
    feed: OrderFeedService = Depends(get_order_feed_service),
) -> dict[str, Any]:
    """Get a specific order by GUID."""
    order = await feed.get_order(guid)
    if order is None:
        raise HTTPException(status_code=404, detail=f"Order {guid} not found")
    return order


# =============================================================================
# MENU ENDPOINTS
# =============================================================================

@app.get(
    "/api/menus",
    response_model=MenuResponse,
    responses={502: {"model": UpstreamErrorResponse}},
    tags=["Menus"],
    summary="Published Menu",
)
async def get_menus(
    request: Request,
    refresh: bool = Query(False),
    menus: MenuRepository = Depends(get_menu_repository),
) -> Any:
    """Return the published menu, re-downloading only when metadata changed."""
    try:
        snapshot = await menus.get_menu(refresh=refresh)
    except UpstreamError as e:
        logger.error(f"Menu fetch failed: {e}")
        return upstream_error_response(e, request.url.path, code="MENU_FETCH_FAILED")
    return snapshot.to_dict()


# =============================================================================
# KITCHEN ENDPOINTS
# =============================================================================

@app.get(
    "/api/kitchen/prep-stations",
    response_model=PrepStationsResponse,
    responses={502: {"model": UpstreamErrorResponse}},
    tags=["Kitchen"],
    summary="Kitchen Prep Stations",
)
async def prep_stations(
    request: Request,
    page_token: Optional[str] = Query(None, alias="pageToken"),
    last_modified: Optional[str] = Query(None, alias="lastModified"),
    toast_api: BaseToastApi = Depends(get_toast_api),
) -> Any:
    """One page of prep stations from the Toast kitchen API."""
    params = PrepStationsRequest(page_token=blank_to_none(page_token), last_modified=blank_to_none(last_modified))
    try:
        page = await toast_api.get_prep_stations(params.page_token, params.last_modified)
    except UpstreamError as e:
        logger.error(f"Prep station fetch failed: {e}")
        return upstream_error_response(e, request.url.path, code="PREP_STATIONS_FETCH_FAILED")

    return PrepStationsResponse(
        count=len(page.prep_stations),
        prep_stations=page.prep_stations,
        next_page_token=page.next_page_token,
        request=params,
    )


# =============================================================================
# DEBUG ENDPOINTS
# =============================================================================

@app.get(
    "/api/debug/auth-stats",
    response_model=AuthStatsResponse,
    tags=["Debug"],
    summary="Token Refresh Stats",
)
async def auth_stats(kv_store: BaseKeyValueStore = Depends(get_kv_store)) -> dict[str, Any]:
    """Cached token expiry and refresh counters; only a token prefix is shown."""
    return {"ok": True, **await describe_token(kv_store)}


# =============================================================================
# ERROR HANDLERS
# =============================================================================

@app.exception_handler(UpstreamError)
async def upstream_exception_handler(request: Request, exc: UpstreamError) -> JSONResponse:
    """Upstream failures that no cache could cover."""
    logger.error(f"Upstream failure on {request.url.path}: {exc}")
    return upstream_error_response(exc, request.url.path)


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all exception handler."""
    logger.exception(f"Unhandled exception: {exc}")

    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "error": "Internal Server Error",
            "detail": str(exc) if settings.debug else "An unexpected error occurred",
        },
    )
