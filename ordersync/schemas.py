"""
Pydantic Schemas for API Responses

Order and menu payloads are passed through as-is (they mirror Toast's
documents); these models cover the envelopes the API itself owns.

Author: Your Name
Version: 2.0.0
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


# =============================================================================
# ENUMS
# =============================================================================

class OrderDetailEnum(str, Enum):
    IDS = "ids"
    FULL = "full"


class MenuCacheStatusEnum(str, Enum):
    HIT_FRESH = "hit-fresh"
    HIT_STALE = "hit-stale"
    MISS_NETWORK = "miss-network"
    UNAVAILABLE = "unavailable"


# =============================================================================
# ORDER SCHEMAS
# =============================================================================

class TimeWindow(BaseModel):
    start: str
    end: str


class LatestOrdersResponse(BaseModel):
    """Response for the latest raw orders."""
    ok: bool = True
    route: str
    limit: int
    detail: OrderDetailEnum
    page_size: int = Field(..., alias="pageSize")
    minutes: Optional[float] = None
    window: Optional[TimeWindow] = None
    count: int
    ids: list[str]
    source: str = "network"
    data: Optional[list[dict[str, Any]]] = None
    debug: Optional[dict[str, Any]] = None

    model_config = {"populate_by_name": True}


class ExpandedCacheInfo(BaseModel):
    menu: MenuCacheStatusEnum
    menu_updated_at: Optional[str] = Field(None, alias="menuUpdatedAt")
    expanded_orders: dict[str, int] = Field(default_factory=dict, alias="expandedOrders")

    model_config = {"populate_by_name": True}


class ExpandedOrdersResponse(BaseModel):
    """Response for order-board entries."""
    orders: list[dict[str, Any]]
    cache_info: ExpandedCacheInfo = Field(..., alias="cacheInfo")
    debug: Optional[dict[str, Any]] = None

    model_config = {"populate_by_name": True}


class OrdersByDateResponse(BaseModel):
    """Response for cached orders on one business date."""
    ok: bool = True
    route: str
    business_date: int = Field(..., alias="businessDate")
    detail: OrderDetailEnum
    count: int
    ids: list[str]
    source: str = "cache"
    data: Optional[list[dict[str, Any]]] = None

    model_config = {"populate_by_name": True}


class SyncResponse(BaseModel):
    """Response after queueing a background sync."""
    queued: bool
    task_id: Optional[str] = None


# =============================================================================
# MENU SCHEMAS
# =============================================================================

class MenuMetadata(BaseModel):
    last_updated: Optional[str] = Field(None, alias="lastUpdated")
    revision: Optional[str] = None

    model_config = {"populate_by_name": True}


class MenuResponse(BaseModel):
    """Response for the published menu."""
    ok: bool = True
    menu: dict[str, Any]
    metadata: MenuMetadata
    cache_hit: bool = Field(..., alias="cacheHit")
    cache_status: MenuCacheStatusEnum = Field(..., alias="cacheStatus")

    model_config = {"populate_by_name": True}


# =============================================================================
# KITCHEN SCHEMAS
# =============================================================================

class PrepStationsRequest(BaseModel):
    page_token: Optional[str] = Field(None, alias="pageToken")
    last_modified: Optional[str] = Field(None, alias="lastModified")

    model_config = {"populate_by_name": True}


class PrepStationsResponse(BaseModel):
    """Response for kitchen prep stations."""
    ok: bool = True
    route: str = "/api/kitchen/prep-stations"
    count: int
    prep_stations: list[dict[str, Any]] = Field(..., alias="prepStations")
    next_page_token: Optional[str] = Field(None, alias="nextPageToken")
    request: PrepStationsRequest

    model_config = {"populate_by_name": True}


# =============================================================================
# SYSTEM SCHEMAS
# =============================================================================

class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None


class UpstreamErrorBody(BaseModel):
    message: str
    code: str


class UpstreamErrorDebug(BaseModel):
    status: Optional[int] = None
    request_id: Optional[str] = Field(None, alias="requestId")
    route: Optional[str] = None

    model_config = {"populate_by_name": True}


class UpstreamErrorResponse(BaseModel):
    """502 payload when the POS API fails and nothing is cached."""
    error: UpstreamErrorBody
    debug: UpstreamErrorDebug


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    environment: str
    kv_store: str
    toast_api: str
    timestamp: datetime


class TokenStats(BaseModel):
    refresh_attempts: int = Field(0, alias="refreshAttempts")
    refresh_success: int = Field(0, alias="refreshSuccess")
    refresh_fail: int = Field(0, alias="refreshFail")
    last_refresh_at: Optional[int] = Field(None, alias="lastRefreshAt")
    last_error: Optional[str] = Field(None, alias="lastError")

    model_config = {"populate_by_name": True}


class AuthStatsResponse(BaseModel):
    """Cached token state and refresh counters (token itself never exposed)."""
    ok: bool = True
    token_preview: Optional[str] = Field(None, alias="tokenPreview")
    token_expires_at: Optional[int] = Field(None, alias="tokenExpiresAt")
    token_seconds_left: Optional[int] = Field(None, alias="tokenSecondsLeft")
    stats: TokenStats

    model_config = {"populate_by_name": True}
