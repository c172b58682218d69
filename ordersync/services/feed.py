"""
Order Feed Service

Composes the collector, the menu repository and the expansion pipeline
into the two read models the order board uses:

    latest_orders    raw Toast orders (or just their ids), newest first
    expanded_orders  order-board entries with items, modifiers and totals

Orders, menu and dining options load concurrently. Failures degrade:
    - orders fail       -> serve matching cached orders (re-raise if none)
    - menu fails        -> stale cached menu, else no menu (names fall back)
    - dining opts fail  -> no order-type enrichment

Author: Your Name
Version: 2.0.0
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Optional

from ordersync.core.config import Settings, get_settings
from ordersync.services.expansion import build_expanded_orders, get_expanded_order_cache
from ordersync.services.menu import MenuRepository, MenuSnapshot, get_menu_repository
from ordersync.services.orders import CollectResult, IncrementalCollector, OrderCache, OrderFilter
from ordersync.services.orders.fields import resolve_order_opened_at
from ordersync.services.toast.errors import UpstreamError

logger = logging.getLogger(__name__)

UPSTREAM_LIMIT_FLOOR = 60
UPSTREAM_LIMIT_CEILING = 200


def upstream_limit_for(limit: int) -> int:
    """How many raw orders to collect to fill ``limit`` expanded entries."""
    return max(1, min(max(limit * 3, UPSTREAM_LIMIT_FLOOR), UPSTREAM_LIMIT_CEILING))


def requested_range(
    window: Optional[tuple[datetime, datetime]] = None,
    since: Optional[datetime] = None,
    minutes: Optional[int] = None,
    now: Optional[datetime] = None,
) -> Optional[tuple[int, int]]:
    """Opened-at bounds (epoch ms) a request asked for explicitly, if any."""
    now = now or datetime.now(timezone.utc)
    if window is not None:
        start, end = window
    elif since is not None:
        start, end = since, now
    elif minutes is not None and minutes > 0:
        start, end = now - timedelta(minutes=minutes), now
    else:
        return None
    return int(start.timestamp() * 1000), int(end.timestamp() * 1000)


class OrderFeedService:
    """
    Read models for the order board.

    Example:
        >>> feed = get_order_feed_service()
        >>> payload = await feed.expanded_orders(limit=20)
        >>> print(len(payload["orders"]), payload["cacheInfo"]["menu"])
    """

    def __init__(
        self,
        collector: IncrementalCollector,
        menus: MenuRepository,
        settings: Optional[Settings] = None,
    ):
        self.collector = collector
        self.menus = menus
        self.settings = settings or get_settings()

    @property
    def cache(self) -> OrderCache:
        return self.collector.cache

    async def _cached_fallback(
        self,
        limit: int,
        error: BaseException,
        *,
        order_filter: Optional[OrderFilter] = None,
        opened_range: Optional[tuple[int, int]] = None,
    ) -> list[dict[str, Any]]:
        """
        Cached recent orders matching the request, newest first.

        Raises:
            The original ``error`` when nothing cached matches
        """
        order_filter = order_filter or OrderFilter()
        orders = []
        for order in await self.cache.recent_orders():
            if len(orders) >= limit:
                break
            if not order_filter.matches(order):
                continue
            if opened_range is not None:
                opened = resolve_order_opened_at(order)
                if opened is None or not opened_range[0] <= opened <= opened_range[1]:
                    continue
            orders.append(order)
        if not orders:
            raise error
        logger.warning(f"⚠️ Order collection failed, serving {len(orders)} cached orders: {error}")
        return orders

    # ==========================================================================
    # LATEST ORDERS
    # ==========================================================================

    async def latest_orders(
        self,
        limit: Optional[int] = None,
        *,
        detail: str = "full",
        page_size: Optional[int] = None,
        minutes: Optional[int] = None,
        since: Optional[datetime] = None,
        window: Optional[tuple[datetime, datetime]] = None,
        location_id: Optional[str] = None,
        status: Optional[str] = None,
        incremental: bool = False,
        debug: bool = False,
        route: str = "/api/orders/latest",
    ) -> dict[str, Any]:
        """
        Latest raw orders, newest first.

        Raises:
            UpstreamError: When upstream fails and the cache is empty
        """
        limit = limit or self.settings.default_orders_limit
        page_size = page_size or self.settings.orders_page_size
        source = "network"
        result: Optional[CollectResult] = None
        try:
            result = await self.collector.collect(
                limit,
                location_id=location_id,
                status=status,
                page_size=page_size,
                since=since,
                window=window,
                minutes=minutes,
                use_cursor=incremental,
                debug=debug,
            )
            orders = result.orders
        except UpstreamError as e:
            orders = await self._cached_fallback(
                limit,
                e,
                order_filter=OrderFilter(location_id, status),
                opened_range=requested_range(window, since, minutes),
            )
            source = "cache"

        payload: dict[str, Any] = {
            "ok": True,
            "route": route,
            "limit": limit,
            "detail": detail,
            "pageSize": page_size,
            "minutes": result.minutes if result else minutes,
            "window": result.window if result else None,
            "count": len(orders),
            "ids": [o["guid"] for o in orders],
            "source": source,
        }
        if detail == "full":
            payload["data"] = orders
        if debug and result is not None:
            payload["debug"] = result.debug
        return payload

    # ==========================================================================
    # EXPANDED ORDERS
    # ==========================================================================

    async def expanded_orders(
        self,
        limit: Optional[int] = None,
        *,
        minutes: Optional[int] = None,
        location_id: Optional[str] = None,
        status: Optional[str] = None,
        fulfillment_status: Any = None,
        refresh_menu: bool = False,
        debug: bool = False,
    ) -> dict[str, Any]:
        """
        Order-board entries with the menu applied.

        Raises:
            UpstreamError: When order collection fails and the cache is empty
        """
        started = time.monotonic()
        limit = max(1, min(limit or self.settings.expanded_default_limit, self.settings.expanded_max_limit))
        fetch_limit = upstream_limit_for(limit)

        orders_result, menu_result, dining_result = await asyncio.gather(
            self.collector.collect(
                fetch_limit,
                location_id=location_id,
                status=status,
                minutes=minutes,
                debug=debug,
            ),
            self.menus.get_menu(refresh=refresh_menu),
            self.menus.get_dining_options(),
            return_exceptions=True,
        )

        collect: Optional[CollectResult] = None
        source = "network"
        if isinstance(orders_result, UpstreamError):
            orders = await self._cached_fallback(
                fetch_limit,
                orders_result,
                order_filter=OrderFilter(location_id, status),
                opened_range=requested_range(minutes=minutes),
            )
            source = "cache"
        elif isinstance(orders_result, BaseException):
            raise orders_result
        else:
            collect = orders_result
            orders = collect.orders

        snapshot: Optional[MenuSnapshot] = None
        if isinstance(menu_result, UpstreamError):
            logger.warning(f"⚠️ Menu unavailable, expanding without it: {menu_result}")
        elif isinstance(menu_result, BaseException):
            raise menu_result
        else:
            snapshot = menu_result

        dining_options: list[dict[str, Any]] = []
        if isinstance(dining_result, UpstreamError):
            logger.warning(f"⚠️ Dining options unavailable: {dining_result}")
        elif isinstance(dining_result, BaseException):
            raise dining_result
        else:
            dining_options = dining_result

        expansion = build_expanded_orders(
            orders,
            snapshot.index if snapshot else None,
            limit=limit,
            time_budget_ms=self.settings.pipeline_time_budget_ms,
            started_at=started,
            fulfillment_status=fulfillment_status,
            dining_options=dining_options,
            menu_version=snapshot.revision if snapshot else None,
        )

        payload: dict[str, Any] = {
            "orders": [order.to_dict() for order in expansion.orders],
            "cacheInfo": {
                "menu": snapshot.cache_status if snapshot else "unavailable",
                "menuUpdatedAt": snapshot.updated_at if snapshot else None,
                "expandedOrders": get_expanded_order_cache().stats,
            },
        }
        if debug:
            payload["debug"] = {
                "requestId": uuid.uuid4().hex,
                "timingMs": round((time.monotonic() - started) * 1000, 1),
                "window": collect.window if collect else None,
                "limit": limit,
                "timedOut": expansion.timed_out,
                "lookbackWindowsTried": collect.lookback_minutes_tried if collect else [],
                "ordersFetched": len(orders),
                "ordersSource": source,
                "diagnostics": expansion.diagnostics.to_dict(),
                "collector": collect.debug if collect else None,
            }
        return payload

    # ==========================================================================
    # ORDERS BY BUSINESS DATE
    # ==========================================================================

    async def orders_by_date(self, business_date: int, detail: str = "ids") -> dict[str, Any]:
        """
        Orders cached for one business date (``yyyyMMdd``), newest first.

        Served from the date index only; GUIDs whose documents have expired
        are dropped from ``data`` but kept in ``ids``.
        """
        ids = await self.cache.get_index_for_date(business_date)
        payload: dict[str, Any] = {
            "ok": True,
            "route": "/api/orders/by-date",
            "businessDate": business_date,
            "detail": detail,
            "count": len(ids),
            "ids": ids,
            "source": "cache",
        }
        if detail == "full":
            orders = []
            for guid in ids:
                order = await self.cache.get_order(guid)
                if order is not None:
                    orders.append(order)
            payload["data"] = orders
        return payload

    # ==========================================================================
    # SINGLE ORDER
    # ==========================================================================

    async def get_order(self, guid: str) -> Optional[dict[str, Any]]:
        """Cached order document, else fetched upstream and cached."""
        order = await self.cache.get_order(guid)
        if order is not None:
            return order
        order = await self.collector.api.get_order_by_id(guid)
        if order is None:
            return None
        if isinstance(order.get("guid"), str):
            await self.cache.put_order(order)
        return order


@lru_cache()
def get_order_feed_service() -> OrderFeedService:
    """Get the shared feed service."""
    from ordersync.services.orders import get_collector

    return OrderFeedService(get_collector(), get_menu_repository(), get_settings())


def reset_order_feed_service() -> None:
    get_order_feed_service.cache_clear()
