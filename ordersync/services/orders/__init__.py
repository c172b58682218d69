"""
Order Services

Usage:
    from ordersync.services.orders import get_collector

    result = await get_collector().collect(limit=50, use_cursor=True)

Author: Your Name
Version: 2.0.0
"""

import logging
from functools import lru_cache

from ordersync.core.config import get_settings
from ordersync.services.kv import get_kv_store
from ordersync.services.orders.cache import CachedOrderRecord, OrderCache, OrderCursor
from ordersync.services.orders.collector import (
    CollectResult,
    FetchWindow,
    IncrementalCollector,
    LookbackLadder,
    OrderFilter,
    resolve_fetch_window,
)

logger = logging.getLogger(__name__)


@lru_cache()
def get_order_cache() -> OrderCache:
    settings = get_settings()
    return OrderCache(
        get_kv_store(),
        recent_limit=settings.recent_index_limit,
        ttl_seconds=settings.order_cache_ttl_seconds,
    )


@lru_cache()
def get_collector() -> IncrementalCollector:
    """
    Get the shared collector bound to the configured API and cache.

    Returns:
        IncrementalCollector: Collector for the API process
    """
    from ordersync.services.toast import get_toast_api

    return IncrementalCollector(get_toast_api(), get_order_cache(), get_settings())


def reset_order_services() -> None:
    """Clear the cached cache/collector instances."""
    get_order_cache.cache_clear()
    get_collector.cache_clear()
    logger.debug("Order services cache cleared")


__all__ = [
    "get_order_cache",
    "get_collector",
    "reset_order_services",
    "OrderCache",
    "OrderCursor",
    "CachedOrderRecord",
    "IncrementalCollector",
    "CollectResult",
    "FetchWindow",
    "LookbackLadder",
    "OrderFilter",
    "resolve_fetch_window",
]
