"""
Toast API Factory

Provides a single entry point for obtaining upstream POS access.
Automatically selects the simulated API or the real Toast API based on
ENV_MODE configuration.

Usage:
    from ordersync.services.toast import get_toast_api

    api = get_toast_api()
    page = await api.get_orders_bulk(start_iso, end_iso, page=1)

Author: Your Name
Version: 2.0.0
"""

import logging
from functools import lru_cache
from typing import Optional

from ordersync.core.config import Settings, get_settings
from ordersync.services.kv import get_kv_store
from ordersync.services.kv.base import BaseKeyValueStore
from ordersync.services.toast.auth import describe_token
from ordersync.services.toast.base import BaseToastApi, OrdersPage, PrepStationsPage
from ordersync.services.toast.errors import AuthError, UpstreamError
from ordersync.services.toast.mock import MockToastApi
from ordersync.services.toast.real import ToastApi

logger = logging.getLogger(__name__)


def create_toast_api(
    kv: BaseKeyValueStore,
    settings: Optional[Settings] = None,
) -> BaseToastApi:
    """
    Build a new (uncached) upstream client for the configured environment.

    Raises:
        ValueError: If real services are requested without Toast credentials
    """
    settings = settings or get_settings()

    if settings.is_development:
        logger.info("Toast API: Using MockToastApi (development mode)")
        return MockToastApi()

    missing = settings.validate_production_config()
    if missing:
        raise ValueError(f"Toast credentials not configured: {missing}")

    logger.info(
        f"Toast API: Using ToastApi "
        f"({settings.env_mode.value} mode)"
    )
    return ToastApi(kv=kv, settings=settings)


@lru_cache()
def get_toast_api() -> BaseToastApi:
    """
    Get the configured upstream API instance.

    Returns:
        BaseToastApi: Configured upstream client
    """
    return create_toast_api(get_kv_store())


def reset_toast_api() -> None:
    """
    Clear the cached upstream client instance.

    Useful for testing or when configuration changes at runtime.
    """
    get_toast_api.cache_clear()
    logger.debug("Toast API cache cleared")


__all__ = [
    "get_toast_api",
    "create_toast_api",
    "reset_toast_api",
    "BaseToastApi",
    "OrdersPage",
    "PrepStationsPage",
    "describe_token",
    "MockToastApi",
    "ToastApi",
    "UpstreamError",
    "AuthError",
]
