"""
Menu Services

Usage:
    from ordersync.services.menu import get_menu_repository

    snapshot = await get_menu_repository().get_menu()
    item = snapshot.index.find_item(selection["item"])

Author: Your Name
Version: 2.0.0
"""

from functools import lru_cache

from ordersync.core.config import get_settings
from ordersync.services.kv import get_kv_store
from ordersync.services.menu.index import (
    MenuIndex,
    MenuIndexCache,
    MenuItemEntry,
    build_menu_index,
    get_menu_index_cache,
    get_or_build_index,
)
from ordersync.services.menu.repository import MenuRepository, MenuSnapshot, menu_revision


@lru_cache()
def get_menu_repository() -> MenuRepository:
    """Get the shared menu repository."""
    from ordersync.services.toast import get_toast_api

    return MenuRepository(get_toast_api(), get_kv_store(), get_settings())


def reset_menu_repository() -> None:
    get_menu_repository.cache_clear()
    get_menu_index_cache().clear()


__all__ = [
    "get_menu_repository",
    "reset_menu_repository",
    "MenuRepository",
    "MenuSnapshot",
    "MenuIndex",
    "MenuIndexCache",
    "MenuItemEntry",
    "build_menu_index",
    "get_or_build_index",
    "get_menu_index_cache",
    "menu_revision",
]
