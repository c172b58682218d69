import copy
from typing import Any, Optional

import pytest

from ordersync.core.config import Settings
from ordersync.services.expansion import get_expanded_order_cache
from ordersync.services.kv import InMemoryKeyValueStore
from ordersync.services.menu import MenuRepository, get_menu_index_cache
from ordersync.services.orders import IncrementalCollector, OrderCache
from ordersync.services.orders.timestamps import parse_toast_timestamp
from ordersync.services.toast.base import BaseToastApi, OrdersPage, PrepStationsPage


class FakeToastApi(BaseToastApi):
    """Scripted upstream: serves a fixed order list and menu, records calls."""

    def __init__(
        self,
        orders: Optional[list[dict[str, Any]]] = None,
        menu: Optional[dict[str, Any]] = None,
        metadata: Optional[dict[str, Any]] = None,
        dining_options: Optional[list[dict[str, Any]]] = None,
    ):
        self.orders = list(orders or [])
        self.menu = menu
        self.metadata = metadata or {"lastUpdated": "2024-05-01T00:00:00.000+0000"}
        self.dining_options = list(dining_options or [])
        self.orders_error: Optional[Exception] = None
        self.menu_error: Optional[Exception] = None
        self.dining_error: Optional[Exception] = None
        self.bulk_calls: list[tuple[str, str, int, int]] = []
        self.metadata_calls = 0
        self.menu_calls = 0
        self.dining_calls = 0
        self.prep_stations: list[dict[str, Any]] = []
        self.prep_stations_next_token: Optional[str] = None
        self.prep_stations_error: Optional[Exception] = None
        self.prep_station_calls: list[tuple[Optional[str], Optional[str]]] = []

    @property
    def provider_name(self) -> str:
        return "fake"

    def _in_window(self, order: dict[str, Any], start_ms: int, end_ms: int) -> bool:
        opened = parse_toast_timestamp(order.get("openedDate"))
        return opened is None or start_ms <= opened <= end_ms

    async def get_orders_bulk(self, start_iso, end_iso, page=1, page_size=100) -> OrdersPage:
        self.bulk_calls.append((start_iso, end_iso, page, page_size))
        if self.orders_error is not None:
            raise self.orders_error
        start_ms = parse_toast_timestamp(start_iso)
        end_ms = parse_toast_timestamp(end_iso)
        matching = [o for o in self.orders if self._in_window(o, start_ms, end_ms)]
        offset = (page - 1) * page_size
        chunk = matching[offset:offset + page_size]
        next_page = page + 1 if offset + page_size < len(matching) else None
        return OrdersPage(orders=copy.deepcopy(chunk), page=page, page_size=page_size, next_page=next_page)

    async def get_order_by_id(self, guid):
        for order in self.orders:
            if order.get("guid") == guid:
                return copy.deepcopy(order)
        return None

    async def get_menu_metadata(self):
        self.metadata_calls += 1
        if self.menu_error is not None:
            raise self.menu_error
        return self.metadata

    async def get_published_menu(self):
        self.menu_calls += 1
        if self.menu_error is not None:
            raise self.menu_error
        return copy.deepcopy(self.menu)

    async def get_dining_options(self):
        self.dining_calls += 1
        if self.dining_error is not None:
            raise self.dining_error
        return list(self.dining_options)

    async def get_prep_stations(self, page_token=None, last_modified=None) -> PrepStationsPage:
        self.prep_station_calls.append((page_token, last_modified))
        if self.prep_stations_error is not None:
            raise self.prep_stations_error
        return PrepStationsPage(
            prep_stations=copy.deepcopy(self.prep_stations),
            next_page_token=self.prep_stations_next_token,
        )

    async def health_check(self) -> bool:
        return True


def build_order(
    guid: str,
    opened: Optional[str] = "2024-05-01T10:00:00.000+0000",
    selections: Optional[list[dict[str, Any]]] = None,
    **overrides: Any,
) -> dict[str, Any]:
    """A minimal Toast order with one check."""
    order: dict[str, Any] = {
        "guid": guid,
        "businessDate": 20240501,
        "voided": False,
        "deleted": False,
        "status": "OPEN",
        "checks": [
            {
                "guid": f"{guid}-check",
                "selections": selections if selections is not None else [
                    {
                        "guid": f"{guid}-sel-1",
                        "selectionType": "MENU_ITEM",
                        "item": {"guid": "item-latte"},
                        "displayName": "Latte",
                        "quantity": 1,
                        "receiptLinePrice": 4.5,
                        "fulfillmentStatus": "SENT",
                        "modifiers": [],
                    }
                ],
                "payments": [],
            }
        ],
    }
    if opened is not None:
        order["openedDate"] = opened
    order.update(overrides)
    return order


MENU_DOCUMENT = {
    "restaurantGuid": "rest-1",
    "lastUpdated": "2024-05-01T00:00:00.000+0000",
    "menus": [
        {
            "guid": "menu-1",
            "name": "All Day",
            "menuGroups": [
                {
                    "guid": "group-drinks",
                    "name": "Drinks",
                    "items": [
                        {"guid": "item-latte", "name": "Latte", "kitchenName": "LATTE", "multiLocationId": "ml-latte"},
                    ],
                    "menuGroups": [
                        {
                            "guid": "group-food",
                            "name": "Food",
                            "items": [{"guid": "item-bagel", "name": "Everything Bagel"}],
                        }
                    ],
                }
            ],
        }
    ],
    "modifierGroupReferences": {
        "1": {"guid": "mg-milk", "name": "Milk", "modifierOptionReferences": [10]},
        "2": {"guid": "mg-shots", "name": "Espresso", "options": [
            {"guid": "mod-shot", "name": "Extra Shot", "price": 1.0},
        ]},
    },
    "modifierOptionReferences": {
        "10": {"guid": "mod-oat", "name": "Oat Milk", "kitchenName": "OAT", "price": 0.75},
    },
    "preModifierGroupReferences": {
        "1": {"guid": "pre-1", "preModifiers": [{"guid": "pre-light", "name": "Light"}]},
    },
}


@pytest.fixture(autouse=True)
def reset_process_caches():
    get_expanded_order_cache().clear()
    get_menu_index_cache().clear()
    yield
    get_expanded_order_cache().clear()
    get_menu_index_cache().clear()


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        env_mode="development",
        toast_api_base="https://toast.test",
        toast_auth_url="https://toast.test/authentication/v1/authentication/login",
        toast_client_id="client-id",
        toast_client_secret="client-secret",
        toast_restaurant_guid="rest-1",
        global_min_gap_ms=0,
        orders_min_gap_ms=0,
        menu_min_gap_ms=0,
        upstream_retries=2,
        backoff_base_ms=100,
        max_backoff_ms=1000,
        token_lock_backoff_ms=10,
        lookback_ladder_minutes="60,240,1440",
        max_lookback_minutes=1440,
        restaurant_timezone="UTC",
    )


@pytest.fixture
def kv():
    return InMemoryKeyValueStore()


@pytest.fixture
def make_order():
    return build_order


@pytest.fixture
def menu_document():
    return copy.deepcopy(MENU_DOCUMENT)


@pytest.fixture
def fake_api(menu_document):
    return FakeToastApi(menu=menu_document)


@pytest.fixture
def order_cache(kv):
    return OrderCache(kv, recent_limit=300)


@pytest.fixture
def collector(fake_api, order_cache, settings):
    return IncrementalCollector(fake_api, order_cache, settings)


@pytest.fixture
def menu_repository(fake_api, kv, settings):
    return MenuRepository(fake_api, kv, settings)


@pytest.fixture
def noop_sleep():
    async def sleep(seconds: float) -> None:
        return None
    return sleep
