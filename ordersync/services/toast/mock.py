"""
Mock Toast API Implementation

Simulates the Toast POS API without making real calls.
Used in development mode (ENV_MODE=development) for local testing.

Behavior:
    - Generates a deterministic day of orders (one every few minutes)
    - Orders carry checks, selections, nested modifiers, discounts and tips
    - Serves a matching published menu, dining options and prep stations
    - Simulates network latency (50-200ms)
    - Optional random failure rate for testing error handling

Author: Your Name
Version: 2.0.0
"""

import asyncio
import hashlib
import logging
import random
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

from ordersync.services.orders.timestamps import (
    format_business_date,
    parse_toast_timestamp,
    to_toast_iso,
)
from ordersync.services.toast.base import BaseToastApi, OrdersPage, PrepStationsPage
from ordersync.services.toast.errors import UpstreamError

logger = logging.getLogger(__name__)


MOCK_MENU_ITEMS = [
    {"guid": "item-glazed", "name": "Glazed Donut", "kitchenName": "GLAZED", "price": 2.5},
    {"guid": "item-boston", "name": "Boston Cream", "kitchenName": "BOSTON", "price": 3.25},
    {"guid": "item-latte", "name": "Latte", "kitchenName": "LATTE", "price": 4.75},
    {"guid": "item-coldbrew", "name": "Cold Brew", "kitchenName": "COLD BREW", "price": 4.25},
    {"guid": "item-sandwich", "name": "Egg Sandwich", "kitchenName": "EGG SAND", "price": 6.5},
]

MOCK_MODIFIERS = [
    {"guid": "mod-oat", "name": "Oat Milk", "group": "Milk", "price": 0.75},
    {"guid": "mod-extra-shot", "name": "Extra Shot", "group": "Espresso", "price": 1.0},
    {"guid": "mod-sprinkles", "name": "Sprinkles", "group": "Toppings", "price": 0.5},
    {"guid": "mod-cheese", "name": "Cheddar", "group": "Add-ons", "price": 0.75},
]

MOCK_DINING_OPTIONS = [
    {"guid": "dining-takeout", "name": "Take Out", "behavior": "TAKE_OUT"},
    {"guid": "dining-dinein", "name": "Dine In", "behavior": "DINE_IN"},
    {"guid": "dining-delivery", "name": "Delivery", "behavior": "DELIVERY"},
    {"guid": "dining-curbside", "name": "Curbside", "behavior": "CURBSIDE"},
]

MOCK_PREP_STATIONS = [
    {"guid": "station-bakery", "entityType": "PrepStation", "name": "Bakery", "expoRouting": "SEND_TO_EXPO"},
    {"guid": "station-bar", "entityType": "PrepStation", "name": "Coffee Bar", "expoRouting": "SEND_TO_EXPO"},
    {"guid": "station-grill", "entityType": "PrepStation", "name": "Grill", "printingMode": "ON"},
]

CUSTOMER_NAMES = ["Ada", "Grace", "Linus", "Margaret", "Ken", "Barbara", "Dennis", "Frances"]
ITEM_STATUSES = ["NEW", "SENT", "READY", "READY"]


class MockToastApi(BaseToastApi):
    """
    Mock implementation of the Toast API.

    Attributes:
        failure_rate: Probability of a simulated 503 (0.0-1.0)
        min_latency: Minimum response time in seconds
        max_latency: Maximum response time in seconds
        order_interval_minutes: Spacing between generated orders

    Example:
        >>> api = MockToastApi()
        >>> page = await api.get_orders_bulk(start, end, page=1)
        >>> print(len(page.orders))
    """

    def __init__(
        self,
        failure_rate: float = 0.0,
        min_latency: float = 0.05,
        max_latency: float = 0.2,
        order_interval_minutes: int = 7,
        seed: int = 42,
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.order_interval_minutes = order_interval_minutes
        self.seed = seed
        self._orders: dict[str, dict[str, Any]] = {}

        logger.info(
            f"MockToastApi initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"interval={order_interval_minutes}min)"
        )

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "mock"

    async def _simulate_latency(self) -> float:
        latency = random.uniform(self.min_latency, self.max_latency)
        await asyncio.sleep(latency)
        return latency * 1000

    def _maybe_fail(self, route: str) -> None:
        if random.random() < self.failure_rate:
            logger.debug(f"Mock: Simulated upstream failure on {route}")
            raise UpstreamError(
                f"Upstream GET {route} failed: 503",
                status=503,
                body_snippet="Service temporarily unavailable",
                route=route,
            )

    # ==========================================================================
    # ORDER GENERATION
    # ==========================================================================

    def _rng_for(self, slot: int) -> random.Random:
        digest = hashlib.sha256(f"{self.seed}:{slot}".encode()).hexdigest()
        return random.Random(int(digest[:12], 16))

    def _build_order(self, slot: int, opened: datetime) -> dict[str, Any]:
        rng = self._rng_for(slot)
        guid = f"mock-order-{slot}"
        dining = rng.choice(MOCK_DINING_OPTIONS)
        selections = []
        for index in range(rng.randint(1, 4)):
            item = rng.choice(MOCK_MENU_ITEMS)
            quantity = rng.randint(1, 3)
            modifiers = []
            if rng.random() < 0.6:
                mod = rng.choice(MOCK_MODIFIERS)
                modifiers.append({
                    "guid": f"{guid}-sel-{index}-mod",
                    "item": {"guid": mod["guid"]},
                    "displayName": mod["name"],
                    "optionGroup": {"name": mod["group"]},
                    "quantity": 1,
                    "price": mod["price"],
                })
            selections.append({
                "guid": f"{guid}-sel-{index}",
                "selectionType": "MENU_ITEM",
                "item": {"guid": item["guid"]},
                "displayName": item["name"],
                "quantity": quantity,
                "receiptLinePrice": item["price"],
                "price": round(item["price"] * quantity, 2),
                "fulfillmentStatus": rng.choice(ITEM_STATUSES),
                "modifiers": modifiers,
            })
        if rng.random() < 0.2:
            selections.append({
                "guid": f"{guid}-note",
                "selectionType": "SPECIAL_REQUEST",
                "displayName": "No napkins",
            })

        payments = [{"tipAmount": round(rng.choice([0, 0.5, 1.0, 2.0]), 2)}]
        discounts = [{"discountAmount": 1.0}] if rng.random() < 0.15 else []
        return {
            "guid": guid,
            "displayNumber": str(100 + slot % 900),
            "openedDate": to_toast_iso(opened),
            "createdDate": to_toast_iso(opened),
            "modifiedDate": to_toast_iso(opened + timedelta(minutes=2)),
            "businessDate": int(format_business_date(opened)),
            "voided": rng.random() < 0.03,
            "deleted": False,
            "status": "OPEN",
            "diningOption": {"guid": dining["guid"]},
            "checks": [
                {
                    "guid": f"{guid}-check",
                    "customer": {"firstName": rng.choice(CUSTOMER_NAMES), "lastName": ""},
                    "selections": selections,
                    "appliedDiscounts": discounts,
                    "payments": payments,
                }
            ],
        }

    def _orders_between(self, start_ms: int, end_ms: int) -> list[dict[str, Any]]:
        step_ms = self.order_interval_minutes * 60_000
        first_slot = start_ms // step_ms + (1 if start_ms % step_ms else 0)
        last_slot = end_ms // step_ms
        orders = []
        for slot in range(first_slot, last_slot + 1):
            guid = f"mock-order-{slot}"
            if guid not in self._orders:
                opened = datetime.fromtimestamp(slot * step_ms / 1000, tz=timezone.utc)
                self._orders[guid] = self._build_order(slot, opened)
            orders.append(self._orders[guid])
        return orders

    # ==========================================================================
    # API SURFACE
    # ==========================================================================

    async def get_orders_bulk(
        self,
        start_iso: str,
        end_iso: str,
        page: int = 1,
        page_size: int = 100,
    ) -> OrdersPage:
        await self._simulate_latency()
        self._maybe_fail("/orders/v2/ordersBulk")

        start_ms = parse_toast_timestamp(start_iso)
        end_ms = parse_toast_timestamp(end_iso)
        if start_ms is None or end_ms is None or end_ms <= start_ms:
            return OrdersPage(orders=[], page=page, page_size=page_size)

        orders = self._orders_between(start_ms, end_ms)
        offset = (page - 1) * page_size
        chunk = orders[offset:offset + page_size]
        next_page = page + 1 if offset + page_size < len(orders) else None

        logger.debug(f"Mock: ordersBulk page={page} -> {len(chunk)} orders")
        return OrdersPage(
            orders=chunk,
            page=page,
            page_size=page_size,
            next_page=next_page,
            total_count=len(orders),
        )

    async def get_order_by_id(self, guid: str) -> Optional[dict[str, Any]]:
        await self._simulate_latency()
        return self._orders.get(guid)

    async def get_menu_metadata(self) -> Optional[dict[str, Any]]:
        await self._simulate_latency()
        self._maybe_fail("/menus/v2/metadata")
        return {"restaurantGuid": "mock-restaurant", "lastUpdated": "2024-01-01T00:00:00.000+0000"}

    async def get_published_menu(self) -> Optional[dict[str, Any]]:
        await self._simulate_latency()
        self._maybe_fail("/menus/v2/menus")
        groups: dict[str, list[dict[str, Any]]] = {}
        for mod in MOCK_MODIFIERS:
            groups.setdefault(mod["group"], []).append(mod)

        return {
            "restaurantGuid": "mock-restaurant",
            "lastUpdated": "2024-01-01T00:00:00.000+0000",
            "menus": [
                {
                    "guid": "menu-all-day",
                    "name": "All Day",
                    "menuGroups": [
                        {
                            "guid": "group-donuts",
                            "name": "Donuts",
                            "items": [i for i in MOCK_MENU_ITEMS if i["guid"] in ("item-glazed", "item-boston")],
                            "menuGroups": [],
                        },
                        {
                            "guid": "group-drinks",
                            "name": "Drinks",
                            "items": [i for i in MOCK_MENU_ITEMS if i["guid"] in ("item-latte", "item-coldbrew")],
                            "menuGroups": [
                                {
                                    "guid": "group-food",
                                    "name": "Food",
                                    "items": [i for i in MOCK_MENU_ITEMS if i["guid"] == "item-sandwich"],
                                }
                            ],
                        },
                    ],
                }
            ],
            "modifierGroupReferences": {
                str(n): {
                    "guid": f"modgroup-{name.lower()}",
                    "name": name,
                    "options": [{"guid": m["guid"], "name": m["name"], "price": m["price"]} for m in mods],
                }
                for n, (name, mods) in enumerate(groups.items(), start=1)
            },
            "modifierOptionReferences": {},
            "preModifierGroupReferences": {},
        }

    async def get_dining_options(self) -> list[dict[str, Any]]:
        await self._simulate_latency()
        return [dict(option) for option in MOCK_DINING_OPTIONS]

    async def get_prep_stations(
        self,
        page_token: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> PrepStationsPage:
        await self._simulate_latency()
        self._maybe_fail("/kitchen/v1/published/prepStations")
        stations = [dict(station) for station in MOCK_PREP_STATIONS]
        return PrepStationsPage(prep_stations=stations, raw=stations)

    async def health_check(self) -> bool:
        """Mock health check always returns True."""
        logger.debug("Mock: Toast health check passed")
        return True
