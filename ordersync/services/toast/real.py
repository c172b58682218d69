"""
Toast API Implementation

Production upstream access. Every call goes through the resilient client
(pacing, auth, retries). Orders are paced on the "orders" scope, menus on
the "menu" scope (1 rps), configuration on "global".

Author: Your Name
Version: 2.0.0
"""

import logging
from typing import Any, Optional
from urllib.parse import quote

import httpx

from ordersync.core.config import Settings, get_settings
from ordersync.services.kv.base import BaseKeyValueStore
from ordersync.services.toast.auth import TokenManager
from ordersync.services.toast.base import BaseToastApi, OrdersPage, PrepStationsPage, orders_page_from_body
from ordersync.services.toast.client import ResilientHttpClient
from ordersync.services.toast.errors import UpstreamError
from ordersync.services.toast.pacer import Pacer

logger = logging.getLogger(__name__)

ORDERS_BULK_ROUTE = "/orders/v2/ordersBulk"
ORDER_BY_ID_ROUTE = "/orders/v2/orders/{guid}"
MENU_METADATA_ROUTE = "/menus/v2/metadata"
MENUS_ROUTE = "/menus/v2/menus"
DINING_OPTIONS_ROUTE = "/config/v2/diningOptions"
PREP_STATIONS_ROUTE = "/kitchen/v1/published/prepStations"
NEXT_PAGE_TOKEN_HEADER = "toast-next-page-token"


class ToastApi(BaseToastApi):
    """
    Real Toast API client.

    Attributes:
        client: Resilient HTTP client used for all GETs
        token_manager: Shared bearer token cache
    """

    def __init__(
        self,
        kv: BaseKeyValueStore,
        settings: Optional[Settings] = None,
        http: Optional[httpx.AsyncClient] = None,
        pacer: Optional[Pacer] = None,
    ):
        self.settings = settings or get_settings()
        self.http = http or httpx.AsyncClient(timeout=self.settings.http_timeout_seconds)
        self.pacer = pacer or Pacer()
        self.token_manager = TokenManager(kv=kv, http=self.http, pacer=self.pacer, settings=self.settings)
        self.client = ResilientHttpClient(
            http=self.http,
            pacer=self.pacer,
            token_manager=self.token_manager,
            settings=self.settings,
        )
        logger.info(f"ToastApi initialized (base={self.settings.toast_api_base})")

    @property
    def provider_name(self) -> str:
        """Return the provider name."""
        return "toast"

    async def get_orders_bulk(
        self,
        start_iso: str,
        end_iso: str,
        page: int = 1,
        page_size: int = 100,
    ) -> OrdersPage:
        response = await self.client.request_upstream(
            ORDERS_BULK_ROUTE,
            {"startDate": start_iso, "endDate": end_iso, "page": page, "pageSize": page_size},
            scope="orders",
        )
        result = orders_page_from_body(response.data, page, page_size)
        result.response_headers = response.headers
        logger.debug(
            f"ordersBulk page={page} size={page_size} -> {len(result.orders)} orders "
            f"(next={result.next_page})"
        )
        return result

    async def get_order_by_id(self, guid: str) -> Optional[dict[str, Any]]:
        try:
            response = await self.client.request_upstream(
                ORDER_BY_ID_ROUTE.format(guid=quote(guid, safe="")),
                scope="orders",
            )
        except UpstreamError as e:
            if e.status == 404:
                return None
            raise
        return response.data if isinstance(response.data, dict) else None

    async def get_menu_metadata(self) -> Optional[dict[str, Any]]:
        response = await self.client.request_upstream(MENU_METADATA_ROUTE, scope="menu")
        return response.data if isinstance(response.data, dict) else None

    async def get_published_menu(self) -> Optional[dict[str, Any]]:
        response = await self.client.request_upstream(MENUS_ROUTE, scope="menu")
        return response.data if isinstance(response.data, dict) else None

    async def get_dining_options(self) -> list[dict[str, Any]]:
        response = await self.client.request_upstream(DINING_OPTIONS_ROUTE, scope="global")
        data = response.data
        if isinstance(data, dict) and isinstance(data.get("diningOptions"), list):
            data = data["diningOptions"]
        return [o for o in data if isinstance(o, dict)] if isinstance(data, list) else []

    async def get_prep_stations(
        self,
        page_token: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> PrepStationsPage:
        response = await self.client.request_upstream(
            PREP_STATIONS_ROUTE,
            {"pageToken": page_token, "lastModified": last_modified},
            scope="global",
        )
        data = response.data
        if isinstance(data, dict) and isinstance(data.get("prepStations"), list):
            data = data["prepStations"]
        stations = [s for s in data if isinstance(s, dict)] if isinstance(data, list) else []
        token = {k.lower(): v for k, v in response.headers.items()}.get(NEXT_PAGE_TOKEN_HEADER)
        return PrepStationsPage(
            prep_stations=stations,
            next_page_token=token.strip() if isinstance(token, str) and token.strip() else None,
            raw=response.data,
        )

    async def health_check(self) -> bool:
        """Check that credentials are configured and a token can be obtained."""
        if not (self.settings.toast_client_id and self.settings.toast_client_secret):
            return False
        try:
            await self.token_manager.get_access_token()
            return True
        except UpstreamError as e:
            logger.error(f"Toast health check failed: {e}")
            return False

    async def close(self) -> None:
        await self.http.aclose()
