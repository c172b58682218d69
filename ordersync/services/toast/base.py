"""
Toast API Abstract Base Class

Defines the interface contract for upstream POS access. Both MockToastApi
(development) and ToastApi (production) implement these methods, so the
collector, menu repository and feed service behave identically regardless
of which one is active.

Design Pattern: Strategy Pattern
    - Allows runtime switching between simulated and real upstream
    - Tests substitute a scripted implementation

Author: Your Name
Version: 2.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class OrdersPage:
    """
    One page of the bulk orders endpoint.

    Attributes:
        orders: Raw order documents on this page
        page: Page number that was requested
        page_size: Page size used
        next_page: Next page number, or None when exhausted
        total_count: Total orders in the window, when reported
        raw: Parsed response body
        response_headers: Upstream response headers
    """
    orders: list[dict[str, Any]]
    page: int = 1
    page_size: int = 100
    next_page: Optional[int] = None
    total_count: Optional[int] = None
    raw: Any = None
    response_headers: dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "orders": self.orders,
            "page": self.page,
            "pageSize": self.page_size,
            "nextPage": self.next_page,
            "totalCount": self.total_count,
        }


def orders_page_from_body(body: Any, page: int, page_size: int) -> OrdersPage:
    """
    Normalize an ordersBulk response body.

    Orders come from ``body["orders"]`` or the body itself when it is a list.
    The next page is the numeric ``nextPage``, else ``page + 1`` when
    ``hasMore`` is true.
    """
    if isinstance(body, dict) and isinstance(body.get("orders"), list):
        orders = body["orders"]
    elif isinstance(body, list):
        orders = body
    else:
        orders = []

    next_page = None
    if isinstance(body, dict):
        if isinstance(body.get("nextPage"), int) and not isinstance(body.get("nextPage"), bool):
            next_page = body["nextPage"]
        elif body.get("hasMore") is True:
            next_page = page + 1

    total = body.get("totalCount") if isinstance(body, dict) else None
    return OrdersPage(
        orders=[o for o in orders if isinstance(o, dict)],
        page=body.get("page", page) if isinstance(body, dict) and isinstance(body.get("page"), int) else page,
        page_size=page_size,
        next_page=next_page,
        total_count=total if isinstance(total, int) else None,
        raw=body,
    )


@dataclass
class PrepStationsPage:
    """
    One page of kitchen prep stations.

    Attributes:
        prep_stations: Prep station documents
        next_page_token: Token for the next page, or None when exhausted
        raw: Parsed response body
    """
    prep_stations: list[dict[str, Any]]
    next_page_token: Optional[str] = None
    raw: Any = None


class BaseToastApi(ABC):
    """
    Abstract base class for upstream POS access.

    Example:
        >>> api = get_toast_api()  # Returns Mock or Real
        >>> page = await api.get_orders_bulk(start_iso, end_iso, page=1)
        >>> print(len(page.orders), page.next_page)
    """

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name (e.g., "mock", "toast")."""
        pass

    @abstractmethod
    async def get_orders_bulk(
        self,
        start_iso: str,
        end_iso: str,
        page: int = 1,
        page_size: int = 100,
    ) -> OrdersPage:
        """Fetch one page of orders in ``[start_iso, end_iso]``."""
        pass

    @abstractmethod
    async def get_order_by_id(self, guid: str) -> Optional[dict[str, Any]]:
        """Fetch a single order document."""
        pass

    @abstractmethod
    async def get_menu_metadata(self) -> Optional[dict[str, Any]]:
        """Fetch the cheap menu metadata document (used for change detection)."""
        pass

    @abstractmethod
    async def get_published_menu(self) -> Optional[dict[str, Any]]:
        """Fetch the full published menus document."""
        pass

    @abstractmethod
    async def get_dining_options(self) -> list[dict[str, Any]]:
        """Fetch configured dining options."""
        pass

    @abstractmethod
    async def get_prep_stations(
        self,
        page_token: Optional[str] = None,
        last_modified: Optional[str] = None,
    ) -> PrepStationsPage:
        """Fetch one page of kitchen prep stations."""
        pass

    @abstractmethod
    async def health_check(self) -> bool:
        """Check if the upstream is reachable/configured."""
        pass

    async def close(self) -> None:
        """Release network resources."""
        return None
