"""
Order Expansion

Usage:
    from ordersync.services.expansion import build_expanded_orders

    result = build_expanded_orders(raw_orders, menu_index, limit=20)
    payload = [order.to_dict() for order in result.orders]

Author: Your Name
Version: 2.0.0
"""

from ordersync.services.expansion.models import (
    Diagnostics,
    ExpandedOrder,
    ExpandedOrderItem,
    ExpansionResult,
    ItemMoney,
    ModifierAggregate,
    OrderTotals,
)
from ordersync.services.expansion.pipeline import (
    ExpandedOrderCache,
    build_expanded_orders,
    compute_check_fingerprint,
    get_expanded_order_cache,
)

__all__ = [
    "build_expanded_orders",
    "compute_check_fingerprint",
    "get_expanded_order_cache",
    "ExpandedOrderCache",
    "ExpansionResult",
    "ExpandedOrder",
    "ExpandedOrderItem",
    "ModifierAggregate",
    "ItemMoney",
    "OrderTotals",
    "Diagnostics",
]
