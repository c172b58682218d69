"""
Expanded order data structures.

Serialized with camelCase keys because the order-board dashboard reads
them as-is.
"""

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class ModifierAggregate:
    """One collapsed modifier line under an item."""
    id: Optional[str]
    name: str
    group_name: Optional[str]
    price_cents: int
    quantity: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "groupName": self.group_name,
            "priceCents": self.price_cents,
            "quantity": self.quantity,
        }


@dataclass
class ItemMoney:
    base_item_price_cents: Optional[int] = None
    modifier_total_cents: Optional[int] = None
    total_item_price_cents: Optional[int] = None

    def is_empty(self) -> bool:
        return (
            self.base_item_price_cents is None
            and self.modifier_total_cents is None
            and self.total_item_price_cents is None
        )

    def to_dict(self) -> dict[str, int]:
        """Only the amounts that are known."""
        data = {}
        if self.base_item_price_cents is not None:
            data["baseItemPriceCents"] = self.base_item_price_cents
        if self.modifier_total_cents is not None:
            data["modifierTotalCents"] = self.modifier_total_cents
        if self.total_item_price_cents is not None:
            data["totalItemPriceCents"] = self.total_item_price_cents
        return data


@dataclass
class ExpandedOrderItem:
    """
    One renderable line item.

    Attributes:
        line_item_id: Selection GUID or a synthesized stable id
        menu_item_id: Menu item GUID when known
        item_name: Kitchen-facing display name
        quantity: Normalized quantity (>= 1)
        modifiers: Collapsed modifiers, sorted by group then name
        money: Per-item amounts in cents
        fulfillment_status: NEW, HOLD, SENT or READY
        special_instructions: Free-text request attached to the line
    """
    line_item_id: str
    menu_item_id: Optional[str]
    item_name: str
    quantity: int
    modifiers: list[ModifierAggregate] = field(default_factory=list)
    money: Optional[ItemMoney] = None
    fulfillment_status: Optional[str] = None
    special_instructions: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "lineItemId": self.line_item_id,
            "menuItemId": self.menu_item_id,
            "itemName": self.item_name,
            "quantity": self.quantity,
            "modifiers": [m.to_dict() for m in self.modifiers],
        }
        if self.money is not None and not self.money.is_empty():
            data["money"] = self.money.to_dict()
        if self.fulfillment_status:
            data["fulfillmentStatus"] = self.fulfillment_status
        if self.special_instructions:
            data["specialInstructions"] = self.special_instructions
        return data


@dataclass
class OrderTotals:
    base_items_subtotal_cents: int = 0
    modifiers_subtotal_cents: int = 0
    discount_total_cents: int = 0
    service_charge_cents: int = 0
    tip_cents: int = 0
    grand_total_cents: int = 0

    def add(self, other: "OrderTotals") -> None:
        self.base_items_subtotal_cents += other.base_items_subtotal_cents
        self.modifiers_subtotal_cents += other.modifiers_subtotal_cents
        self.discount_total_cents += other.discount_total_cents
        self.service_charge_cents += other.service_charge_cents
        self.tip_cents += other.tip_cents
        self.grand_total_cents += other.grand_total_cents

    def to_dict(self) -> dict[str, int]:
        return {
            "baseItemsSubtotalCents": self.base_items_subtotal_cents,
            "modifiersSubtotalCents": self.modifiers_subtotal_cents,
            "discountTotalCents": self.discount_total_cents,
            "serviceChargeCents": self.service_charge_cents,
            "tipCents": self.tip_cents,
            "grandTotalCents": self.grand_total_cents,
        }


@dataclass
class ExpandedOrder:
    """
    One (order, check) pair ready for the order board.

    ``order_data`` is a plain dict because most of its keys are optional
    and passed through from upstream.
    """
    order_data: dict[str, Any]
    currency: Optional[str]
    items: list[ExpandedOrderItem]
    totals: OrderTotals

    @property
    def order_id(self) -> str:
        return self.order_data["orderId"]

    @property
    def check_id(self) -> Optional[str]:
        return self.order_data.get("checkId")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "orderData": self.order_data,
            "currency": self.currency,
            "items": [item.to_dict() for item in self.items],
            "totals": self.totals.to_dict(),
        }


@dataclass
class Diagnostics:
    orders_seen: int = 0
    checks_seen: int = 0
    items_included: int = 0
    orders_voided: int = 0
    orders_time_parse: int = 0
    selections_voided: int = 0
    selections_filtered: int = 0
    totals: OrderTotals = field(default_factory=OrderTotals)
    cache: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "ordersSeen": self.orders_seen,
            "checksSeen": self.checks_seen,
            "itemsIncluded": self.items_included,
            "dropped": {
                "ordersVoided": self.orders_voided,
                "ordersTimeParse": self.orders_time_parse,
                "selectionsVoided": self.selections_voided,
                "selectionsFiltered": self.selections_filtered,
            },
            "totals": self.totals.to_dict(),
            "cache": dict(self.cache),
        }


@dataclass
class ExpansionResult:
    orders: list[ExpandedOrder]
    diagnostics: Diagnostics
    timed_out: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "orders": [order.to_dict() for order in self.orders],
            "diagnostics": self.diagnostics.to_dict(),
            "timedOut": self.timed_out,
        }
