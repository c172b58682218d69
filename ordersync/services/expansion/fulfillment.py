"""
Line-item classification and fulfillment status.

Check-level fulfillment status comes from, in order:
    1. the newest entry of a guest-facing status history
    2. a direct guest-facing status field
    3. the item statuses (any not READY -> IN_PREPARATION, all READY -> READY_FOR_PICKUP)
"""

import re
from typing import Any, Iterable, Optional

from ordersync.services.expansion.extractors import extract_number, get_item_type, get_selection_type, get_value

DISALLOWED_SELECTION_TYPES = frozenset({
    "SPECIAL_REQUEST", "NOTE", "TEXT", "FEE", "SURCHARGE",
    "SERVICE_CHARGE", "TIP", "TAX", "PAYMENT", "DEPOSIT",
})
ALLOWED_SELECTION_TYPES = frozenset({"MENU_ITEM", "ITEM", "STANDARD", "OPEN_ITEM", "CUSTOM_ITEM", "RETAIL_ITEM"})
DISALLOWED_ITEM_TYPES = frozenset({"SPECIAL_REQUEST", "NOTE", "TEXT", "FEE", "SURCHARGE", "SERVICE_CHARGE", "TIP", "TAX"})
ALLOWED_ITEM_TYPES = frozenset({
    "MENU_ITEM", "ITEM", "ENTREE", "PRODUCT", "OPEN_ITEM", "RETAIL", "RETAIL_ITEM", "BEVERAGE",
})

ITEM_STATUSES = frozenset({"NEW", "HOLD", "SENT", "READY"})

GUEST_STATUS_FIELDS = (
    "check.guestOrderFulfillmentStatus",
    "check.guestOrderFulfillmentStatus.status",
    "check.guestFulfillmentStatus",
    "check.guestFulfillmentStatus.status",
    "check.fulfillmentStatusWebhook",
    "check.fulfillmentStatusWebhook.status",
    "order.guestOrderFulfillmentStatus",
    "order.guestOrderFulfillmentStatus.status",
    "order.guestFulfillmentStatus",
    "order.guestFulfillmentStatus.status",
    "order.context.guestOrderFulfillmentStatus",
    "order.context.guestOrderFulfillmentStatus.status",
    "order.context.guestFulfillmentStatus",
    "order.context.guestFulfillmentStatus.status",
)

GUEST_HISTORY_FIELDS = tuple(
    f"{root}.{name}"
    for root in ("check", "order", "order.context")
    for name in (
        "guestOrderFulfillmentStatusHistory",
        "guestFulfillmentStatusHistory",
        "fulfillmentStatusHistory",
    )
)

HISTORY_VALUE_FIELDS = ("status", "currentStatus", "value", "state", "fulfillmentStatus", "newStatus")


def is_line_item(selection: Any) -> bool:
    """Whether a selection renders as an item on the board."""
    if not isinstance(selection, dict):
        return False
    selection_type = get_selection_type(selection)
    if selection_type in DISALLOWED_SELECTION_TYPES:
        return False
    item = selection.get("item")
    if not isinstance(item, dict):
        return False
    item_type = get_item_type(selection)
    if item_type in DISALLOWED_ITEM_TYPES:
        return False
    if selection_type in ALLOWED_SELECTION_TYPES or item_type in ALLOWED_ITEM_TYPES:
        return True

    guid = item.get("guid")
    has_reference = (
        (isinstance(guid, str) and guid.strip())
        or (isinstance(guid, (int, float)) and not isinstance(guid, bool))
        or "multiLocationId" in item
        or "referenceId" in item
    )
    if has_reference:
        return True
    return extract_number(selection, ("receiptLinePrice", "price")) is not None


def normalize_item_fulfillment_status(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    normalized = value.strip().upper()
    return normalized if normalized in ITEM_STATUSES else None


def normalize_status_token(value: Any) -> Optional[str]:
    """``"ready for pickup"`` / ``"Ready-For-Pickup"`` -> ``"READY_FOR_PICKUP"``."""
    if not isinstance(value, str) or not value.strip():
        return None
    token = re.sub(r"_+", "_", re.sub(r"[\s-]+", "_", value.strip())).upper()
    return token or None


def normalize_guest_status(value: Any) -> Optional[str]:
    if isinstance(value, str):
        return normalize_status_token(value)
    if isinstance(value, dict):
        for name in HISTORY_VALUE_FIELDS:
            token = normalize_status_token(value.get(name))
            if token:
                return token
    return None


def _latest_history_status(order: dict[str, Any], check: dict[str, Any]) -> Optional[str]:
    for path in GUEST_HISTORY_FIELDS:
        history = get_value(order, check, path)
        if not isinstance(history, list):
            continue
        for entry in reversed(history):
            status = normalize_guest_status(entry)
            if status:
                return status
            if isinstance(entry, dict):
                status = normalize_guest_status(entry.get("payload"))
                if status:
                    return status
    return None


def _direct_guest_status(order: dict[str, Any], check: dict[str, Any]) -> Optional[str]:
    for path in GUEST_STATUS_FIELDS:
        value = get_value(order, check, path)
        if isinstance(value, str):
            status = normalize_status_token(value)
            if status:
                return status
    return None


def resolve_fulfillment_status(
    order: dict[str, Any],
    check: dict[str, Any],
    item_statuses: Iterable[Optional[str]],
) -> Optional[str]:
    status = _latest_history_status(order, check) or _direct_guest_status(order, check)
    if status:
        return status
    statuses = [s for s in item_statuses if s]
    if not statuses:
        return None
    if any(s != "READY" for s in statuses):
        return "IN_PREPARATION"
    return "READY_FOR_PICKUP"


def parse_fulfillment_filter(values: Any) -> frozenset[str]:
    """Comma-separated or repeated filter values as normalized tokens."""
    if values is None:
        return frozenset()
    if isinstance(values, str):
        values = [values]
    tokens = set()
    for raw in values:
        if not isinstance(raw, str):
            continue
        for part in raw.split(","):
            token = normalize_status_token(part)
            if token:
                tokens.add(token)
    return frozenset(tokens)
