"""
Value extraction from raw order/check/selection documents.

Paths are written as ``"order.context.diningOption.guid"`` or
``"check.customer.name"``; the first segment picks the root document.
"""

import math
import re
from typing import Any, Iterable, Optional

from ordersync.services.orders.fields import OPENED_PATHS, get_path
from ordersync.services.orders.timestamps import parse_toast_timestamp

ORDER_TIME_FIELDS = tuple(".".join(p) for p in OPENED_PATHS) + (
    "promisedDate",
    "estimatedFulfillmentDate",
    "readyDate",
)

ORDER_LOCATION_FIELDS = (
    "order.restaurantLocationGuid",
    "order.restaurantGuid",
    "order.locationGuid",
    "order.locationId",
    "order.context.restaurantLocationGuid",
    "order.context.locationGuid",
    "order.context.locationId",
    "order.revenueCenter.guid",
)

ORDER_META_STRINGS = {
    "orderNumber": ("order.displayNumber", "order.orderNumber"),
    "timeDue": ("order.promisedDate", "order.estimatedFulfillmentDate"),
    "locationId": ORDER_LOCATION_FIELDS,
    "status": ("order.status", "order.orderStatus", "order.approvalStatus"),
    "currency": ("order.currency", "order.currencyCode"),
    "diningOptionGuid": (
        "check.diningOptionGuid",
        "check.diningOption.guid",
        "order.diningOptionGuid",
        "order.diningOption.guid",
        "order.context.diningOption.guid",
    ),
    "deliveryState": (
        "check.deliveryInfo.state",
        "order.deliveryInfo.state",
        "order.context.deliveryInfo.state",
    ),
    "promisedDate": ("order.promisedDate",),
    "estimatedFulfillmentDate": ("order.estimatedFulfillmentDate",),
}

ORDER_META_OBJECTS = {
    "deliveryInfo": ("check.deliveryInfo", "order.deliveryInfo", "order.context.deliveryInfo"),
    "curbsidePickupInfo": ("check.curbsidePickupInfo", "order.curbsidePickupInfo", "order.context.curbsidePickupInfo"),
    "table": ("check.table", "order.table", "order.context.table"),
    "employee": ("check.employee", "order.employee", "order.context.employee"),
}

ORDER_SEAT_FIELDS = (
    "check.seatNumbers",
    "check.seats",
    "check.diningContext.seats",
    "order.context.diningContext.seats",
)

ORDER_TYPE_FIELDS = (
    "check.orderType",
    "check.serviceType",
    "check.orderMode",
    "check.channelType",
    "check.fulfillmentMode",
    "order.orderType",
    "order.serviceType",
    "order.orderMode",
    "order.channelType",
    "order.mode",
    "order.fulfillmentType",
    "order.fulfillmentMode",
    "order.source.orderType",
    "order.source.serviceType",
    "order.source.mode",
    "order.context.orderType",
    "order.context.serviceType",
    "order.context.orderMode",
    "order.context.channelType",
    "order.context.fulfillmentType",
    "order.context.fulfillmentMode",
    "order.context.diningOption",
    "order.context.diningOptionType",
)

ORDER_TYPE_VOCABULARY = {
    "TAKEOUT": "TAKEOUT",
    "TAKE_OUT": "TAKEOUT",
    "TAKEAWAY": "TAKEOUT",
    "TAKE_AWAY": "TAKEOUT",
    "PICKUP": "TAKEOUT",
    "PICK_UP": "TAKEOUT",
    "PICKUP_ORDER": "TAKEOUT",
    "PICK_UP_ORDER": "TAKEOUT",
    "TOGO": "TAKEOUT",
    "TO_GO": "TAKEOUT",
    "DINE_IN": "DINE_IN",
    "DINEIN": "DINE_IN",
    "ON_PREMISE": "DINE_IN",
    "ONPREMISE": "DINE_IN",
    "EAT_IN": "DINE_IN",
    "CURBSIDE": "CURBSIDE",
    "CURB_SIDE": "CURBSIDE",
    "CURBSIDE_PICKUP": "CURBSIDE",
    "DRIVE_THRU": "DRIVE_THRU",
    "DRIVETHRU": "DRIVE_THRU",
    "DRIVE_THROUGH": "DRIVE_THRU",
    "CATERING": "CATERING",
    "DELIVERY": "DELIVERY",
    "DELIVER": "DELIVERY",
}

CUSTOMER_NAME_FIELDS = ("displayName", "name", "fullName", "customerName", "guestName", "nickname", "alias")
NAME_IN_INSTRUCTIONS = re.compile(r"\b(?:for|pickup|name)\b[: ]+([^\.\n\r]+)", re.IGNORECASE)


# ==============================================================================
# PRIMITIVES
# ==============================================================================

def is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool) and math.isfinite(value)


def pick_string(values: Iterable[Any]) -> Optional[str]:
    """First non-blank string (trimmed) or finite number (as text)."""
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
        if is_number(value):
            return str(value)
    return None


def first_non_empty(*values: Any) -> Optional[str]:
    for value in values:
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def get_value(order: Any, check: Any, path: str) -> Any:
    root, _, rest = path.partition(".")
    source = order if root == "order" else check if root == "check" else None
    if source is None:
        return None
    return get_path(source, rest.split(".")) if rest else source


def pick_string_paths(order: Any, check: Any, paths: Iterable[str]) -> Optional[str]:
    return pick_string(get_value(order, check, path) for path in paths)


def pick_object_paths(order: Any, check: Any, paths: Iterable[str]) -> Optional[dict[str, Any]]:
    for path in paths:
        value = get_value(order, check, path)
        if isinstance(value, dict) and value:
            return value
    return None


def extract_number(source: Any, fields: Iterable[str]) -> Optional[float]:
    for name in fields:
        value = get_path(source, name.split("."))
        if is_number(value):
            return value
    return None


def extract_timestamp(source: Any, fields: Iterable[str]) -> Optional[tuple[str, int]]:
    """First field holding a parseable timestamp, as (raw text, epoch ms)."""
    for name in fields:
        value = get_path(source, name.split("."))
        if isinstance(value, str) and value:
            parsed = parse_toast_timestamp(value)
            if parsed is not None:
                return value, parsed
    return None


def extract_order_time(order: Any) -> Optional[tuple[str, int]]:
    return extract_timestamp(order, ORDER_TIME_FIELDS)


def normalize_quantity(quantity: Any) -> int:
    """Invalid or non-positive quantities count as 1."""
    if not is_number(quantity) or quantity <= 0:
        return 1
    return max(1, round(quantity))


def is_voided(entity: Any) -> bool:
    return isinstance(entity, dict) and bool(entity.get("voided") or entity.get("deleted"))


def _type_token(value: Any) -> str:
    return re.sub(r"\s+", "_", value.strip().upper()) if isinstance(value, str) else ""


def get_selection_type(selection: Any) -> str:
    return _type_token(selection.get("selectionType")) if isinstance(selection, dict) else ""


def get_item_type(selection: Any) -> str:
    item = selection.get("item") if isinstance(selection, dict) else None
    if not isinstance(item, dict):
        return ""
    return _type_token(item.get("itemType") if item.get("itemType") is not None else item.get("type"))


# ==============================================================================
# SELECTIONS
# ==============================================================================

def resolve_line_item_id(order_id: str, check_id: Optional[str], selection: dict[str, Any], index: int) -> str:
    guid = selection.get("guid")
    if isinstance(guid, str) and guid.strip():
        return guid
    prefix = f"{order_id}:{check_id or ''}"
    item_guid = pick_string([get_path(selection, ("item", "guid"))])
    if item_guid:
        return f"{prefix}:item:{item_guid}:{index}"
    receipt = extract_number(selection, ["receiptLinePosition"])
    if receipt is not None:
        return f"{prefix}:receipt:{receipt:g}"
    return f"{prefix}:open:{index}"


def get_special_request(selection: dict[str, Any], item_name: str) -> Optional[str]:
    if get_selection_type(selection) != "SPECIAL_REQUEST":
        return None
    display = pick_string([selection.get("displayName")])
    return display if display and display != item_name else None


# ==============================================================================
# ORDER TYPE
# ==============================================================================

def normalize_order_type(value: Any) -> Optional[str]:
    """Map free text (or an object's ``type``/``name``) onto the order-type vocabulary."""
    if not value:
        return None
    if isinstance(value, dict):
        candidate = value.get("type") if value.get("type") is not None else value.get("name")
        return normalize_order_type(candidate) if isinstance(candidate, str) else None
    if not isinstance(value, str):
        return None

    normalized = re.sub(r"[^A-Z0-9]+", "_", value.strip().upper())
    if normalized in ORDER_TYPE_VOCABULARY:
        return ORDER_TYPE_VOCABULARY[normalized]
    if "CURBSIDE" in normalized:
        return "CURBSIDE"
    if "DRIVE" in normalized:
        return "DRIVE_THRU"
    if "CATER" in normalized:
        return "CATERING"
    if "DELIVER" in normalized:
        return "DELIVERY"
    if any(token in normalized for token in ("DINE", "EAT_IN", "EATIN", "ON_PREMISE")):
        return "DINE_IN"
    if any(token in normalized for token in ("TAKE", "PICKUP", "TOGO", "TO_GO")):
        return "TAKEOUT"
    return None


def resolve_order_type(order: dict[str, Any], check: dict[str, Any]) -> str:
    if get_path(order, ("context", "curbsidePickupInfo")) or check.get("curbsidePickupInfo"):
        return "CURBSIDE"
    for flag, order_type in (("isDriveThru", "DRIVE_THRU"), ("isDelivery", "DELIVERY"), ("isCatering", "CATERING")):
        if order.get(flag) is True or check.get(flag) is True:
            return order_type
    for path in ORDER_TYPE_FIELDS:
        normalized = normalize_order_type(get_value(order, check, path))
        if normalized:
            return normalized
    return "UNKNOWN"


# ==============================================================================
# CUSTOMER / SEATS
# ==============================================================================

def build_customer_name(customer: Any) -> Optional[str]:
    if isinstance(customer, str):
        return customer.strip() or None
    if not isinstance(customer, dict):
        return None
    direct = first_non_empty(*(customer.get(name) for name in CUSTOMER_NAME_FIELDS))
    if direct:
        return direct
    first = customer.get("firstName").strip() if isinstance(customer.get("firstName"), str) else ""
    last = customer.get("lastName").strip() if isinstance(customer.get("lastName"), str) else ""
    combined = f"{first} {last}".strip()
    if combined:
        return combined
    return first_non_empty(customer.get("givenName"), customer.get("familyName"))


def extract_customer_name(order: dict[str, Any], check: dict[str, Any]) -> Optional[str]:
    """Walk every place Toast has been seen to put a guest name."""
    name = build_customer_name(check.get("customer"))
    if name:
        return name

    customers = order.get("customers")
    for customer in customers if isinstance(customers, list) else []:
        name = build_customer_name(customer)
        if name:
            return name

    direct = first_non_empty(
        check.get("tabName"),
        check.get("guestName"),
        order.get("guestName"),
        order.get("tabName"),
        get_path(order, ("context", "customerName")),
        order.get("customerName"),
        get_path(order, ("source", "customerName")),
        get_path(order, ("context", "curbsidePickupInfo", "name")),
    )
    if direct:
        return direct

    delivery_blocks = (
        get_path(order, ("context", "deliveryInfo")),
        order.get("deliveryInfo"),
        check.get("deliveryInfo"),
        order.get("destination"),
        order.get("shippingAddress"),
        order.get("deliveryDestination"),
    )
    for block in delivery_blocks:
        if isinstance(block, dict):
            recipient = first_non_empty(block.get("recipientName"), block.get("name"), block.get("customerName"))
            if recipient:
                return recipient

    guests = check.get("guests")
    for guest in guests if isinstance(guests, list) else []:
        name = build_customer_name(guest)
        if name:
            return name

    last_resort = first_non_empty(
        get_path(check, ("curbsidePickupInfo", "name")),
        get_path(order, ("context", "pickupName")),
    )
    if last_resort:
        return last_resort

    selections = check.get("selections")
    first_selection = next(
        (s for s in selections if isinstance(s, dict)), None
    ) if isinstance(selections, list) else None
    instructions = first_non_empty(first_selection.get("specialInstructions")) if first_selection else None
    if instructions:
        match = NAME_IN_INSTRUCTIONS.search(instructions)
        if match:
            return first_non_empty(match.group(1))
    return None


def collect_seats(order: dict[str, Any], check: dict[str, Any]) -> list[float]:
    seats = set()
    for path in ORDER_SEAT_FIELDS:
        value = get_value(order, check, path)
        if isinstance(value, list):
            seats.update(seat for seat in value if is_number(seat))
    return sorted(seats)


def extract_order_meta(order: dict[str, Any], check: dict[str, Any]) -> dict[str, Any]:
    """Order-level fields shown on the board, keyed by their output names."""
    meta: dict[str, Any] = {key: pick_string_paths(order, check, paths) for key, paths in ORDER_META_STRINGS.items()}
    meta.update({key: pick_object_paths(order, check, paths) for key, paths in ORDER_META_OBJECTS.items()})
    meta["customerName"] = extract_customer_name(order, check)
    meta["orderType"] = resolve_order_type(order, check)
    meta["seats"] = collect_seats(order, check)
    meta["checkId"] = pick_string_paths(order, check, ("check.guid", "check.id"))
    return meta
