"""
Field resolution for raw Toast order documents.

Toast moves fields around between API versions (top level vs ``context``),
so every lookup here walks an ordered list of candidate paths and takes the
first usable value.
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from ordersync.services.orders.timestamps import format_business_date, parse_toast_timestamp

OPENED_PATHS = (
    ("openedDate",),
    ("createdDate",),
    ("orderDate",),
    ("context", "openedDate"),
    ("context", "createdDate"),
)

MODIFIED_PATHS = (
    ("modifiedDate",),
    ("context", "modifiedDate"),
    ("lastModifiedDate",),
    ("context", "lastModifiedDate"),
)

LOCATION_PATHS = (
    ("restaurantLocationGuid",),
    ("restaurantGuid",),
    ("locationGuid",),
    ("locationId",),
    ("context", "restaurantLocationGuid"),
    ("context", "locationGuid"),
    ("context", "locationId"),
    ("revenueCenter", "guid"),
)

STATUS_PATHS = (
    ("status",),
    ("orderStatus",),
    ("approvalStatus",),
)

BUSINESS_DATE_PATHS = (
    ("businessDate",),
    ("context", "businessDate"),
)


def get_path(doc: Any, path: Iterable[str]) -> Any:
    """Walk nested dicts, returning None as soon as a step is missing."""
    current = doc
    for key in path:
        if not isinstance(current, dict):
            return None
        current = current.get(key)
    return current


def first_string(doc: Any, paths: Iterable[Iterable[str]]) -> Optional[str]:
    for path in paths:
        value = get_path(doc, path)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _first_timestamp(doc: Any, paths: Iterable[Iterable[str]]) -> Optional[int]:
    for path in paths:
        parsed = parse_toast_timestamp(get_path(doc, path))
        if parsed is not None:
            return parsed
    return None


def resolve_order_opened_at(order: Any) -> Optional[int]:
    """Opened timestamp in epoch ms, or None when no candidate parses."""
    return _first_timestamp(order, OPENED_PATHS)


def resolve_order_modified_at(order: Any) -> Optional[int]:
    return _first_timestamp(order, MODIFIED_PATHS)


def parse_business_date(value: Any) -> Optional[int]:
    """Accept ``20241010`` as an int or an 8-digit string."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if 10_000_000 <= value <= 99_999_999 else None
    if isinstance(value, str) and len(value.strip()) == 8 and value.strip().isdigit():
        return int(value.strip())
    return None


def resolve_business_date(order: Any, opened_at_ms: Optional[int] = None) -> Optional[int]:
    """
    Business date as ``yyyyMMdd``.

    Falls back to the UTC date of the opened timestamp when the document
    carries no usable business date.
    """
    for path in BUSINESS_DATE_PATHS:
        parsed = parse_business_date(get_path(order, path))
        if parsed is not None:
            return parsed
    if opened_at_ms is None:
        opened_at_ms = resolve_order_opened_at(order)
    if opened_at_ms is None:
        return None
    opened = datetime.fromtimestamp(opened_at_ms / 1000, tz=timezone.utc)
    return int(format_business_date(opened))


def extract_order_location(order: Any) -> Optional[str]:
    return first_string(order, LOCATION_PATHS)


def extract_order_status(order: Any) -> Optional[str]:
    return first_string(order, STATUS_PATHS)


def is_order_voided(order: Any) -> bool:
    return isinstance(order, dict) and bool(order.get("voided"))


def is_order_deleted(order: Any) -> bool:
    return isinstance(order, dict) and bool(order.get("deleted"))
